from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from stockcontrol.audit import log_event
from stockcontrol.deps import alert_service_dep, auditor_dep, stock_service_dep
from stockcontrol.schemas import (
    AdjustmentCreate,
    AdjustmentResult,
    BalanceRead,
    Inconsistency,
    LowStockRead,
    LowSupplyStockRead,
    MovementRead,
    RepairSummary,
    StockAvailability,
)
from stockcontrol.services.alert_service import AlertService
from stockcontrol.services.consistency_service import ConsistencyAuditor
from stockcontrol.services.stock_service import StockService

router = APIRouter(prefix="/stock", tags=["stock"])


@router.post("/adjust", response_model=AdjustmentResult)
def adjust_stock(
    payload: AdjustmentCreate,
    service: StockService = Depends(stock_service_dep),
    alerts: AlertService = Depends(alert_service_dep),
) -> AdjustmentResult:
    result = service.adjust_stock(payload)
    if payload.product_id is not None:
        alerts.recompute_alerts(payload.product_id, payload.location_id)
    log_event(
        service._db,
        payload.actor_id,
        action="stock_adjust",
        entity_type="stock",
        entity_id=result.balance.id,
        detail={
            "delta": payload.delta,
            "reason": payload.reason,
            "allow_negative": payload.allow_negative,
            "movement_id": result.movement.id,
        },
    )
    return result


@router.get("", response_model=list[BalanceRead])
def list_balances(
    location_id: Optional[int] = None,
    product_id: Optional[int] = None,
    supply_id: Optional[int] = None,
    service: StockService = Depends(stock_service_dep),
) -> list[BalanceRead]:
    return service.list_balances(location_id=location_id, product_id=product_id, supply_id=supply_id)


@router.get("/balance", response_model=BalanceRead)
def get_balance(
    location_id: int,
    product_id: Optional[int] = None,
    supply_id: Optional[int] = None,
    service: StockService = Depends(stock_service_dep),
) -> BalanceRead:
    return service.get_balance(location_id, product_id=product_id, supply_id=supply_id)


@router.get("/movements", response_model=list[MovementRead])
def movement_history(
    location_id: Optional[int] = None,
    product_id: Optional[int] = None,
    supply_id: Optional[int] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    service: StockService = Depends(stock_service_dep),
) -> list[MovementRead]:
    return service.movement_history(
        location_id=location_id, product_id=product_id, supply_id=supply_id, limit=limit
    )


@router.get("/available", response_model=StockAvailability)
def check_available(
    product_id: int,
    location_id: int,
    required: float = Query(ge=0),
    service: StockService = Depends(stock_service_dep),
) -> StockAvailability:
    return service.check_available(product_id, location_id, required)


@router.get("/low", response_model=list[LowStockRead])
def low_stock(
    location_id: Optional[int] = None,
    service: StockService = Depends(stock_service_dep),
) -> list[LowStockRead]:
    return service.low_stock(location_id=location_id)


@router.get("/low/supplies", response_model=list[LowSupplyStockRead])
def low_supply_stock(
    location_id: Optional[int] = None,
    service: StockService = Depends(stock_service_dep),
) -> list[LowSupplyStockRead]:
    return service.low_supply_stock(location_id=location_id)


@router.get("/consistency", response_model=list[Inconsistency])
def verify_consistency(auditor: ConsistencyAuditor = Depends(auditor_dep)) -> list[Inconsistency]:
    return auditor.detect_inconsistencies()


@router.post("/consistency/repair", response_model=RepairSummary)
def repair_inconsistencies(
    actor_id: Optional[int] = None,
    auditor: ConsistencyAuditor = Depends(auditor_dep),
    service: StockService = Depends(stock_service_dep),
) -> RepairSummary:
    summary = auditor.repair_inconsistencies(actor_id=actor_id)
    log_event(
        service._db,
        actor_id,
        action="stock_repair",
        entity_type="stock",
        detail={"total": summary.total, "repaired": summary.repaired, "failed": summary.failed},
    )
    return summary
