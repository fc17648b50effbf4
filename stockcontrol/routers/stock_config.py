from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from stockcontrol.audit import log_event
from stockcontrol.deps import (
    alert_service_dep,
    bulk_load_service_dep,
    dashboard_service_dep,
    threshold_service_dep,
)
from stockcontrol.schemas import (
    AlertAcknowledge,
    AlertList,
    AlertRead,
    AlertRecompute,
    BatchDetail,
    BatchPage,
    BulkLoadCreate,
    BulkLoadResult,
    DashboardReport,
    ManualLoadCreate,
    ManualLoadHistoryPage,
    ManualLoadResult,
    StockReport,
    ThresholdConfigRead,
    ThresholdConfigUpsert,
)
from stockcontrol.services.alert_service import AlertService
from stockcontrol.services.bulk_load_service import BulkLoadService
from stockcontrol.services.dashboard_service import DashboardService
from stockcontrol.services.threshold_service import ThresholdConfigService

router = APIRouter(prefix="/stock-config", tags=["stock-config"])


@router.put("", response_model=ThresholdConfigRead)
def upsert_threshold_config(
    payload: ThresholdConfigUpsert,
    service: ThresholdConfigService = Depends(threshold_service_dep),
    alerts: AlertService = Depends(alert_service_dep),
) -> ThresholdConfigRead:
    config = service.upsert(payload)
    alerts.recompute_alerts(config.product_id, config.branch_id)
    log_event(
        service._db,
        payload.actor_id,
        action="stock_config_upsert",
        entity_type="stock_config",
        entity_id=config.id,
        detail={
            "product_id": payload.product_id,
            "branch_id": payload.branch_id,
            "max_stock": payload.max_stock,
            "min_stock": payload.min_stock,
            "reorder_point": payload.reorder_point,
        },
    )
    return ThresholdConfigRead.model_validate(config)


@router.get("", response_model=list[ThresholdConfigRead])
def list_threshold_configs(
    branch_id: Optional[int] = None,
    product_id: Optional[int] = None,
    include_stats: bool = False,
    service: ThresholdConfigService = Depends(threshold_service_dep),
) -> list[ThresholdConfigRead]:
    return service.list(branch_id=branch_id, product_id=product_id, include_stats=include_stats)


@router.get("/dashboard", response_model=DashboardReport)
def build_dashboard(
    branch_id: Optional[int] = None,
    service: DashboardService = Depends(dashboard_service_dep),
) -> DashboardReport:
    return service.build_dashboard(branch_id=branch_id)


@router.get("/report", response_model=StockReport)
def build_stock_report(
    branch_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    service: DashboardService = Depends(dashboard_service_dep),
) -> StockReport:
    return service.build_stock_report(branch_id=branch_id, date_from=date_from, date_to=date_to)


@router.get("/alerts", response_model=AlertList)
def list_alerts(
    branch_id: Optional[int] = None,
    kind: Optional[str] = None,
    active_only: bool = True,
    service: AlertService = Depends(alert_service_dep),
) -> AlertList:
    return service.list_alerts(branch_id=branch_id, kind=kind, active_only=active_only)


@router.post("/alerts/recompute", response_model=AlertList)
def recompute_alerts(
    payload: AlertRecompute,
    service: AlertService = Depends(alert_service_dep),
) -> AlertList:
    if payload.product_id is not None:
        service.recompute_alerts(payload.product_id, payload.branch_id)
    else:
        service.recompute_alerts_for_branch(payload.branch_id)
    return service.list_alerts(branch_id=payload.branch_id)


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertRead)
def acknowledge_alert(
    alert_id: int,
    payload: AlertAcknowledge,
    service: AlertService = Depends(alert_service_dep),
) -> AlertRead:
    alert = service.acknowledge_alert(alert_id, payload.actor_id)
    log_event(service._db, payload.actor_id, action="alert_acknowledge", entity_type="stock_alert", entity_id=alert.id)
    return AlertRead.model_validate(alert)


@router.post("/alerts/{alert_id}/deactivate", response_model=AlertRead)
def deactivate_alert(
    alert_id: int,
    service: AlertService = Depends(alert_service_dep),
) -> AlertRead:
    return AlertRead.model_validate(service.deactivate_alert(alert_id))


@router.post("/bulk-load", response_model=BulkLoadResult)
def process_bulk_load(
    payload: BulkLoadCreate,
    service: BulkLoadService = Depends(bulk_load_service_dep),
) -> BulkLoadResult:
    result = service.process_batch(payload)
    log_event(
        service._db,
        payload.actor_id,
        action="bulk_load",
        entity_type="bulk_load_batch",
        entity_id=result.batch.id,
        detail={
            "branch_id": payload.branch_id,
            "mode": payload.mode,
            "processed": result.summary.processed,
            "errors": result.summary.errors,
        },
    )
    return result


@router.get("/bulk-load", response_model=BatchPage)
def list_bulk_loads(
    branch_id: Optional[int] = None,
    started_from: Optional[datetime] = None,
    started_to: Optional[datetime] = None,
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: BulkLoadService = Depends(bulk_load_service_dep),
) -> BatchPage:
    return service.list_batches(
        branch_id=branch_id,
        limit=limit,
        offset=offset,
        started_from=started_from,
        started_to=started_to,
    )


@router.get("/bulk-load/{batch_id}", response_model=BatchDetail)
def get_bulk_load(
    batch_id: int,
    service: BulkLoadService = Depends(bulk_load_service_dep),
) -> BatchDetail:
    return service.get_batch(batch_id)


@router.post("/manual-load", response_model=ManualLoadResult)
def manual_load(
    payload: ManualLoadCreate,
    service: BulkLoadService = Depends(bulk_load_service_dep),
) -> ManualLoadResult:
    result = service.manual_load(payload)
    log_event(
        service._db,
        payload.actor_id,
        action="manual_load",
        entity_type="stock",
        detail={
            "product_id": payload.product_id,
            "branch_id": payload.branch_id,
            "mode": payload.mode,
            "quantity_before": result.quantity_before,
            "quantity_after": result.quantity_after,
        },
    )
    return result


@router.get("/manual-load", response_model=ManualLoadHistoryPage)
def manual_load_history(
    branch_id: Optional[int] = None,
    product_id: Optional[int] = None,
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: BulkLoadService = Depends(bulk_load_service_dep),
) -> ManualLoadHistoryPage:
    return service.manual_load_history(branch_id=branch_id, product_id=product_id, limit=limit, offset=offset)
