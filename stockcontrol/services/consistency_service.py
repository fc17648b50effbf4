from __future__ import annotations

from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from stockcontrol.logging_config import get_logger
from stockcontrol.models import Stock
from stockcontrol.repositories.stock_repository import StockRepository
from stockcontrol.schemas import AdjustmentCreate, Inconsistency, RepairDetail, RepairSummary
from stockcontrol.services.stock_service import StaleBalance, StockService
from stockcontrol.stock_config import StockPolicy, load_stock_policy

logger = get_logger("consistency")

NEGATIVE_BALANCE = "NegativeBalance"
LEDGER_DRIFT = "LedgerDrift"


class ConsistencyAuditor:
    """Detecta saldos negativos y diferencias contra los movimientos, y los corrige aparte.

    La detección es de solo lectura. Cada corrección es un ajuste separado, fijado a
    la versión del saldo vista al detectar; si el saldo cambió en el medio, se omite
    en lugar de pisarlo.
    """

    def __init__(
        self,
        db: Session,
        stock_service: Optional[StockService] = None,
        policy: Optional[StockPolicy] = None,
    ):
        self._db = db
        self._policy = policy or load_stock_policy()
        self._stocks = StockRepository(db)
        self._stock_service = stock_service or StockService(db, policy=self._policy)

    def _finding(self, kind: str, stock: Stock, computed: Optional[float] = None) -> Inconsistency:
        current = float(stock.quantity)
        return Inconsistency(
            kind=kind,
            stock_id=stock.id,
            product_id=stock.product_id,
            supply_id=stock.supply_id,
            location_id=stock.location_id,
            current=current,
            computed=computed,
            delta=(current - computed) if computed is not None else None,
        )

    def detect_inconsistencies(self) -> list[Inconsistency]:
        findings: list[Inconsistency] = []
        for stock in self._stocks.negative_balances():
            findings.append(self._finding(NEGATIVE_BALANCE, stock))

        epsilon = self._policy.audit.drift_epsilon
        for stock, computed in self._stocks.balances_with_ledger_totals():
            if abs(float(stock.quantity) - computed) > epsilon:
                findings.append(self._finding(LEDGER_DRIFT, stock, computed))

        if findings:
            logger.warning("Consistency check found %s inconsistencies", len(findings))
        else:
            logger.info("Consistency check found no inconsistencies")
        return findings

    def _repair_one(
        self, finding: Inconsistency, actor_id: Optional[int]
    ) -> RepairDetail:
        stock = self._stocks.get(finding.stock_id)
        if stock is None:
            return RepairDetail(
                stock_id=finding.stock_id,
                kind=finding.kind,
                status="failed",
                quantity_before=finding.current,
                error="Stock not found",
            )

        current = float(stock.quantity)
        epsilon = self._policy.audit.drift_epsilon
        # The finding must still describe the balance before anything is written
        if abs(current - finding.current) > epsilon:
            return RepairDetail(
                stock_id=stock.id,
                kind=finding.kind,
                status="skipped",
                quantity_before=current,
                error="Balance changed since detection",
            )

        if finding.kind == NEGATIVE_BALANCE:
            target = 0.0
        else:
            target = float(finding.computed or 0)
        correction = target - current
        if abs(correction) <= epsilon:
            return RepairDetail(
                stock_id=stock.id,
                kind=finding.kind,
                status="skipped",
                quantity_before=current,
                quantity_after=current,
            )

        payload = AdjustmentCreate(
            product_id=stock.product_id,
            supply_id=stock.supply_id,
            location_id=stock.location_id,
            delta=correction,
            reason=self._policy.audit.correction_reason,
            actor_id=actor_id,
            allow_negative=True,
        )
        result = self._stock_service.adjust_stock(payload, expected_version=stock.version)
        return RepairDetail(
            stock_id=stock.id,
            kind=finding.kind,
            status="repaired",
            quantity_before=current,
            quantity_after=result.balance.quantity,
            movement_id=result.movement.id,
        )

    def repair_inconsistencies(self, actor_id: Optional[int] = None) -> RepairSummary:
        findings = self.detect_inconsistencies()
        details: list[RepairDetail] = []
        for finding in findings:
            try:
                detail = self._repair_one(finding, actor_id)
            except StaleBalance as e:
                detail = RepairDetail(
                    stock_id=finding.stock_id,
                    kind=finding.kind,
                    status="skipped",
                    quantity_before=finding.current,
                    error=str(e),
                )
            except HTTPException as e:
                self._db.rollback()
                logger.warning("Repair of stock %s (%s) failed: %s", finding.stock_id, finding.kind, e.detail)
                detail = RepairDetail(
                    stock_id=finding.stock_id,
                    kind=finding.kind,
                    status="failed",
                    quantity_before=finding.current,
                    error=str(e.detail),
                )
            details.append(detail)

        summary = RepairSummary(
            total=len(findings),
            repaired=sum(1 for d in details if d.status == "repaired"),
            failed=sum(1 for d in details if d.status == "failed"),
            skipped=sum(1 for d in details if d.status == "skipped"),
            details=details,
        )
        logger.info(
            "Repair run finished: total=%s repaired=%s failed=%s skipped=%s",
            summary.total,
            summary.repaired,
            summary.failed,
            summary.skipped,
        )
        return summary
