from __future__ import annotations

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stockcontrol.models import Branch, Product, StockAlert, StockThresholdConfig


class ThresholdConfigRepository:
    def __init__(self, db: Session):
        self._db = db

    def add(self, config: StockThresholdConfig) -> None:
        self._db.add(config)

    def get(self, product_id: int, branch_id: int) -> Optional[StockThresholdConfig]:
        return self._db.scalar(
            select(StockThresholdConfig).where(
                StockThresholdConfig.product_id == product_id,
                StockThresholdConfig.branch_id == branch_id,
            )
        )

    def list(
        self,
        branch_id: Optional[int] = None,
        product_id: Optional[int] = None,
        active_only: bool = False,
    ) -> list[StockThresholdConfig]:
        stmt = (
            select(StockThresholdConfig)
            .join(Branch, Branch.id == StockThresholdConfig.branch_id)
            .join(Product, Product.id == StockThresholdConfig.product_id)
        )
        if branch_id is not None:
            stmt = stmt.where(StockThresholdConfig.branch_id == branch_id)
        if product_id is not None:
            stmt = stmt.where(StockThresholdConfig.product_id == product_id)
        if active_only:
            stmt = stmt.where(StockThresholdConfig.active.is_(True))
        return list(self._db.scalars(stmt.order_by(Branch.name, Product.name)))

    def configured_pairs(self, branch_id: Optional[int] = None) -> set[tuple[int, int]]:
        stmt = select(StockThresholdConfig.product_id, StockThresholdConfig.branch_id)
        if branch_id is not None:
            stmt = stmt.where(StockThresholdConfig.branch_id == branch_id)
        return {(pid, bid) for pid, bid in self._db.execute(stmt).all()}


class AlertRepository:
    def __init__(self, db: Session):
        self._db = db

    def add(self, alert: StockAlert) -> None:
        self._db.add(alert)

    def get(self, alert_id: int) -> Optional[StockAlert]:
        return self._db.get(StockAlert, alert_id)

    def deactivate_pair(self, product_id: int, branch_id: int) -> int:
        result = self._db.execute(
            update(StockAlert)
            .where(
                StockAlert.product_id == product_id,
                StockAlert.branch_id == branch_id,
                StockAlert.active.is_(True),
            )
            .values(active=False)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def latest_of_kind(self, product_id: int, branch_id: int, kind: str) -> Optional[StockAlert]:
        return self._db.scalar(
            select(StockAlert)
            .where(
                StockAlert.product_id == product_id,
                StockAlert.branch_id == branch_id,
                StockAlert.kind == kind,
            )
            .order_by(StockAlert.id.desc())
            .limit(1)
        )

    def list(
        self,
        branch_id: Optional[int] = None,
        kind: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> list[StockAlert]:
        stmt = select(StockAlert)
        if branch_id is not None:
            stmt = stmt.where(StockAlert.branch_id == branch_id)
        if kind:
            stmt = stmt.where(StockAlert.kind == kind)
        if active is not None:
            stmt = stmt.where(StockAlert.active.is_(active))
        return list(self._db.scalars(stmt.order_by(StockAlert.created_at.desc(), StockAlert.id.desc())))
