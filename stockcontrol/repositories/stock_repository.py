from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from stockcontrol.models import MOVEMENT_ENTRY, Branch, Product, Stock, StockMovement, Supply


def _signed_quantity():
    return case(
        (StockMovement.direction == MOVEMENT_ENTRY, StockMovement.quantity),
        else_=-StockMovement.quantity,
    )


class StockRepository:
    def __init__(self, db: Session):
        self._db = db

    def add_balance(self, stock: Stock) -> None:
        self._db.add(stock)

    def add_movement(self, movement: StockMovement) -> None:
        self._db.add(movement)

    def get(self, stock_id: int, for_update: bool = False) -> Optional[Stock]:
        stmt = select(Stock).where(Stock.id == stock_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        return self._db.scalar(stmt)

    def find_balance(
        self,
        location_id: int,
        product_id: Optional[int] = None,
        supply_id: Optional[int] = None,
        for_update: bool = False,
    ) -> Optional[Stock]:
        stmt = select(Stock).where(Stock.location_id == location_id)
        if product_id is not None:
            stmt = stmt.where(Stock.product_id == product_id)
        else:
            stmt = stmt.where(Stock.supply_id == supply_id)
        stmt = stmt.execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        return self._db.scalar(stmt)

    def quantity_for(self, product_id: int, location_id: int) -> float:
        qty = self._db.scalar(
            select(Stock.quantity).where(
                Stock.product_id == product_id,
                Stock.location_id == location_id,
            )
        )
        return float(qty or 0)

    def compare_and_swap(self, stock_id: int, expected_version: int, delta: float, now: datetime) -> bool:
        """Aplica el delta solo si nadie cambió la versión desde la lectura."""
        result = self._db.execute(
            update(Stock)
            .where(Stock.id == stock_id, Stock.version == expected_version)
            .values(
                quantity=Stock.quantity + delta,
                version=Stock.version + 1,
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def ledger_sum(self, stock_id: int) -> float:
        total = self._db.scalar(
            select(func.coalesce(func.sum(_signed_quantity()), 0)).where(
                StockMovement.stock_id == stock_id
            )
        )
        return float(total or 0)

    def negative_balances(self) -> list[Stock]:
        return list(
            self._db.scalars(select(Stock).where(Stock.quantity < 0).order_by(Stock.id))
        )

    def balances_with_ledger_totals(self) -> list[tuple[Stock, float]]:
        ledger = (
            select(
                StockMovement.stock_id.label("stock_id"),
                func.sum(_signed_quantity()).label("total"),
            )
            .group_by(StockMovement.stock_id)
            .subquery()
        )
        rows = self._db.execute(
            select(Stock, func.coalesce(ledger.c.total, 0))
            .outerjoin(ledger, ledger.c.stock_id == Stock.id)
            .order_by(Stock.id)
        ).all()
        return [(stock, float(total or 0)) for stock, total in rows]

    def list_balances(
        self,
        location_id: Optional[int] = None,
        product_id: Optional[int] = None,
        supply_id: Optional[int] = None,
    ) -> list[Stock]:
        stmt = select(Stock)
        if location_id is not None:
            stmt = stmt.where(Stock.location_id == location_id)
        if product_id is not None:
            stmt = stmt.where(Stock.product_id == product_id)
        if supply_id is not None:
            stmt = stmt.where(Stock.supply_id == supply_id)
        return list(self._db.scalars(stmt.order_by(Stock.location_id, Stock.id)))

    def positive_product_balances(self, branch_id: Optional[int] = None) -> list[tuple[Stock, Product, Branch]]:
        stmt = (
            select(Stock, Product, Branch)
            .join(Product, Product.id == Stock.product_id)
            .join(Branch, Branch.id == Stock.location_id)
            .where(Stock.quantity > 0)
        )
        if branch_id is not None:
            stmt = stmt.where(Stock.location_id == branch_id)
        return [(s, p, b) for s, p, b in self._db.execute(stmt).all()]

    def product_quantities(self, pairs: list[tuple[int, int]]) -> dict[tuple[int, int], float]:
        if not pairs:
            return {}
        product_ids = {p for p, _ in pairs}
        branch_ids = {b for _, b in pairs}
        rows = self._db.execute(
            select(Stock.product_id, Stock.location_id, Stock.quantity).where(
                Stock.product_id.in_(product_ids),
                Stock.location_id.in_(branch_ids),
            )
        ).all()
        return {(pid, bid): float(qty or 0) for pid, bid, qty in rows}

    def low_stock(self, location_id: Optional[int] = None) -> list[tuple[Stock, Product, Branch]]:
        stmt = (
            select(Stock, Product, Branch)
            .join(Product, Product.id == Stock.product_id)
            .join(Branch, Branch.id == Stock.location_id)
            .where(Product.active.is_(True), Stock.quantity <= Product.min_stock)
            .order_by(Product.name, Branch.name)
        )
        if location_id is not None:
            stmt = stmt.where(Stock.location_id == location_id)
        return [(s, p, b) for s, p, b in self._db.execute(stmt).all()]

    def low_supply_stock(self, location_id: Optional[int] = None) -> list[tuple[Stock, Supply, Branch]]:
        stmt = (
            select(Stock, Supply, Branch)
            .join(Supply, Supply.id == Stock.supply_id)
            .join(Branch, Branch.id == Stock.location_id)
            .where(Supply.active.is_(True), Stock.quantity <= Supply.min_stock)
            .order_by(Supply.name, Branch.name)
        )
        if location_id is not None:
            stmt = stmt.where(Stock.location_id == location_id)
        return [(s, i, b) for s, i, b in self._db.execute(stmt).all()]

    def movement_history(
        self,
        location_id: Optional[int] = None,
        product_id: Optional[int] = None,
        supply_id: Optional[int] = None,
        limit: int = 100,
    ) -> list[StockMovement]:
        stmt = select(StockMovement).join(Stock, Stock.id == StockMovement.stock_id)
        if location_id is not None:
            stmt = stmt.where(Stock.location_id == location_id)
        if product_id is not None:
            stmt = stmt.where(Stock.product_id == product_id)
        if supply_id is not None:
            stmt = stmt.where(Stock.supply_id == supply_id)
        stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
        return list(self._db.scalars(stmt))

    def movements_for(self, stock_id: int) -> list[StockMovement]:
        return list(
            self._db.scalars(
                select(StockMovement)
                .where(StockMovement.stock_id == stock_id)
                .order_by(StockMovement.id)
            )
        )

    def movements_with_reason_prefix(
        self,
        prefix: str,
        location_id: Optional[int] = None,
        product_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[tuple[StockMovement, Stock, Product, Branch]], int]:
        conditions = [func.lower(StockMovement.reason).like(f"{prefix.lower()}:%")]
        if location_id is not None:
            conditions.append(Stock.location_id == location_id)
        if product_id is not None:
            conditions.append(Stock.product_id == product_id)

        stmt = (
            select(StockMovement, Stock, Product, Branch)
            .join(Stock, Stock.id == StockMovement.stock_id)
            .join(Product, Product.id == Stock.product_id)
            .join(Branch, Branch.id == Stock.location_id)
            .where(*conditions)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(limit)
            .offset(offset)
        )
        count_stmt = (
            select(func.count(StockMovement.id))
            .join(Stock, Stock.id == StockMovement.stock_id)
            .join(Product, Product.id == Stock.product_id)
            .where(*conditions)
        )
        rows = [(m, s, p, b) for m, s, p, b in self._db.execute(stmt).all()]
        total = int(self._db.scalar(count_stmt) or 0)
        return rows, total
