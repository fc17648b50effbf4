from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockcontrol.models import Branch, Product, Supply, User


class CatalogRepository:
    """Lectura del catálogo de productos y sucursales que usa el motor de stock."""

    def __init__(self, db: Session):
        self._db = db

    def get_product(self, product_id: int) -> Optional[Product]:
        return self._db.get(Product, product_id)

    def get_branch(self, branch_id: int) -> Optional[Branch]:
        return self._db.get(Branch, branch_id)

    def get_supply(self, supply_id: int) -> Optional[Supply]:
        return self._db.get(Supply, supply_id)

    def get_user(self, user_id: int) -> Optional[User]:
        return self._db.get(User, user_id)

    def get_product_by_barcode(self, barcode: str) -> Optional[Product]:
        code = barcode.strip()
        if not code:
            return None
        return self._db.scalar(
            select(Product).where(Product.barcode == code, Product.active.is_(True))
        )

    def active_products(self) -> list[Product]:
        return list(
            self._db.scalars(select(Product).where(Product.active.is_(True)).order_by(Product.id))
        )

    def products_by_ids(self, ids: set[int]) -> dict[int, Product]:
        if not ids:
            return {}
        return {p.id: p for p in self._db.scalars(select(Product).where(Product.id.in_(ids)))}

    def branches_by_ids(self, ids: set[int]) -> dict[int, Branch]:
        if not ids:
            return {}
        return {b.id: b for b in self._db.scalars(select(Branch).where(Branch.id.in_(ids)))}
