from __future__ import annotations

import math
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stockcontrol.errors import InsufficientStock, InvalidInput, NotFound, Unavailable
from stockcontrol.logging_config import get_logger
from stockcontrol.models import MOVEMENT_ENTRY, MOVEMENT_EXIT, Stock, StockMovement
from stockcontrol.repositories.catalog_repository import CatalogRepository
from stockcontrol.repositories.stock_repository import StockRepository
from stockcontrol.schemas import (
    AdjustmentCreate,
    AdjustmentResult,
    BalanceRead,
    BranchRef,
    LowStockRead,
    LowSupplyStockRead,
    MovementRead,
    ProductRef,
    StockAvailability,
    SupplyRef,
)
from stockcontrol.services.authorization import (
    AuthorizationProvider,
    Privilege,
    RoleAuthorizationProvider,
    may_go_negative,
)
from stockcontrol.stock_config import StockPolicy, load_stock_policy
from stockcontrol.utils import utcnow

logger = get_logger("stock")


class _VersionConflict(Exception):
    """Otro escritor cambió la versión del saldo entre la lectura y el update."""


class StaleBalance(Exception):
    """El saldo cambió después de que quien llama lo leyó."""

    def __init__(self, stock_id: int, expected_version: int, actual_version: int):
        super().__init__(
            f"Balance {stock_id} changed (version {expected_version} -> {actual_version})"
        )
        self.stock_id = stock_id


class StockService:
    """Única vía de escritura de saldos: cada cambio es un update del saldo más un movimiento."""

    def __init__(
        self,
        db: Session,
        authorization: Optional[AuthorizationProvider] = None,
        policy: Optional[StockPolicy] = None,
    ):
        self._db = db
        self._policy = policy or load_stock_policy()
        self._stocks = StockRepository(db)
        self._catalog = CatalogRepository(db)
        self._authorization = authorization or RoleAuthorizationProvider(
            db, self._policy.authorization.privileged_roles
        )

    def _validate(self, payload: AdjustmentCreate) -> None:
        if (payload.product_id is None) == (payload.supply_id is None):
            raise InvalidInput("Exactly one of product_id or supply_id is required")
        if not math.isfinite(payload.delta) or payload.delta == 0:
            raise InvalidInput("delta must be a non-zero number")
        if not (payload.reason or "").strip():
            raise InvalidInput("reason must not be empty")
        if self._catalog.get_branch(payload.location_id) is None:
            raise NotFound("Location not found")
        if payload.product_id is not None and self._catalog.get_product(payload.product_id) is None:
            raise NotFound("Product not found")
        if payload.supply_id is not None and self._catalog.get_supply(payload.supply_id) is None:
            raise NotFound("Supply not found")

    def _may_go_negative(self, payload: AdjustmentCreate) -> bool:
        if payload.allow_negative:
            return True
        privilege = self._authorization.privilege_for(payload.actor_id)
        if privilege is Privilege.UNKNOWN:
            logger.warning(
                "Privilege unknown for actor %s, treating as unprivileged", payload.actor_id
            )
        return may_go_negative(privilege, payload.allow_negative)

    def _apply(
        self, payload: AdjustmentCreate, expected_version: Optional[int]
    ) -> tuple[Stock, StockMovement]:
        now = utcnow()
        delta = float(payload.delta)
        stock = self._stocks.find_balance(
            payload.location_id,
            product_id=payload.product_id,
            supply_id=payload.supply_id,
            for_update=True,
        )

        if stock is None:
            if expected_version is not None:
                raise StaleBalance(0, expected_version, -1)
            if delta < 0 and not self._may_go_negative(payload):
                raise InsufficientStock(available=0.0, requested=-delta)
            stock = Stock(
                product_id=payload.product_id,
                supply_id=payload.supply_id,
                location_id=payload.location_id,
                quantity=0.0 if delta < 0 else delta,
                version=0,
                last_updated=now,
            )
            self._stocks.add_balance(stock)
            self._db.flush()
            if delta < 0 and not self._stocks.compare_and_swap(stock.id, 0, delta, now):
                raise _VersionConflict()
        else:
            if expected_version is not None and stock.version != expected_version:
                raise StaleBalance(stock.id, expected_version, stock.version)
            current = float(stock.quantity)
            if current + delta < 0 and not self._may_go_negative(payload):
                raise InsufficientStock(available=current, requested=-delta)
            if not self._stocks.compare_and_swap(stock.id, stock.version, delta, now):
                raise _VersionConflict()

        movement = StockMovement(
            stock_id=stock.id,
            direction=MOVEMENT_ENTRY if delta > 0 else MOVEMENT_EXIT,
            quantity=abs(delta),
            reason=payload.reason.strip(),
            created_at=now,
            actor_id=payload.actor_id,
            sale_id=payload.sale_id,
            shipment_id=payload.shipment_id,
            production_id=payload.production_id,
            bulk_load_batch_id=payload.bulk_load_batch_id,
        )
        self._stocks.add_movement(movement)
        self._db.flush()

        refreshed = self._stocks.get(stock.id)
        return refreshed if refreshed is not None else stock, movement

    def adjust_stock(
        self, payload: AdjustmentCreate, expected_version: Optional[int] = None
    ) -> AdjustmentResult:
        """Aplica un delta con signo a un saldo y registra su movimiento, en una sola transacción.

        expected_version fija el saldo a una versión ya leída por quien llama;
        si cambió, se lanza StaleBalance y no se escribe nada.
        """
        self._validate(payload)

        attempts = self._policy.adjustment.max_retries
        for attempt in range(1, attempts + 1):
            try:
                stock, movement = self._apply(payload, expected_version)
                self._db.commit()
            except (_VersionConflict, IntegrityError):
                self._db.rollback()
                logger.debug(
                    "Balance write conflict (attempt %s/%s) for location %s item %s/%s",
                    attempt,
                    attempts,
                    payload.location_id,
                    payload.product_id,
                    payload.supply_id,
                )
                continue
            except (HTTPException, StaleBalance):
                self._db.rollback()
                raise
            except SQLAlchemyError as e:
                self._db.rollback()
                logger.error("Stock adjustment failed: %s", e)
                raise Unavailable(cause=e) from e

            logger.info(
                "Stock adjusted: stock=%s delta=%s quantity=%s version=%s reason=%r actor=%s",
                stock.id,
                payload.delta,
                stock.quantity,
                stock.version,
                movement.reason,
                payload.actor_id,
            )
            return AdjustmentResult(
                balance=BalanceRead.model_validate(stock),
                movement=MovementRead.model_validate(movement),
            )

        raise Unavailable("Concurrent updates kept conflicting on this balance")

    def get_balance(
        self,
        location_id: int,
        product_id: Optional[int] = None,
        supply_id: Optional[int] = None,
    ) -> BalanceRead:
        if (product_id is None) == (supply_id is None):
            raise InvalidInput("Exactly one of product_id or supply_id is required")
        stock = self._stocks.find_balance(location_id, product_id=product_id, supply_id=supply_id)
        if stock is None:
            raise NotFound("Stock not found")
        return BalanceRead.model_validate(stock)

    def list_balances(
        self,
        location_id: Optional[int] = None,
        product_id: Optional[int] = None,
        supply_id: Optional[int] = None,
    ) -> list[BalanceRead]:
        return [
            BalanceRead.model_validate(s)
            for s in self._stocks.list_balances(
                location_id=location_id, product_id=product_id, supply_id=supply_id
            )
        ]

    def movement_history(
        self,
        location_id: Optional[int] = None,
        product_id: Optional[int] = None,
        supply_id: Optional[int] = None,
        limit: int = 100,
    ) -> list[MovementRead]:
        return [
            MovementRead.model_validate(m)
            for m in self._stocks.movement_history(
                location_id=location_id, product_id=product_id, supply_id=supply_id, limit=limit
            )
        ]

    def check_available(self, product_id: int, location_id: int, required: float) -> StockAvailability:
        if required < 0:
            raise InvalidInput("required must be >= 0")
        current = self._stocks.quantity_for(product_id, location_id)
        return StockAvailability(available=current >= required, current=current, required=required)

    def low_stock(self, location_id: Optional[int] = None) -> list[LowStockRead]:
        return [
            LowStockRead(
                product=ProductRef.model_validate(product),
                branch=BranchRef.model_validate(branch),
                quantity=float(stock.quantity),
                min_stock=float(product.min_stock or 0),
            )
            for stock, product, branch in self._stocks.low_stock(location_id=location_id)
        ]

    def low_supply_stock(self, location_id: Optional[int] = None) -> list[LowSupplyStockRead]:
        return [
            LowSupplyStockRead(
                supply=SupplyRef.model_validate(supply),
                branch=BranchRef.model_validate(branch),
                quantity=float(stock.quantity),
                min_stock=float(supply.min_stock or 0),
            )
            for stock, supply, branch in self._stocks.low_supply_stock(location_id=location_id)
        ]
