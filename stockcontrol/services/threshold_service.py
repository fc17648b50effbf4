from __future__ import annotations

import math
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockcontrol.errors import InvalidConfiguration, InvalidInput, NotFound
from stockcontrol.logging_config import get_logger
from stockcontrol.models import StockThresholdConfig
from stockcontrol.repositories.catalog_repository import CatalogRepository
from stockcontrol.repositories.stock_repository import StockRepository
from stockcontrol.repositories.threshold_repository import ThresholdConfigRepository
from stockcontrol.schemas import ThresholdConfigRead, ThresholdConfigUpsert
from stockcontrol.services.stock_health import Thresholds, classify, derive_default_thresholds
from stockcontrol.stock_config import StockPolicy, load_stock_policy

logger = get_logger("thresholds")


def validate_thresholds(max_stock: float, min_stock: float, reorder_point: float) -> None:
    values = (max_stock, min_stock, reorder_point)
    if not all(math.isfinite(v) for v in values):
        raise InvalidConfiguration("finite", "Stock thresholds must be finite numbers")
    if max_stock < 0 or min_stock < 0 or reorder_point < 0:
        raise InvalidConfiguration("non_negative", "Stock thresholds cannot be negative")
    if min_stock > max_stock:
        raise InvalidConfiguration("min_le_max", "min_stock cannot be greater than max_stock")
    if reorder_point > max_stock:
        raise InvalidConfiguration("reorder_le_max", "reorder_point cannot be greater than max_stock")


class ThresholdConfigService:
    """Mínimo, máximo y punto de reposición por (producto, sucursal).

    El upsert no recalcula alertas; eso queda a cargo de quien llama (AlertService).
    """

    def __init__(self, db: Session, policy: Optional[StockPolicy] = None):
        self._db = db
        self._policy = policy or load_stock_policy()
        self._configs = ThresholdConfigRepository(db)
        self._catalog = CatalogRepository(db)
        self._stocks = StockRepository(db)

    def _validate(self, payload: ThresholdConfigUpsert) -> None:
        if self._catalog.get_product(payload.product_id) is None:
            raise NotFound("Product not found")
        if self._catalog.get_branch(payload.branch_id) is None:
            raise NotFound("Branch not found")
        validate_thresholds(payload.max_stock, payload.min_stock, payload.reorder_point)

    def upsert(self, payload: ThresholdConfigUpsert) -> StockThresholdConfig:
        self._validate(payload)

        config = self._configs.get(payload.product_id, payload.branch_id)
        created = config is None
        if config is None:
            config = StockThresholdConfig(
                product_id=payload.product_id,
                branch_id=payload.branch_id,
                created_by=payload.actor_id,
                active=True,
            )
            self._configs.add(config)
        config.max_stock = payload.max_stock
        config.min_stock = payload.min_stock
        config.reorder_point = payload.reorder_point

        try:
            self._db.commit()
        except IntegrityError as e:
            self._db.rollback()
            raise InvalidInput("Threshold config already exists for this product and branch", status_code=409) from e
        self._db.refresh(config)
        logger.info(
            "Threshold config %s for product %s branch %s: max=%s min=%s reorder=%s",
            "created" if created else "updated",
            config.product_id,
            config.branch_id,
            config.max_stock,
            config.min_stock,
            config.reorder_point,
        )
        return config

    def get(self, product_id: int, branch_id: int) -> Optional[StockThresholdConfig]:
        return self._configs.get(product_id, branch_id)

    def list(
        self,
        branch_id: Optional[int] = None,
        product_id: Optional[int] = None,
        include_stats: bool = False,
    ) -> list[ThresholdConfigRead]:
        configs = self._configs.list(branch_id=branch_id, product_id=product_id)
        if not include_stats:
            return [ThresholdConfigRead.model_validate(c) for c in configs]

        quantities = self._stocks.product_quantities([(c.product_id, c.branch_id) for c in configs])
        out: list[ThresholdConfigRead] = []
        for c in configs:
            row = ThresholdConfigRead.model_validate(c)
            qty = quantities.get((c.product_id, c.branch_id), 0.0)
            row.classification = classify(qty, Thresholds.from_config(c))
            out.append(row)
        return out

    def ensure_default_config(
        self, product_id: int, branch_id: int, current_qty: float, actor_id: Optional[int] = None
    ) -> Optional[StockThresholdConfig]:
        """Crea una configuración derivada para el par si todavía no tiene una.

        Devuelve la configuración nueva, o None si el par ya estaba configurado.
        """
        if self._configs.get(product_id, branch_id) is not None:
            return None
        product = self._catalog.get_product(product_id)
        if product is None:
            raise NotFound("Product not found")

        defaults = derive_default_thresholds(product.min_stock, current_qty, self._policy.defaults)
        config = StockThresholdConfig(
            product_id=product_id,
            branch_id=branch_id,
            max_stock=defaults.max_stock,
            min_stock=defaults.min_stock,
            reorder_point=defaults.reorder_point,
            created_by=actor_id,
            active=True,
        )
        self._configs.add(config)
        try:
            self._db.commit()
        except IntegrityError:
            # Someone else provisioned the pair first
            self._db.rollback()
            return None
        self._db.refresh(config)
        logger.info(
            "Auto-provisioned threshold config for product %s branch %s (max=%s min=%s reorder=%s)",
            product_id,
            branch_id,
            config.max_stock,
            config.min_stock,
            config.reorder_point,
        )
        return config
