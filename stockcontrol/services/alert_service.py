from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from stockcontrol.errors import NotFound
from stockcontrol.logging_config import get_logger
from stockcontrol.models import ALERT_CRITICAL, ALERT_EXCESS, ALERT_KINDS, ALERT_LOW, Product, StockAlert
from stockcontrol.repositories.catalog_repository import CatalogRepository
from stockcontrol.repositories.stock_repository import StockRepository
from stockcontrol.repositories.threshold_repository import AlertRepository, ThresholdConfigRepository
from stockcontrol.schemas import AlertList, AlertRead, AlertStats
from stockcontrol.services.stock_health import (
    STATE_CRITICAL,
    STATE_EXCESS,
    STATE_LOW,
    Thresholds,
    state_for,
)
from stockcontrol.utils import format_qty, utcnow

logger = get_logger("alerts")

# state -> (alert kind, message template, threshold the message quotes)
_ALERT_RULES = {
    STATE_CRITICAL: (ALERT_CRITICAL, "Stock crítico: {name} tiene solo {qty} unidades (mínimo: {ref})", "min_stock"),
    STATE_LOW: (ALERT_LOW, "Stock bajo: {name} necesita reposición ({qty}/{ref})", "reorder_point"),
    STATE_EXCESS: (ALERT_EXCESS, "Exceso de stock: {name} supera el máximo ({qty}/{ref})", "max_stock"),
}


class AlertService:
    def __init__(self, db: Session):
        self._db = db
        self._alerts = AlertRepository(db)
        self._configs = ThresholdConfigRepository(db)
        self._catalog = CatalogRepository(db)
        self._stocks = StockRepository(db)

    def _refresh_pair(self, product: Product, branch_id: int, quantity: float, thresholds: Thresholds) -> Optional[StockAlert]:
        self._alerts.deactivate_pair(product.id, branch_id)

        rule = _ALERT_RULES.get(state_for(quantity, thresholds))
        if rule is None:
            return None
        kind, template, ref_field = rule
        reference = getattr(thresholds, ref_field)
        message = template.format(name=product.name, qty=format_qty(quantity), ref=format_qty(reference))

        # Reuse the latest row of this kind so a pair never accumulates duplicates
        alert = self._alerts.latest_of_kind(product.id, branch_id, kind)
        if alert is None:
            alert = StockAlert(product_id=product.id, branch_id=branch_id, kind=kind)
            self._alerts.add(alert)
        alert.message = message
        alert.current_quantity = quantity
        alert.reference_quantity = reference
        alert.active = True
        alert.viewed_by = None
        alert.viewed_at = None
        alert.created_at = utcnow()
        return alert

    def recompute_alerts(self, product_id: int, branch_id: int) -> Optional[StockAlert]:
        """Reemplaza las alertas activas del par por la que corresponde a su estado actual.

        Sin efecto (devuelve None) si el par no tiene configuración activa.
        """
        config = self._configs.get(product_id, branch_id)
        if config is None or not config.active:
            return None
        product = self._catalog.get_product(product_id)
        if product is None:
            return None

        quantity = self._stocks.quantity_for(product_id, branch_id)
        alert = self._refresh_pair(product, branch_id, quantity, Thresholds.from_config(config))
        self._db.commit()
        if alert is not None:
            self._db.refresh(alert)
            logger.info("Alert %s active for product %s branch %s (qty=%s)", alert.kind, product_id, branch_id, quantity)
        return alert

    def recompute_alerts_for_branch(self, branch_id: int) -> int:
        """Recalcula todos los pares configurados de la sucursal en una transacción. Devuelve la cantidad de alertas activas."""
        configs = self._configs.list(branch_id=branch_id, active_only=True)
        if not configs:
            return 0
        products = self._catalog.products_by_ids({c.product_id for c in configs})
        quantities = self._stocks.product_quantities([(c.product_id, c.branch_id) for c in configs])

        active = 0
        for config in configs:
            product = products.get(config.product_id)
            if product is None:
                continue
            quantity = quantities.get((config.product_id, branch_id), 0.0)
            if self._refresh_pair(product, branch_id, quantity, Thresholds.from_config(config)) is not None:
                active += 1
        self._db.commit()
        logger.info("Recomputed alerts for branch %s: %s pairs, %s active alerts", branch_id, len(configs), active)
        return active

    def list_alerts(
        self,
        branch_id: Optional[int] = None,
        kind: Optional[str] = None,
        active_only: bool = True,
    ) -> AlertList:
        rows = self._alerts.list(branch_id=branch_id, kind=kind, active=True if active_only else None)
        stats = AlertStats(total=len(rows))
        for a in rows:
            if a.kind in ALERT_KINDS:
                setattr(stats, a.kind, getattr(stats, a.kind) + 1)
            if a.viewed_at is None:
                stats.unviewed += 1
        return AlertList(alerts=[AlertRead.model_validate(a) for a in rows], stats=stats)

    def _get(self, alert_id: int) -> StockAlert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFound("Alert not found")
        return alert

    def acknowledge_alert(self, alert_id: int, actor_id: int) -> StockAlert:
        alert = self._get(alert_id)
        alert.viewed_by = actor_id
        alert.viewed_at = utcnow()
        self._db.commit()
        self._db.refresh(alert)
        return alert

    def deactivate_alert(self, alert_id: int) -> StockAlert:
        alert = self._get(alert_id)
        alert.active = False
        self._db.commit()
        self._db.refresh(alert)
        return alert
