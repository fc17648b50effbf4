"""
Clasificación del estado de stock.

Una sola función pura, `classify`, convierte una cantidad y sus umbrales en un
estado más las acciones derivadas. Las filas del tablero son de dos tipos:
configuradas (con configuración explícita) e inferidas (umbrales derivados del
mínimo de catálogo y la cantidad actual). Ambas pasan por `classify` vía
`ClassifiableEntry.thresholds`.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union

from stockcontrol.models import StockThresholdConfig
from stockcontrol.schemas import Classification
from stockcontrol.stock_config import DefaultThresholdPolicy
from stockcontrol.utils import round_half_up

STATE_CRITICAL = "critico"
STATE_LOW = "bajo"
STATE_EXCESS = "exceso"
STATE_NORMAL = "normal"

PRIORITY = {
    STATE_CRITICAL: 4,
    STATE_LOW: 3,
    STATE_EXCESS: 2,
    STATE_NORMAL: 1,
}


@dataclass(frozen=True)
class Thresholds:
    max_stock: float
    min_stock: float
    reorder_point: float

    @classmethod
    def from_config(cls, config: StockThresholdConfig) -> "Thresholds":
        return cls(
            max_stock=float(config.max_stock),
            min_stock=float(config.min_stock),
            reorder_point=float(config.reorder_point),
        )


@dataclass(frozen=True)
class Configured:
    config: StockThresholdConfig

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds.from_config(self.config)

    @property
    def has_explicit_config(self) -> bool:
        return True


@dataclass(frozen=True)
class Inferred:
    defaults: Thresholds

    @property
    def thresholds(self) -> Thresholds:
        return self.defaults

    @property
    def has_explicit_config(self) -> bool:
        return False


ClassifiableEntry = Union[Configured, Inferred]


def derive_default_thresholds(
    catalog_min: Optional[float],
    current_qty: float,
    policy: Optional[DefaultThresholdPolicy] = None,
) -> Thresholds:
    p = policy or DefaultThresholdPolicy()
    min_stock = max(float(catalog_min or 0), p.min_floor)
    max_stock = max(p.max_qty_factor * float(current_qty), p.max_min_factor * min_stock, p.max_floor)
    reorder_point = float(math.ceil(p.reorder_factor * min_stock))
    return Thresholds(max_stock=max_stock, min_stock=min_stock, reorder_point=reorder_point)


def state_for(quantity: float, thresholds: Thresholds) -> str:
    if quantity <= thresholds.min_stock:
        return STATE_CRITICAL
    if quantity <= thresholds.reorder_point:
        return STATE_LOW
    if quantity > thresholds.max_stock:
        return STATE_EXCESS
    return STATE_NORMAL


def classify(quantity: float, thresholds: Thresholds) -> Classification:
    qty = float(quantity)
    max_stock = thresholds.max_stock
    diff = max_stock - qty
    state = state_for(qty, thresholds)
    return Classification(
        quantity=qty,
        diff=diff,
        diff_pct=round_half_up(100 * diff / max_stock) if max_stock > 0 else 0,
        utilization_pct=round_half_up(100 * qty / max_stock) if max_stock > 0 else 0,
        state=state,
        priority=PRIORITY[state],
        needs_reorder=qty <= thresholds.reorder_point,
        can_load_more=qty < max_stock,
        suggested_qty=max(0.0, max_stock - qty),
        has_excess=qty > max_stock,
        excess_amount=max(0.0, qty - max_stock),
    )


def classify_entry(quantity: float, entry: ClassifiableEntry) -> Classification:
    return classify(quantity, entry.thresholds)
