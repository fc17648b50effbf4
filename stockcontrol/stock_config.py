from __future__ import annotations

import configparser
import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class AuditPolicy(BaseModel):
    drift_epsilon: float = 1e-3
    correction_reason: str = "automatic correction"


class DashboardPolicy(BaseModel):
    top_n: int = 10


class DefaultThresholdPolicy(BaseModel):
    """Fórmula para filas inferidas y configuraciones creadas automáticamente.

    min = max(catalog_min, min_floor)
    max = max(max_qty_factor * qty, max_min_factor * min, max_floor)
    reorder = ceil(reorder_factor * min)
    """

    min_floor: float = 1
    max_qty_factor: float = 3
    max_min_factor: float = 5
    max_floor: float = 10
    reorder_factor: float = 1.5


class AuthorizationPolicy(BaseModel):
    privileged_roles: List[str] = Field(default_factory=lambda: ["admin"])


class AdjustmentPolicy(BaseModel):
    max_retries: int = 3


class BulkLoadPolicy(BaseModel):
    reason_prefix: str = "bulk load"
    manual_reason_prefix: str = "manual load"
    min_token_length: int = 3


class StockPolicy(BaseModel):
    audit: AuditPolicy = Field(default_factory=AuditPolicy)
    dashboard: DashboardPolicy = Field(default_factory=DashboardPolicy)
    defaults: DefaultThresholdPolicy = Field(default_factory=DefaultThresholdPolicy)
    authorization: AuthorizationPolicy = Field(default_factory=AuthorizationPolicy)
    adjustment: AdjustmentPolicy = Field(default_factory=AdjustmentPolicy)
    bulk_load: BulkLoadPolicy = Field(default_factory=BulkLoadPolicy)


_cached_policies: Dict[str, Tuple[StockPolicy, float]] = {}


def load_stock_policy(path_override: Optional[str] = None) -> StockPolicy:
    path = Path(path_override or os.getenv("STOCK_CONFIG_PATH", "stockcontrol/stock_config.conf"))
    path_str = str(path)

    mtime = 0.0
    if path.exists():
        mtime = float(path.stat().st_mtime)

    cached = _cached_policies.get(path_str)
    if cached is not None and cached[1] == mtime:
        return cached[0]

    if not path.exists():
        policy = StockPolicy()
        _cached_policies[path_str] = (policy, mtime)
        return policy

    if path.suffix.lower() == ".json":
        policy = StockPolicy.model_validate(json.loads(path.read_text(encoding="utf-8")))
        _cached_policies[path_str] = (policy, mtime)
        return policy

    parser = configparser.ConfigParser()
    parser.read(path, encoding="utf-8")

    def get(section: str, key: str, default: str) -> str:
        return (parser.get(section, key, fallback=default) or "").strip() or default

    def get_float(section: str, key: str, default: float) -> float:
        raw = get(section, key, str(default)).replace(",", ".")
        try:
            return float(raw)
        except ValueError as e:
            raise ValueError(f"{path_str}: [{section}] {key} must be numeric, got {raw!r}") from e

    def get_int(section: str, key: str, default: int) -> int:
        return int(get_float(section, key, default))

    def get_list(section: str, key: str, default: List[str]) -> List[str]:
        raw = get(section, key, "")
        parts = [p.strip() for p in raw.split(",") if p.strip()]
        return parts or list(default)

    policy = StockPolicy(
        audit=AuditPolicy(
            drift_epsilon=get_float("audit", "drift_epsilon", 1e-3),
            correction_reason=get("audit", "correction_reason", "automatic correction"),
        ),
        dashboard=DashboardPolicy(top_n=get_int("dashboard", "top_n", 10)),
        defaults=DefaultThresholdPolicy(
            min_floor=get_float("defaults", "min_floor", 1),
            max_qty_factor=get_float("defaults", "max_qty_factor", 3),
            max_min_factor=get_float("defaults", "max_min_factor", 5),
            max_floor=get_float("defaults", "max_floor", 10),
            reorder_factor=get_float("defaults", "reorder_factor", 1.5),
        ),
        authorization=AuthorizationPolicy(
            privileged_roles=[r.lower() for r in get_list("authorization", "privileged_roles", ["admin"])],
        ),
        adjustment=AdjustmentPolicy(max_retries=max(get_int("adjustment", "max_retries", 3), 1)),
        bulk_load=BulkLoadPolicy(
            reason_prefix=get("bulk_load", "reason_prefix", "bulk load"),
            manual_reason_prefix=get("bulk_load", "manual_reason_prefix", "manual load"),
            min_token_length=get_int("bulk_load", "min_token_length", 3),
        ),
    )
    _cached_policies[path_str] = (policy, mtime)
    return policy
