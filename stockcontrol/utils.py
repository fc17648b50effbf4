from __future__ import annotations

import math
import unicodedata
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fold_text(value: str) -> str:
    """Pasa a minúsculas y quita acentos, así 'Bambú' se compara como 'bambu'."""
    decomposed = unicodedata.normalize("NFKD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold().strip()


def name_sort_key(name: str) -> tuple[str, str]:
    """Orden de nombres de producto sin distinguir mayúsculas ni acentos."""
    return (fold_text(name), name or "")


def format_qty(value: float) -> str:
    return f"{float(value):g}"


def round_half_up(value: float) -> int:
    """Redondeo de porcentajes: 0.5 sube, como en los reportes."""
    return int(math.floor(value + 0.5))
