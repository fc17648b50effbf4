from __future__ import annotations

from typing import Optional

from fastapi import HTTPException


class InvalidInput(HTTPException):
    def __init__(self, detail: str, status_code: int = 422):
        super().__init__(status_code=status_code, detail=detail)


class NotFound(InvalidInput):
    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=404)


class InvalidConfiguration(InvalidInput):
    """Una configuración de umbrales viola alguna de sus reglas numéricas."""

    def __init__(self, rule: str, detail: str):
        super().__init__(detail=detail)
        self.rule = rule


class InsufficientStock(HTTPException):
    def __init__(self, available: float, requested: float):
        super().__init__(
            status_code=409,
            detail=f"Insufficient stock: available {available:g}, requested {requested:g}",
        )
        self.available = available
        self.requested = requested


class Unavailable(HTTPException):
    def __init__(self, detail: str = "Stock ledger unavailable", cause: Optional[BaseException] = None):
        super().__init__(status_code=503, detail=detail)
        self.cause = cause
