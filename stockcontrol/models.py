from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockcontrol.db import Base

MOVEMENT_ENTRY = "entry"
MOVEMENT_EXIT = "exit"

ALERT_CRITICAL = "critico"
ALERT_LOW = "bajo"
ALERT_EXCESS = "exceso"
ALERT_REORDER = "reposicion"
ALERT_KINDS = (ALERT_CRITICAL, ALERT_LOW, ALERT_EXCESS, ALERT_REORDER)

BATCH_PROCESSING = "procesando"
BATCH_COMPLETED = "completado"
BATCH_COMPLETED_WITH_ERRORS = "completado_con_errores"

LINE_PROCESSED = "processed"
LINE_ERROR = "error"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="operator", server_default="operator")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(64), index=True)
    entity_type: Mapped[str] = mapped_column(String(64), index=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Branch(Base):
    __tablename__ = "branches"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="sucursal", server_default="sucursal")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    barcode: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    min_stock: Mapped[float] = mapped_column(
        Numeric(14, 4, asdecimal=False), nullable=False, default=0, server_default="0"
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class Supply(Base):
    __tablename__ = "supplies"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    unit_of_measure: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    min_stock: Mapped[float] = mapped_column(
        Numeric(14, 4, asdecimal=False), nullable=False, default=0, server_default="0"
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class Stock(Base):
    __tablename__ = "stocks"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_stocks_product_location"),
        UniqueConstraint("supply_id", "location_id", name="uq_stocks_supply_location"),
        CheckConstraint(
            "(product_id IS NULL) <> (supply_id IS NULL)",
            name="ck_stocks_single_item",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[Optional[int]] = mapped_column(ForeignKey("products.id"), nullable=True, index=True)
    supply_id: Mapped[Optional[int]] = mapped_column(ForeignKey("supplies.id"), nullable=True, index=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), index=True)
    quantity: Mapped[float] = mapped_column(
        Numeric(14, 4, asdecimal=False), nullable=False, default=0, server_default="0"
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    stock_id: Mapped[int] = mapped_column(ForeignKey("stocks.id"), index=True)
    direction: Mapped[str] = mapped_column(String(8), index=True)
    quantity: Mapped[float] = mapped_column(Numeric(14, 4, asdecimal=False))
    reason: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    sale_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    shipment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    production_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    bulk_load_batch_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("bulk_load_batches.id"), nullable=True, index=True
    )


class StockThresholdConfig(Base):
    __tablename__ = "stock_threshold_configs"
    __table_args__ = (
        UniqueConstraint("product_id", "branch_id", name="uq_threshold_product_branch"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), index=True)
    max_stock: Mapped[float] = mapped_column(Numeric(14, 4, asdecimal=False))
    min_stock: Mapped[float] = mapped_column(Numeric(14, 4, asdecimal=False))
    reorder_point: Mapped[float] = mapped_column(Numeric(14, 4, asdecimal=False))
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class StockAlert(Base):
    __tablename__ = "stock_alerts"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), index=True)
    kind: Mapped[str] = mapped_column(String(16), index=True)
    message: Mapped[str] = mapped_column(String(512))
    current_quantity: Mapped[float] = mapped_column(Numeric(14, 4, asdecimal=False))
    reference_quantity: Mapped[float] = mapped_column(Numeric(14, 4, asdecimal=False))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true", index=True)
    viewed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class BulkLoadBatch(Base):
    __tablename__ = "bulk_load_batches"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), index=True)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    mode: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(32), index=True, default=BATCH_PROCESSING)
    total_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class BulkLoadLine(Base):
    __tablename__ = "bulk_load_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("bulk_load_batches.id"), index=True)
    line_no: Mapped[int] = mapped_column(Integer)
    product_id: Mapped[Optional[int]] = mapped_column(ForeignKey("products.id"), nullable=True, index=True)
    requested_product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    barcode: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[Optional[float]] = mapped_column(Numeric(14, 4, asdecimal=False), nullable=True)
    quantity_before: Mapped[Optional[float]] = mapped_column(Numeric(14, 4, asdecimal=False), nullable=True)
    quantity_after: Mapped[Optional[float]] = mapped_column(Numeric(14, 4, asdecimal=False), nullable=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    error_kind: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
