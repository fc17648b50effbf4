from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

HealthState = Literal["critico", "bajo", "normal", "exceso"]
LoadMode = Literal["increment", "set", "decrement"]


class AdjustmentCreate(BaseModel):
    product_id: Optional[int] = None
    supply_id: Optional[int] = None
    location_id: int
    delta: float
    reason: str = "manual adjustment"
    actor_id: Optional[int] = None
    allow_negative: bool = False
    sale_id: Optional[str] = None
    shipment_id: Optional[str] = None
    production_id: Optional[str] = None
    bulk_load_batch_id: Optional[int] = None


class BalanceRead(BaseModel):
    id: int
    product_id: Optional[int]
    supply_id: Optional[int]
    location_id: int
    quantity: float
    version: int
    last_updated: datetime

    model_config = {"from_attributes": True}


class MovementRead(BaseModel):
    id: int
    stock_id: int
    direction: str
    quantity: float
    reason: str
    created_at: datetime
    actor_id: Optional[int]
    sale_id: Optional[str] = None
    shipment_id: Optional[str] = None
    production_id: Optional[str] = None
    bulk_load_batch_id: Optional[int] = None

    model_config = {"from_attributes": True}


class AdjustmentResult(BaseModel):
    balance: BalanceRead
    movement: MovementRead


class StockAvailability(BaseModel):
    available: bool
    current: float
    required: float


class ProductRef(BaseModel):
    id: int
    name: str
    barcode: Optional[str] = None

    model_config = {"from_attributes": True}


class BranchRef(BaseModel):
    id: int
    name: str
    type: Optional[str] = None

    model_config = {"from_attributes": True}


class LowStockRead(BaseModel):
    product: ProductRef
    branch: BranchRef
    quantity: float
    min_stock: float


class SupplyRef(BaseModel):
    id: int
    name: str
    unit_of_measure: Optional[str] = None

    model_config = {"from_attributes": True}


class LowSupplyStockRead(BaseModel):
    supply: SupplyRef
    branch: BranchRef
    quantity: float
    min_stock: float


class Inconsistency(BaseModel):
    kind: Literal["NegativeBalance", "LedgerDrift"]
    stock_id: int
    product_id: Optional[int] = None
    supply_id: Optional[int] = None
    location_id: int
    current: float
    computed: Optional[float] = None
    delta: Optional[float] = None


class RepairDetail(BaseModel):
    stock_id: int
    kind: str
    status: Literal["repaired", "failed", "skipped"]
    quantity_before: float
    quantity_after: Optional[float] = None
    movement_id: Optional[int] = None
    error: Optional[str] = None


class RepairSummary(BaseModel):
    total: int
    repaired: int
    failed: int
    skipped: int = 0
    details: list[RepairDetail] = Field(default_factory=list)


class ThresholdConfigUpsert(BaseModel):
    product_id: int
    branch_id: int
    max_stock: float
    min_stock: float
    reorder_point: float
    actor_id: Optional[int] = None


class Classification(BaseModel):
    quantity: float
    diff: float
    diff_pct: int
    utilization_pct: int
    state: HealthState
    priority: int
    needs_reorder: bool
    can_load_more: bool
    suggested_qty: float
    has_excess: bool
    excess_amount: float


class ThresholdConfigRead(BaseModel):
    id: int
    product_id: int
    branch_id: int
    max_stock: float
    min_stock: float
    reorder_point: float
    created_by: Optional[int]
    active: bool
    created_at: datetime
    updated_at: datetime
    classification: Optional[Classification] = None

    model_config = {"from_attributes": True}


class ThresholdsRead(BaseModel):
    max_stock: float
    min_stock: float
    reorder_point: float


class DashboardEntry(BaseModel):
    config_id: Optional[int] = None
    product: ProductRef
    branch: BranchRef
    thresholds: ThresholdsRead
    has_explicit_config: bool
    classification: Classification


class DashboardStats(BaseModel):
    total: int = 0
    critico: int = 0
    bajo: int = 0
    normal: int = 0
    exceso: int = 0
    needs_reorder: int = 0
    with_excess: int = 0
    explicit: int = 0
    inferred: int = 0


class BranchSummary(BaseModel):
    branch: BranchRef
    total: int = 0
    critico: int = 0
    bajo: int = 0
    normal: int = 0
    exceso: int = 0
    explicit: int = 0
    inferred: int = 0


class DashboardReport(BaseModel):
    stats: DashboardStats
    branch_summaries: list[BranchSummary]
    full_analysis: list[DashboardEntry]
    top_deficit: list[DashboardEntry]
    top_excess: list[DashboardEntry]
    generated_at: datetime


class AlertRead(BaseModel):
    id: int
    product_id: int
    branch_id: int
    kind: str
    message: str
    current_quantity: float
    reference_quantity: float
    active: bool
    viewed_by: Optional[int]
    viewed_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class AlertStats(BaseModel):
    total: int = 0
    critico: int = 0
    bajo: int = 0
    exceso: int = 0
    reposicion: int = 0
    unviewed: int = 0


class AlertList(BaseModel):
    alerts: list[AlertRead]
    stats: AlertStats


class AlertAcknowledge(BaseModel):
    actor_id: int


class AlertRecompute(BaseModel):
    branch_id: int
    product_id: Optional[int] = None


class BulkLoadLineIn(BaseModel):
    product_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("product_id", "productoId"))
    barcode: Optional[str] = Field(default=None, validation_alias=AliasChoices("barcode", "codigoBarras"))
    product_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("product_name", "name", "nombreProducto")
    )
    amount: Optional[float] = Field(default=None, validation_alias=AliasChoices("amount", "cantidad"))

    model_config = {"populate_by_name": True}


class BulkLoadCreate(BaseModel):
    name: str
    description: Optional[str] = None
    branch_id: int
    mode: LoadMode = "increment"
    lines: list[BulkLoadLineIn]
    actor_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def name_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()


class BatchRead(BaseModel):
    id: int
    name: str
    description: Optional[str]
    branch_id: int
    actor_id: Optional[int]
    mode: str
    status: str
    total_lines: int
    processed_lines: int
    error_lines: int
    started_at: datetime
    finished_at: Optional[datetime]

    model_config = {"from_attributes": True}


class BulkLoadLineRead(BaseModel):
    id: int
    line_no: int
    product_id: Optional[int]
    requested_product_id: Optional[int]
    barcode: Optional[str]
    product_name: Optional[str]
    amount: Optional[float]
    quantity_before: Optional[float]
    quantity_after: Optional[float]
    status: str
    error_kind: Optional[str]
    error: Optional[str]
    processed_at: Optional[datetime]

    model_config = {"from_attributes": True}


class LineResult(BaseModel):
    line_no: int
    product: Optional[ProductRef] = None
    quantity_before: Optional[float] = None
    delta: Optional[float] = None
    expected_quantity: Optional[float] = None
    quantity_after: Optional[float] = None
    status: Literal["processed", "error"]
    error_kind: Optional[Literal["InvalidInput", "ResolutionFailure", "AdjustmentFailure"]] = None
    error: Optional[str] = None


class BulkLoadSummary(BaseModel):
    total: int
    processed: int
    errors: int
    success_rate_pct: int


class BulkLoadResult(BaseModel):
    batch: BatchRead
    summary: BulkLoadSummary
    line_results: list[LineResult]


class BatchDetail(BaseModel):
    batch: BatchRead
    lines: list[BulkLoadLineRead]


class BatchPage(BaseModel):
    batches: list[BatchRead]
    total: int
    limit: int
    offset: int
    has_more: bool


class ManualLoadCreate(BaseModel):
    product_id: int
    branch_id: int
    amount: float
    mode: LoadMode = "increment"
    notes: str = ""
    actor_id: Optional[int] = None

    @field_validator("amount")
    @classmethod
    def amount_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("amount must be greater than 0")
        return v


class ManualLoadResult(BaseModel):
    product: ProductRef
    branch: BranchRef
    mode: LoadMode
    quantity_before: float
    delta: float
    quantity_after: float
    movement: Optional[MovementRead] = None


class ManualLoadHistoryEntry(BaseModel):
    movement: MovementRead
    product: ProductRef
    branch: BranchRef
    # Current balance of the pair, not the balance right after this movement
    resulting_quantity: float


class ManualLoadHistoryPage(BaseModel):
    entries: list[ManualLoadHistoryEntry]
    total: int
    limit: int
    offset: int
    has_more: bool


class StockReport(BaseModel):
    configs: list[ThresholdConfigRead]
    batch_history: list[BatchRead]
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    generated_at: datetime
