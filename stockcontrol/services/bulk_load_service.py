"""
Cargas masivas y manuales de stock.

El lote se guarda en estado `procesando` antes de correr cualquier línea, así una
carga interrumpida se puede revisar. Las líneas se aplican de a una con el motor de
ajustes; una línea inválida queda como `error` y el lote sigue.
Las alertas de la sucursal se recalculan una sola vez, al terminar.
"""
from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from stockcontrol.errors import InvalidInput, NotFound
from stockcontrol.logging_config import get_logger
from stockcontrol.models import (
    BATCH_COMPLETED,
    BATCH_COMPLETED_WITH_ERRORS,
    BATCH_PROCESSING,
    LINE_ERROR,
    LINE_PROCESSED,
    BulkLoadBatch,
    BulkLoadLine,
    Product,
)
from stockcontrol.repositories.bulk_load_repository import BulkLoadRepository
from stockcontrol.repositories.catalog_repository import CatalogRepository
from stockcontrol.repositories.stock_repository import StockRepository
from stockcontrol.schemas import (
    AdjustmentCreate,
    BatchDetail,
    BatchPage,
    BatchRead,
    BranchRef,
    BulkLoadCreate,
    BulkLoadLineIn,
    BulkLoadLineRead,
    BulkLoadResult,
    BulkLoadSummary,
    LineResult,
    ManualLoadCreate,
    ManualLoadHistoryEntry,
    ManualLoadHistoryPage,
    ManualLoadResult,
    MovementRead,
    ProductRef,
)
from stockcontrol.services.alert_service import AlertService
from stockcontrol.services.stock_service import StockService
from stockcontrol.services.threshold_service import ThresholdConfigService
from stockcontrol.stock_config import StockPolicy, load_stock_policy
from stockcontrol.utils import fold_text, round_half_up, utcnow

logger = get_logger("bulk_load")

_WORD_RE = re.compile(r"[^\W\d_]+")


class ResolutionFailure(Exception):
    pass


def plan_delta(mode: str, current: float, amount: float) -> tuple[float, float]:
    """Devuelve (delta, cantidad esperada) para una línea de carga."""
    if mode == "increment":
        return amount, current + amount
    if mode == "set":
        return amount - current, amount
    if mode == "decrement":
        # The reported expectation never goes below zero; the ledger itself may.
        return -amount, max(0.0, current - amount)
    raise InvalidInput(f"Unknown load mode: {mode}")


def validate_amount(mode: str, amount: Optional[float]) -> float:
    if amount is None:
        raise InvalidInput("amount is required")
    value = float(amount)
    if not math.isfinite(value) or value < 0:
        raise InvalidInput("amount must be a non-negative number")
    if value == 0 and mode != "set":
        raise InvalidInput("amount must be greater than 0")
    return value


class ProductResolver:
    """Busca el producto al que se refiere una línea de carga.

    Orden: id, código de barras y luego nombre (exacto, todas las palabras, substring),
    sin distinguir mayúsculas ni acentos. Solo productos activos.
    """

    def __init__(self, catalog: CatalogRepository, min_token_length: int = 3):
        self._catalog = catalog
        self._min_token_length = min_token_length
        self._products: Optional[list[tuple[str, Product]]] = None

    def _folded_products(self) -> list[tuple[str, Product]]:
        if self._products is None:
            self._products = [(fold_text(p.name), p) for p in self._catalog.active_products()]
        return self._products

    def _by_name(self, name: str) -> Optional[Product]:
        wanted = fold_text(name)
        if not wanted:
            return None
        products = self._folded_products()

        for folded, p in products:
            if folded == wanted:
                return p

        tokens = [t for t in _WORD_RE.findall(wanted) if len(t) >= self._min_token_length]
        if tokens:
            for folded, p in products:
                if all(t in folded for t in tokens):
                    return p

        for folded, p in products:
            if wanted in folded:
                return p
        return None

    def resolve(self, line: BulkLoadLineIn) -> Product:
        if line.product_id is not None:
            product = self._catalog.get_product(line.product_id)
            if product is not None and product.active:
                return product
        if line.barcode:
            product = self._catalog.get_product_by_barcode(line.barcode)
            if product is not None:
                return product
        if line.product_name:
            product = self._by_name(line.product_name)
            if product is not None:
                return product

        ref = line.product_id or line.barcode or line.product_name
        if ref is None:
            raise ResolutionFailure("Line has no product_id, barcode or product name")
        raise ResolutionFailure(f"Product not found: {ref}")


class BulkLoadService:
    def __init__(
        self,
        db: Session,
        stock_service: Optional[StockService] = None,
        policy: Optional[StockPolicy] = None,
    ):
        self._db = db
        self._policy = policy or load_stock_policy()
        self._batches = BulkLoadRepository(db)
        self._catalog = CatalogRepository(db)
        self._stocks = StockRepository(db)
        self._stock_service = stock_service or StockService(db, policy=self._policy)
        self._thresholds = ThresholdConfigService(db, policy=self._policy)
        self._alerts = AlertService(db)

    def _record_error(
        self,
        batch: BulkLoadBatch,
        line_no: int,
        line: BulkLoadLineIn,
        error_kind: str,
        message: str,
        product: Optional[Product] = None,
        quantity_before: Optional[float] = None,
    ) -> LineResult:
        self._batches.add_line(
            BulkLoadLine(
                batch_id=batch.id,
                line_no=line_no,
                product_id=product.id if product is not None else None,
                requested_product_id=line.product_id,
                barcode=line.barcode,
                product_name=line.product_name,
                amount=line.amount if line.amount is not None and math.isfinite(line.amount) else None,
                quantity_before=quantity_before,
                status=LINE_ERROR,
                error_kind=error_kind,
                error=message,
                processed_at=utcnow(),
            )
        )
        self._db.commit()
        logger.warning("Batch %s line %s failed (%s): %s", batch.id, line_no, error_kind, message)
        return LineResult(
            line_no=line_no,
            product=ProductRef.model_validate(product) if product is not None else None,
            quantity_before=quantity_before,
            status=LINE_ERROR,
            error_kind=error_kind,
            error=message,
        )

    def _process_line(
        self,
        batch: BulkLoadBatch,
        resolver: ProductResolver,
        line_no: int,
        line: BulkLoadLineIn,
    ) -> LineResult:
        try:
            amount = validate_amount(batch.mode, line.amount)
        except InvalidInput as e:
            return self._record_error(batch, line_no, line, "InvalidInput", str(e.detail))

        try:
            product = resolver.resolve(line)
        except ResolutionFailure as e:
            return self._record_error(batch, line_no, line, "ResolutionFailure", str(e))

        before = self._stocks.quantity_for(product.id, batch.branch_id)
        delta, expected = plan_delta(batch.mode, before, amount)
        if delta != 0:
            try:
                self._stock_service.adjust_stock(
                    AdjustmentCreate(
                        product_id=product.id,
                        location_id=batch.branch_id,
                        delta=delta,
                        reason=f"{self._policy.bulk_load.reason_prefix}: {batch.id}",
                        actor_id=batch.actor_id,
                        allow_negative=True,
                        bulk_load_batch_id=batch.id,
                    )
                )
            except HTTPException as e:
                return self._record_error(
                    batch, line_no, line, "AdjustmentFailure", str(e.detail), product=product, quantity_before=before
                )

        after = self._stocks.quantity_for(product.id, batch.branch_id)
        self._batches.add_line(
            BulkLoadLine(
                batch_id=batch.id,
                line_no=line_no,
                product_id=product.id,
                requested_product_id=line.product_id,
                barcode=line.barcode,
                product_name=line.product_name,
                amount=amount,
                quantity_before=before,
                quantity_after=after,
                status=LINE_PROCESSED,
                processed_at=utcnow(),
            )
        )
        self._db.commit()
        self._thresholds.ensure_default_config(product.id, batch.branch_id, after, actor_id=batch.actor_id)
        return LineResult(
            line_no=line_no,
            product=ProductRef.model_validate(product),
            quantity_before=before,
            delta=delta,
            expected_quantity=expected,
            quantity_after=after,
            status=LINE_PROCESSED,
        )

    def process_batch(self, payload: BulkLoadCreate) -> BulkLoadResult:
        if not payload.lines:
            raise InvalidInput("lines must not be empty")
        if self._catalog.get_branch(payload.branch_id) is None:
            raise NotFound("Branch not found")

        batch = BulkLoadBatch(
            name=payload.name,
            description=payload.description,
            branch_id=payload.branch_id,
            actor_id=payload.actor_id,
            mode=payload.mode,
            status=BATCH_PROCESSING,
            total_lines=len(payload.lines),
            processed_lines=0,
            error_lines=0,
            started_at=utcnow(),
        )
        self._batches.add_batch(batch)
        self._db.commit()
        self._db.refresh(batch)
        logger.info(
            "Bulk load %s started: branch=%s mode=%s lines=%s (negative balances allowed)",
            batch.id,
            batch.branch_id,
            batch.mode,
            batch.total_lines,
        )

        resolver = ProductResolver(self._catalog, self._policy.bulk_load.min_token_length)
        results = [
            self._process_line(batch, resolver, line_no, line)
            for line_no, line in enumerate(payload.lines, start=1)
        ]

        processed = sum(1 for r in results if r.status == LINE_PROCESSED)
        errors = len(results) - processed
        batch.processed_lines = processed
        batch.error_lines = errors
        batch.status = BATCH_COMPLETED if errors == 0 else BATCH_COMPLETED_WITH_ERRORS
        batch.finished_at = utcnow()
        self._db.commit()
        self._db.refresh(batch)
        logger.info(
            "Bulk load %s finished: status=%s processed=%s errors=%s",
            batch.id,
            batch.status,
            processed,
            errors,
        )

        self._alerts.recompute_alerts_for_branch(batch.branch_id)

        return BulkLoadResult(
            batch=BatchRead.model_validate(batch),
            summary=BulkLoadSummary(
                total=len(results),
                processed=processed,
                errors=errors,
                success_rate_pct=round_half_up(100 * processed / len(results)),
            ),
            line_results=results,
        )

    def manual_load(self, payload: ManualLoadCreate) -> ManualLoadResult:
        product = self._catalog.get_product(payload.product_id)
        if product is None or not product.active:
            raise NotFound("Product not found")
        branch = self._catalog.get_branch(payload.branch_id)
        if branch is None:
            raise NotFound("Branch not found")
        amount = validate_amount(payload.mode, payload.amount)

        before = self._stocks.quantity_for(product.id, branch.id)
        delta, _ = plan_delta(payload.mode, before, amount)
        movement = None
        if delta != 0:
            notes = payload.notes.strip() or payload.mode
            result = self._stock_service.adjust_stock(
                AdjustmentCreate(
                    product_id=product.id,
                    location_id=branch.id,
                    delta=delta,
                    reason=f"{self._policy.bulk_load.manual_reason_prefix}: {notes}",
                    actor_id=payload.actor_id,
                    allow_negative=True,
                )
            )
            movement = result.movement

        after = self._stocks.quantity_for(product.id, branch.id)
        self._thresholds.ensure_default_config(product.id, branch.id, after, actor_id=payload.actor_id)
        self._alerts.recompute_alerts(product.id, branch.id)
        logger.info(
            "Manual load for product %s branch %s: mode=%s %s -> %s",
            product.id,
            branch.id,
            payload.mode,
            before,
            after,
        )
        return ManualLoadResult(
            product=ProductRef.model_validate(product),
            branch=BranchRef.model_validate(branch),
            mode=payload.mode,
            quantity_before=before,
            delta=delta,
            quantity_after=after,
            movement=movement,
        )

    def manual_load_history(
        self,
        branch_id: Optional[int] = None,
        product_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> ManualLoadHistoryPage:
        rows, total = self._stocks.movements_with_reason_prefix(
            self._policy.bulk_load.manual_reason_prefix,
            location_id=branch_id,
            product_id=product_id,
            limit=limit,
            offset=offset,
        )
        return ManualLoadHistoryPage(
            entries=[
                ManualLoadHistoryEntry(
                    movement=MovementRead.model_validate(movement),
                    product=ProductRef.model_validate(product),
                    branch=BranchRef.model_validate(branch),
                    resulting_quantity=float(stock.quantity),
                )
                for movement, stock, product, branch in rows
            ],
            total=total,
            limit=limit,
            offset=offset,
            has_more=total > offset + limit,
        )

    def list_batches(
        self,
        branch_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None,
    ) -> BatchPage:
        rows, total = self._batches.list_batches(
            branch_id=branch_id,
            limit=limit,
            offset=offset,
            started_from=started_from,
            started_to=started_to,
        )
        return BatchPage(
            batches=[BatchRead.model_validate(b) for b in rows],
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(rows) < total,
        )

    def get_batch(self, batch_id: int) -> BatchDetail:
        batch = self._batches.get_batch(batch_id)
        if batch is None:
            raise NotFound("Bulk load batch not found")
        return BatchDetail(
            batch=BatchRead.model_validate(batch),
            lines=[BulkLoadLineRead.model_validate(line) for line in self._batches.lines_for(batch_id)],
        )
