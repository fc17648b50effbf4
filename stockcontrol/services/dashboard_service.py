from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from stockcontrol.errors import InvalidInput
from stockcontrol.logging_config import get_logger
from stockcontrol.repositories.bulk_load_repository import BulkLoadRepository
from stockcontrol.repositories.catalog_repository import CatalogRepository
from stockcontrol.repositories.stock_repository import StockRepository
from stockcontrol.repositories.threshold_repository import ThresholdConfigRepository
from stockcontrol.schemas import (
    BatchRead,
    BranchRef,
    BranchSummary,
    DashboardEntry,
    DashboardReport,
    DashboardStats,
    ProductRef,
    StockReport,
    ThresholdsRead,
)
from stockcontrol.services.stock_health import (
    ClassifiableEntry,
    Configured,
    Inferred,
    classify_entry,
    derive_default_thresholds,
)
from stockcontrol.services.threshold_service import ThresholdConfigService
from stockcontrol.stock_config import StockPolicy, load_stock_policy
from stockcontrol.utils import name_sort_key, utcnow

logger = get_logger("dashboard")


def _entry_sort_key(entry: DashboardEntry):
    return (name_sort_key(entry.product.name), entry.product.id, name_sort_key(entry.branch.name))


def _tally(target, entry: DashboardEntry) -> None:
    target.total += 1
    state = entry.classification.state
    setattr(target, state, getattr(target, state) + 1)
    if entry.has_explicit_config:
        target.explicit += 1
    else:
        target.inferred += 1


class DashboardService:
    def __init__(self, db: Session, policy: Optional[StockPolicy] = None):
        self._policy = policy or load_stock_policy()
        self._configs = ThresholdConfigRepository(db)
        self._catalog = CatalogRepository(db)
        self._stocks = StockRepository(db)
        self._batches = BulkLoadRepository(db)
        self._thresholds = ThresholdConfigService(db, policy=self._policy)

    def _entry(self, product, branch, quantity: float, source: ClassifiableEntry, config_id=None) -> DashboardEntry:
        t = source.thresholds
        return DashboardEntry(
            config_id=config_id,
            product=ProductRef.model_validate(product),
            branch=BranchRef.model_validate(branch),
            thresholds=ThresholdsRead(max_stock=t.max_stock, min_stock=t.min_stock, reorder_point=t.reorder_point),
            has_explicit_config=source.has_explicit_config,
            classification=classify_entry(quantity, source),
        )

    def _entries(self, branch_id: Optional[int]) -> list[DashboardEntry]:
        entries: list[DashboardEntry] = []

        configs = self._configs.list(branch_id=branch_id, active_only=True)
        products = self._catalog.products_by_ids({c.product_id for c in configs})
        branches = self._catalog.branches_by_ids({c.branch_id for c in configs})
        quantities = self._stocks.product_quantities([(c.product_id, c.branch_id) for c in configs])
        for c in configs:
            product, branch = products.get(c.product_id), branches.get(c.branch_id)
            if product is None or branch is None:
                continue
            qty = quantities.get((c.product_id, c.branch_id), 0.0)
            entries.append(self._entry(product, branch, qty, Configured(c), config_id=c.id))

        # Pairs that were never configured still show up while they hold stock
        configured = self._configs.configured_pairs(branch_id)
        for stock, product, branch in self._stocks.positive_product_balances(branch_id):
            if (product.id, branch.id) in configured:
                continue
            qty = float(stock.quantity)
            defaults = derive_default_thresholds(product.min_stock, qty, self._policy.defaults)
            entries.append(self._entry(product, branch, qty, Inferred(defaults)))

        entries.sort(key=_entry_sort_key)
        return entries

    def build_dashboard(self, branch_id: Optional[int] = None) -> DashboardReport:
        entries = self._entries(branch_id)
        top_n = self._policy.dashboard.top_n

        stats = DashboardStats()
        summaries: dict[int, BranchSummary] = {}
        for e in entries:
            _tally(stats, e)
            if e.classification.needs_reorder:
                stats.needs_reorder += 1
            if e.classification.has_excess:
                stats.with_excess += 1
            summary = summaries.get(e.branch.id)
            if summary is None:
                summary = summaries[e.branch.id] = BranchSummary(branch=e.branch)
            _tally(summary, e)

        # sort() is stable, so ties keep the alphabetical order of `entries`
        deficit = [e for e in entries if e.classification.diff > 0]
        deficit.sort(key=lambda e: e.classification.diff, reverse=True)
        excess = [e for e in entries if e.classification.excess_amount > 0]
        excess.sort(key=lambda e: e.classification.excess_amount, reverse=True)

        report = DashboardReport(
            stats=stats,
            branch_summaries=sorted(summaries.values(), key=lambda s: name_sort_key(s.branch.name)),
            full_analysis=entries,
            top_deficit=deficit[:top_n],
            top_excess=excess[:top_n],
            generated_at=utcnow(),
        )
        logger.debug(
            "Dashboard built for branch %s: %s entries (%s explicit, %s inferred)",
            branch_id if branch_id is not None else "all",
            stats.total,
            stats.explicit,
            stats.inferred,
        )
        return report

    def build_stock_report(
        self,
        branch_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> StockReport:
        """Configuraciones con su estado actual más las cargas masivas iniciadas en el rango."""
        if date_from is not None and date_to is not None and date_from > date_to:
            raise InvalidInput("date_from must not be after date_to")
        configs = self._thresholds.list(branch_id=branch_id, include_stats=True)
        batches, _ = self._batches.list_batches(
            branch_id=branch_id, limit=None, started_from=date_from, started_to=date_to
        )
        logger.info(
            "Stock report for branch %s: %s configs, %s batches",
            branch_id if branch_id is not None else "all",
            len(configs),
            len(batches),
        )
        return StockReport(
            configs=configs,
            batch_history=[BatchRead.model_validate(b) for b in batches],
            date_from=date_from,
            date_to=date_to,
            generated_at=utcnow(),
        )
