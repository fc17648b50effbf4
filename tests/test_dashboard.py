"""
Tests del tablero de stock por sucursal
"""
from datetime import timedelta

import pytest

from stockcontrol.errors import InvalidInput
from stockcontrol.models import Product
from stockcontrol.schemas import AdjustmentCreate, BulkLoadCreate, BulkLoadLineIn, ThresholdConfigUpsert
from stockcontrol.services.bulk_load_service import BulkLoadService
from stockcontrol.services.dashboard_service import DashboardService
from stockcontrol.services.stock_service import StockService
from stockcontrol.services.threshold_service import ThresholdConfigService
from stockcontrol.stock_config import DashboardPolicy, StockPolicy
from stockcontrol.utils import utcnow


@pytest.fixture
def stock(db, data, policy):
    service = StockService(db, policy=policy)

    def put(product, qty, branch="centro"):
        service.adjust_stock(
            AdjustmentCreate(product_id=product.id, location_id=data[branch].id, delta=qty, reason="alta")
        )

    return put


@pytest.fixture
def configure(db, data, policy):
    service = ThresholdConfigService(db, policy=policy)

    def upsert(product, max_stock, min_stock, reorder_point, branch="centro"):
        return service.upsert(
            ThresholdConfigUpsert(
                product_id=product.id,
                branch_id=data[branch].id,
                max_stock=max_stock,
                min_stock=min_stock,
                reorder_point=reorder_point,
            )
        )

    return upsert


class TestPopulations:
    """Filas configuradas e inferidas"""

    def test_configured_and_inferred_rows(self, db, data, policy, stock, configure):
        configure(data["difusor"], 20, 4, 8)
        stock(data["difusor"], 3)
        stock(data["vela"], 12)

        report = DashboardService(db, policy=policy).build_dashboard()

        by_name = {e.product.name: e for e in report.full_analysis}
        assert by_name["Difusor Bambú"].has_explicit_config is True
        assert by_name["Difusor Bambú"].classification.state == "critico"
        assert by_name["Vela Aromática Lavanda"].has_explicit_config is False
        assert by_name["Vela Aromática Lavanda"].thresholds.max_stock == 36
        assert report.stats.explicit == 1
        assert report.stats.inferred == 1

    def test_configured_pair_without_stock_is_listed(self, db, data, policy, configure):
        configure(data["vela"], 10, 2, 4)
        report = DashboardService(db, policy=policy).build_dashboard()
        assert len(report.full_analysis) == 1
        assert report.full_analysis[0].classification.quantity == 0

    def test_zero_balance_without_config_is_not_inferred(self, db, data, policy, stock):
        stock(data["vela"], 5)
        stock(data["vela"], -5)
        assert DashboardService(db, policy=policy).build_dashboard().full_analysis == []

    def test_inactive_config_is_ignored_and_not_inferred(self, db, data, policy, stock, configure):
        config = configure(data["difusor"], 20, 4, 8)
        config.active = False
        db.commit()
        stock(data["difusor"], 6)
        assert DashboardService(db, policy=policy).build_dashboard().full_analysis == []

    def test_branch_filter(self, db, data, policy, stock):
        stock(data["difusor"], 6)
        stock(data["vela"], 6, branch="norte")
        report = DashboardService(db, policy=policy).build_dashboard(branch_id=data["norte"].id)
        assert [e.product.name for e in report.full_analysis] == ["Vela Aromática Lavanda"]


class TestOrdering:
    def test_alphabetical_case_insensitive(self, db, data, policy, stock):
        names = ["Zeta", "alpha", "Beta"]
        products = [Product(name=n, min_stock=0) for n in names]
        db.add_all(products)
        db.commit()
        for p in products:
            stock(p, 4)

        report = DashboardService(db, policy=policy).build_dashboard()
        assert [e.product.name for e in report.full_analysis] == ["alpha", "Beta", "Zeta"]

    def test_accents_do_not_move_names(self, db, data, policy, stock):
        products = [Product(name=n, min_stock=0) for n in ["Óleo", "Nácar", "Palo"]]
        db.add_all(products)
        db.commit()
        for p in products:
            stock(p, 4)

        report = DashboardService(db, policy=policy).build_dashboard()
        assert [e.product.name for e in report.full_analysis] == ["Nácar", "Óleo", "Palo"]


class TestAggregates:
    def test_top_lists_and_summaries(self, db, data, policy, stock, configure):
        configure(data["difusor"], 20, 4, 8)
        configure(data["vela"], 10, 2, 4)
        configure(data["sahumerio"], 10, 2, 4)
        stock(data["difusor"], 5)
        stock(data["vela"], 14)
        stock(data["sahumerio"], 10)

        report = DashboardService(db, policy=policy).build_dashboard()

        assert [e.product.name for e in report.top_deficit] == ["Difusor Bambú"]
        assert [e.product.name for e in report.top_excess] == ["Vela Aromática Lavanda"]
        assert report.top_excess[0].classification.excess_amount == 4
        assert report.stats.bajo == 1
        assert report.stats.exceso == 1
        assert report.stats.normal == 1
        assert report.stats.needs_reorder == 1
        assert report.stats.with_excess == 1

        [summary] = report.branch_summaries
        assert summary.branch.id == data["centro"].id
        assert summary.total == 3
        assert summary.explicit == 3

    def test_deficit_ties_stay_alphabetical(self, db, data, policy, stock, configure):
        configure(data["vela"], 10, 0, 0)
        configure(data["difusor"], 10, 0, 0)
        stock(data["vela"], 5)
        stock(data["difusor"], 5)

        report = DashboardService(db, policy=policy).build_dashboard()
        assert [e.product.name for e in report.top_deficit] == ["Difusor Bambú", "Vela Aromática Lavanda"]

    def test_top_n_from_policy(self, db, data, stock, configure):
        configure(data["vela"], 10, 0, 0)
        configure(data["difusor"], 10, 0, 0)
        stock(data["vela"], 1)
        stock(data["difusor"], 2)

        policy = StockPolicy(dashboard=DashboardPolicy(top_n=1))
        report = DashboardService(db, policy=policy).build_dashboard()
        assert [e.product.name for e in report.top_deficit] == ["Vela Aromática Lavanda"]


class TestStockReport:
    """Reporte de stock: configuraciones con estado e historial de cargas"""

    @pytest.fixture
    def load(self, db, data, policy):
        service = BulkLoadService(db, policy=policy)

        def run(product, amount, branch="centro"):
            return service.process_batch(
                BulkLoadCreate(
                    name="Conteo",
                    branch_id=data[branch].id,
                    lines=[BulkLoadLineIn(product_id=product.id, amount=amount)],
                )
            )

        return run

    def test_configs_with_classification_and_batches(self, db, data, policy, stock, configure, load):
        configure(data["difusor"], 20, 4, 8)
        configure(data["vela"], 10, 2, 4, branch="norte")
        stock(data["difusor"], 3)
        load(data["difusor"], 1)
        load(data["vela"], 5, branch="norte")

        report = DashboardService(db, policy=policy).build_stock_report(branch_id=data["centro"].id)

        [config] = report.configs
        assert config.product_id == data["difusor"].id
        assert config.classification.quantity == 4
        assert config.classification.state == "critico"
        assert [b.branch_id for b in report.batch_history] == [data["centro"].id]

    def test_batch_history_by_date_range(self, db, data, policy, load):
        load(data["difusor"], 1)
        load(data["difusor"], 2)
        service = DashboardService(db, policy=policy)
        now = utcnow()

        report = service.build_stock_report(date_from=now - timedelta(hours=1), date_to=now + timedelta(hours=1))
        assert len(report.batch_history) == 2
        # newest first
        assert report.batch_history[0].id > report.batch_history[1].id
        assert service.build_stock_report(date_from=now + timedelta(hours=1)).batch_history == []

    def test_inverted_range_is_rejected(self, db, policy):
        now = utcnow()
        with pytest.raises(InvalidInput):
            DashboardService(db, policy=policy).build_stock_report(date_from=now, date_to=now - timedelta(days=1))
