"""
Tests del generador de alertas de stock
"""
import pytest

from stockcontrol.errors import NotFound
from stockcontrol.schemas import AdjustmentCreate, ThresholdConfigUpsert
from stockcontrol.services.alert_service import AlertService
from stockcontrol.services.stock_service import StockService
from stockcontrol.services.threshold_service import ThresholdConfigService


@pytest.fixture
def alerts(db):
    return AlertService(db)


@pytest.fixture
def put_stock(db, data, policy):
    service = StockService(db, policy=policy)

    def put(product, delta):
        service.adjust_stock(
            AdjustmentCreate(
                product_id=product.id,
                location_id=data["centro"].id,
                delta=delta,
                reason="conteo",
                allow_negative=True,
            )
        )

    return put


@pytest.fixture
def configured(db, data, policy):
    ThresholdConfigService(db, policy=policy).upsert(
        ThresholdConfigUpsert(
            product_id=data["difusor"].id,
            branch_id=data["centro"].id,
            max_stock=20,
            min_stock=4,
            reorder_point=8,
        )
    )


class TestRecompute:
    """Una alerta activa por tipo y par (producto, sucursal)"""

    def test_without_config_is_noop(self, alerts, data, put_stock):
        put_stock(data["vela"], 1)
        assert alerts.recompute_alerts(data["vela"].id, data["centro"].id) is None
        assert alerts.list_alerts().stats.total == 0

    def test_critical_alert_message(self, alerts, data, configured, put_stock):
        put_stock(data["difusor"], 3)
        alert = alerts.recompute_alerts(data["difusor"].id, data["centro"].id)
        assert alert.kind == "critico"
        assert alert.message == "Stock crítico: Difusor Bambú tiene solo 3 unidades (mínimo: 4)"
        assert alert.current_quantity == 3
        assert alert.reference_quantity == 4

    def test_recompute_twice_keeps_single_active_alert(self, alerts, data, configured, put_stock):
        put_stock(data["difusor"], 6)
        first = alerts.recompute_alerts(data["difusor"].id, data["centro"].id)
        second = alerts.recompute_alerts(data["difusor"].id, data["centro"].id)

        listed = alerts.list_alerts(branch_id=data["centro"].id)
        assert first.id == second.id
        assert listed.stats.total == 1
        assert listed.stats.bajo == 1
        assert listed.alerts[0].message == "Stock bajo: Difusor Bambú necesita reposición (6/8)"

    def test_state_change_replaces_alert(self, alerts, data, configured, put_stock):
        put_stock(data["difusor"], 2)
        alerts.recompute_alerts(data["difusor"].id, data["centro"].id)
        put_stock(data["difusor"], 30)
        alerts.recompute_alerts(data["difusor"].id, data["centro"].id)

        active = alerts.list_alerts()
        assert [a.kind for a in active.alerts] == ["exceso"]
        assert active.alerts[0].message == "Exceso de stock: Difusor Bambú supera el máximo (32/20)"
        history = alerts.list_alerts(active_only=False)
        assert {a.kind for a in history.alerts} == {"critico", "exceso"}

    def test_normal_state_clears_alerts(self, alerts, data, configured, put_stock):
        put_stock(data["difusor"], 2)
        alerts.recompute_alerts(data["difusor"].id, data["centro"].id)
        put_stock(data["difusor"], 10)
        assert alerts.recompute_alerts(data["difusor"].id, data["centro"].id) is None
        assert alerts.list_alerts().alerts == []

    def test_reactivation_clears_acknowledgement(self, alerts, data, configured, put_stock):
        put_stock(data["difusor"], 2)
        alert = alerts.recompute_alerts(data["difusor"].id, data["centro"].id)
        alerts.acknowledge_alert(alert.id, data["admin"].id)
        assert alerts.list_alerts().stats.unviewed == 0

        again = alerts.recompute_alerts(data["difusor"].id, data["centro"].id)
        assert again.id == alert.id
        assert again.viewed_by is None
        assert alerts.list_alerts().stats.unviewed == 1

    def test_branch_fan_out(self, db, alerts, data, policy, configured, put_stock):
        ThresholdConfigService(db, policy=policy).upsert(
            ThresholdConfigUpsert(
                product_id=data["vela"].id,
                branch_id=data["centro"].id,
                max_stock=10,
                min_stock=2,
                reorder_point=4,
            )
        )
        put_stock(data["difusor"], 1)
        put_stock(data["vela"], 50)

        assert alerts.recompute_alerts_for_branch(data["centro"].id) == 2
        assert alerts.recompute_alerts_for_branch(data["centro"].id) == 2
        stats = alerts.list_alerts(branch_id=data["centro"].id).stats
        assert stats.total == 2
        assert stats.critico == 1
        assert stats.exceso == 1


class TestMaintenance:
    def test_acknowledge_sets_viewer(self, alerts, data, configured, put_stock):
        put_stock(data["difusor"], 1)
        alert = alerts.recompute_alerts(data["difusor"].id, data["centro"].id)
        acked = alerts.acknowledge_alert(alert.id, data["admin"].id)
        assert acked.viewed_by == data["admin"].id
        assert acked.viewed_at is not None

    def test_deactivate(self, alerts, data, configured, put_stock):
        put_stock(data["difusor"], 1)
        alert = alerts.recompute_alerts(data["difusor"].id, data["centro"].id)
        alerts.deactivate_alert(alert.id)
        assert alerts.list_alerts().alerts == []

    def test_unknown_alert(self, alerts):
        with pytest.raises(NotFound):
            alerts.acknowledge_alert(9999, 1)
        with pytest.raises(NotFound):
            alerts.deactivate_alert(9999)
