"""
Tests del motor de ajustes de stock
"""
import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from stockcontrol.errors import InsufficientStock, InvalidInput, NotFound, Unavailable
from stockcontrol.models import MOVEMENT_ENTRY, MOVEMENT_EXIT, StockMovement
from stockcontrol.repositories.stock_repository import StockRepository
from stockcontrol.schemas import AdjustmentCreate
from stockcontrol.services.authorization import Privilege, StaticAuthorizationProvider
from stockcontrol.services.stock_service import StaleBalance, StockService

from conftest import make_session_factory, seed


def _movement_count(db):
    return db.scalar(select(func.count(StockMovement.id)))


@pytest.fixture
def service(db, data, policy):
    return StockService(db, policy=policy)


def _adjust(service, data, delta, actor="operator", **kwargs):
    return service.adjust_stock(
        AdjustmentCreate(
            product_id=kwargs.pop("product_id", data["difusor"].id),
            location_id=kwargs.pop("location_id", data["centro"].id),
            delta=delta,
            reason=kwargs.pop("reason", "conteo"),
            actor_id=data[actor].id if actor else None,
            **kwargs,
        )
    )


class TestAdjustStock:
    """Ajustes positivos y negativos sobre un balance"""

    def test_first_entry_creates_balance_and_movement(self, service, data):
        result = _adjust(service, data, 12)
        assert result.balance.quantity == 12
        assert result.movement.direction == MOVEMENT_ENTRY
        assert result.movement.quantity == 12
        assert result.movement.stock_id == result.balance.id

    def test_exit_records_absolute_quantity(self, service, data):
        _adjust(service, data, 10)
        result = _adjust(service, data, -4)
        assert result.balance.quantity == 6
        assert result.movement.direction == MOVEMENT_EXIT
        assert result.movement.quantity == 4

    def test_version_increases_on_each_update(self, service, data):
        first = _adjust(service, data, 5)
        second = _adjust(service, data, 1)
        assert second.balance.version == first.balance.version + 1

    def test_correlation_ids_are_kept(self, service, data):
        result = _adjust(service, data, 3, sale_id="V-100", shipment_id="E-7")
        assert result.movement.sale_id == "V-100"
        assert result.movement.shipment_id == "E-7"

    def test_supply_balance_is_independent_from_products(self, service, data):
        result = service.adjust_stock(
            AdjustmentCreate(
                supply_id=data["esencia"].id,
                location_id=data["centro"].id,
                delta=250,
                reason="compra de insumos",
                actor_id=data["operator"].id,
            )
        )
        assert result.balance.supply_id == data["esencia"].id
        assert result.balance.product_id is None
        assert service.list_balances(product_id=data["difusor"].id) == []


class TestNegativeGuard:
    """Un actor sin privilegios no puede dejar un balance negativo"""

    def test_unprivileged_overdraw_is_rejected_without_writes(self, db, service, data):
        _adjust(service, data, 10)
        before = _movement_count(db)

        with pytest.raises(InsufficientStock) as exc:
            _adjust(service, data, -15)

        assert exc.value.available == 10
        assert exc.value.requested == 15
        assert exc.value.status_code == 409
        assert service.get_balance(data["centro"].id, product_id=data["difusor"].id).quantity == 10
        assert _movement_count(db) == before

    def test_unprivileged_exit_on_missing_balance_is_rejected(self, db, service, data):
        with pytest.raises(InsufficientStock) as exc:
            _adjust(service, data, -1)
        assert exc.value.available == 0
        assert service.list_balances() == []
        assert _movement_count(db) == 0

    def test_admin_may_go_negative(self, service, data):
        _adjust(service, data, 2)
        result = _adjust(service, data, -5, actor="admin")
        assert result.balance.quantity == -3

    def test_allow_negative_override(self, service, data):
        result = _adjust(service, data, -3, allow_negative=True)
        assert result.balance.quantity == -3
        assert result.movement.direction == MOVEMENT_EXIT

    def test_unknown_actor_is_treated_as_unprivileged(self, service, data):
        with pytest.raises(InsufficientStock):
            _adjust(service, data, -1, actor=None)

    def test_static_provider_grants_privilege(self, db, data, policy):
        provider = StaticAuthorizationProvider({data["operator"].id: Privilege.PRIVILEGED})
        service = StockService(db, authorization=provider, policy=policy)
        result = _adjust(service, data, -2)
        assert result.balance.quantity == -2


class TestValidation:
    """Validación de la solicitud de ajuste"""

    def test_both_item_refs_rejected(self, service, data):
        with pytest.raises(InvalidInput):
            _adjust(service, data, 1, supply_id=data["esencia"].id)

    def test_zero_delta_rejected(self, service, data):
        with pytest.raises(InvalidInput):
            _adjust(service, data, 0)

    def test_blank_reason_rejected(self, service, data):
        with pytest.raises(InvalidInput):
            _adjust(service, data, 1, reason="   ")

    def test_unknown_location_is_not_found(self, service, data):
        with pytest.raises(NotFound) as exc:
            _adjust(service, data, 1, location_id=9999)
        assert exc.value.status_code == 404

    def test_unknown_product_is_not_found(self, service, data):
        with pytest.raises(NotFound):
            _adjust(service, data, 1, product_id=9999)


class TestConcurrencyControl:
    """Versionado optimista y fallas de almacenamiento"""

    def test_pinned_version_mismatch_raises_stale(self, service, data):
        result = _adjust(service, data, 4)
        with pytest.raises(StaleBalance):
            service.adjust_stock(
                AdjustmentCreate(
                    product_id=data["difusor"].id,
                    location_id=data["centro"].id,
                    delta=1,
                    reason="conteo",
                ),
                expected_version=result.balance.version + 5,
            )
        assert service.get_balance(data["centro"].id, product_id=data["difusor"].id).quantity == 4

    def test_persistent_conflict_gives_up(self, db, service, data, monkeypatch):
        _adjust(service, data, 4)
        before = _movement_count(db)
        monkeypatch.setattr(service._stocks, "compare_and_swap", lambda *a, **k: False)

        with pytest.raises(Unavailable):
            _adjust(service, data, 1)
        assert _movement_count(db) == before

    def test_storage_error_is_unavailable_and_rolled_back(self, db, service, data, monkeypatch):
        _adjust(service, data, 4)
        before = _movement_count(db)

        def boom(*args, **kwargs):
            raise OperationalError("UPDATE stocks", {}, Exception("database is locked"))

        monkeypatch.setattr(service._stocks, "compare_and_swap", boom)
        with pytest.raises(Unavailable) as exc:
            _adjust(service, data, 1)
        assert exc.value.status_code == 503
        assert _movement_count(db) == before


class TestQueries:
    def test_check_available(self, service, data):
        _adjust(service, data, 5)
        ok = service.check_available(data["difusor"].id, data["centro"].id, 5)
        short = service.check_available(data["difusor"].id, data["centro"].id, 6)
        assert ok.available is True
        assert short.available is False
        assert short.current == 5

    def test_low_stock_uses_catalog_minimum(self, service, data):
        _adjust(service, data, 2)
        _adjust(service, data, 10, product_id=data["vela"].id)
        low = service.low_stock(location_id=data["centro"].id)
        assert [row.product.name for row in low] == ["Difusor Bambú"]

    def test_low_supply_stock_uses_supply_minimum(self, service, data):
        _adjust(service, data, 40, product_id=None, supply_id=data["esencia"].id)
        _adjust(service, data, 150, product_id=None, supply_id=data["esencia"].id, location_id=data["norte"].id)
        _adjust(service, data, 1)

        low = service.low_supply_stock()
        assert [(row.supply.name, row.branch.name) for row in low] == [("Esencia de bambú", "Sucursal Centro")]
        assert low[0].quantity == 40
        assert low[0].min_stock == 100
        assert service.low_supply_stock(location_id=data["norte"].id) == []

    def test_movement_history_newest_first(self, service, data):
        _adjust(service, data, 5, reason="primera")
        _adjust(service, data, 1, reason="segunda")
        history = service.movement_history(product_id=data["difusor"].id)
        assert [m.reason for m in history] == ["segunda", "primera"]


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(
    deltas=st.lists(
        st.tuples(st.integers(min_value=-20, max_value=20).filter(lambda d: d != 0), st.booleans()),
        min_size=1,
        max_size=15,
    )
)
def test_balance_always_equals_ledger_sum(deltas):
    """Cualquier secuencia de ajustes deja balance == suma de movimientos y nunca negativo sin override"""
    db = make_session_factory()()
    try:
        data = seed(db)
        service = StockService(db)
        repo = StockRepository(db)
        expected = 0

        for delta, override in deltas:
            payload = AdjustmentCreate(
                product_id=data["difusor"].id,
                location_id=data["centro"].id,
                delta=delta,
                reason="propiedad",
                actor_id=data["operator"].id,
                allow_negative=override,
            )
            try:
                service.adjust_stock(payload)
                expected += delta
            except InsufficientStock:
                assert not override
                assert expected + delta < 0

            stock = repo.find_balance(data["centro"].id, product_id=data["difusor"].id)
            if stock is None:
                assert expected == 0
                continue
            assert float(stock.quantity) == expected
            assert repo.ledger_sum(stock.id) == expected
    finally:
        db.close()
