"""
Tests del clasificador de salud de stock
"""
import pytest

from stockcontrol.services.stock_health import (
    PRIORITY,
    Inferred,
    Thresholds,
    classify,
    classify_entry,
    derive_default_thresholds,
)

T = Thresholds(max_stock=20, min_stock=4, reorder_point=8)


class TestClassifyBoundaries:
    """Precedencia critico > bajo > exceso > normal en los bordes"""

    @pytest.mark.parametrize(
        "quantity,state",
        [
            (3, "critico"),
            (4, "critico"),
            (5, "bajo"),
            (8, "bajo"),
            (9, "normal"),
            (20, "normal"),
            (21, "exceso"),
        ],
    )
    def test_state_at_boundaries(self, quantity, state):
        assert classify(quantity, T).state == state

    def test_min_equal_reorder_has_no_low_band(self):
        t = Thresholds(max_stock=10, min_stock=5, reorder_point=5)
        assert classify(5, t).state == "critico"
        assert classify(6, t).state == "normal"

    def test_zero_max_everything_positive_is_excess(self):
        t = Thresholds(max_stock=0, min_stock=0, reorder_point=0)
        c = classify(3, t)
        assert c.state == "exceso"
        assert c.utilization_pct == 0
        assert c.diff_pct == 0


class TestDerivedFigures:
    def test_deficit_figures(self):
        c = classify(5, T)
        assert c.diff == 15
        assert c.utilization_pct == 25
        assert c.diff_pct == 75
        assert c.needs_reorder is True
        assert c.can_load_more is True
        assert c.suggested_qty == 15
        assert c.has_excess is False
        assert c.excess_amount == 0
        assert c.priority == PRIORITY["bajo"]

    def test_excess_figures(self):
        c = classify(26, T)
        assert c.diff == -6
        assert c.has_excess is True
        assert c.excess_amount == 6
        assert c.suggested_qty == 0
        assert c.can_load_more is False
        assert c.utilization_pct == 130

    def test_half_rounds_up(self):
        # 100 * 1 / 8 = 12.5
        c = classify(1, Thresholds(max_stock=8, min_stock=0, reorder_point=0))
        assert c.utilization_pct == 13


class TestDefaults:
    """Umbrales inferidos a partir del mínimo de catálogo y la cantidad actual"""

    def test_floor_values_for_small_stock(self):
        t = derive_default_thresholds(0, 2)
        assert t.min_stock == 1
        assert t.max_stock == 10
        assert t.reorder_point == 2

    def test_max_follows_current_quantity(self):
        t = derive_default_thresholds(2, 20)
        assert t.min_stock == 2
        assert t.max_stock == 60
        assert t.reorder_point == 3

    def test_max_follows_catalog_minimum(self):
        t = derive_default_thresholds(4, 1)
        assert t.max_stock == 20
        assert t.reorder_point == 6

    def test_inferred_entry_uses_defaults(self):
        entry = Inferred(derive_default_thresholds(0, 20))
        assert entry.has_explicit_config is False
        assert classify_entry(20, entry).state == "normal"
