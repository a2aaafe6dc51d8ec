"""
test_unit_reconciliation.py — Tests for housing-unit reconciliation and the matrix accessor.

Tests cover:
  - by_id: values follow their unit across removal and reorder
  - by_id: new units start at 0
  - positional: copy of the common prefix, zero-filled growth, truncation on shrink
  - duplicate ids fall back to positional
  - every row has exactly len(new_units) entries afterwards
  - progress_matrix helpers (read_row, with_value, rename_row, retain_template_rows)
"""

import pytest

from app.models.pls_schema import HousingUnit
from app.services.progress_matrix import (
    clamp_progress,
    ensure_matrix_shape,
    read_row,
    rename_row,
    retain_template_rows,
    with_value,
)
from app.services.unit_reconciliation import (
    BY_ID,
    POSITIONAL,
    column_mapping,
    reconcile_units,
    units_changed,
)


def _units(*ids):
    return [HousingUnit(id=i, name=f"Casa {i}") for i in ids]


# ===========================================================================
# Class 1: by_id mode
# ===========================================================================

class TestReconcileById:

    def test_removal_keeps_values_with_their_unit(self):
        old = _units("a", "b", "c")
        matrix = {"1.1": [10.0, 20.0, 30.0]}
        result = reconcile_units(old, _units("a", "c"), matrix, BY_ID)
        assert result == {"1.1": [10.0, 30.0]}

    def test_reorder_moves_values(self):
        result = reconcile_units(_units("a", "b"), _units("b", "a"), {"1.1": [10.0, 20.0]}, BY_ID)
        assert result == {"1.1": [20.0, 10.0]}

    def test_new_unit_starts_at_zero(self):
        result = reconcile_units(_units("a"), _units("a", "z"), {"1.1": [75.0], "2.1": [5.0]}, BY_ID)
        assert result == {"1.1": [75.0, 0.0], "2.1": [5.0, 0.0]}

    def test_duplicate_old_ids_fall_back_to_positional(self):
        old = [HousingUnit(id="dup", name="A"), HousingUnit(id="dup", name="B")]
        assert column_mapping(old, _units("x", "y", "z"), BY_ID) == [0, 1, None]

    def test_unknown_mode_raises(self):
        with pytest.raises(ValueError):
            column_mapping(_units("a"), _units("a"), "sideways")


# ===========================================================================
# Class 2: positional mode
# ===========================================================================

class TestReconcilePositional:

    def test_growth_zero_fills(self):
        result = reconcile_units(_units("a", "b"), _units("a", "b", "c", "d"), {"1.1": [50.0, 60.0]}, POSITIONAL)
        assert result == {"1.1": [50.0, 60.0, 0.0, 0.0]}

    def test_shrink_truncates(self):
        result = reconcile_units(_units("a", "b", "c"), _units("x"), {"1.1": [1.0, 2.0, 3.0]}, POSITIONAL)
        assert result == {"1.1": [1.0]}

    def test_short_rows_are_padded(self):
        result = reconcile_units(_units("a", "b"), _units("a", "b", "c"), {"1.1": [9.0]}, POSITIONAL)
        assert result == {"1.1": [9.0, 0.0, 0.0]}

    @pytest.mark.parametrize("new_count", [0, 1, 3, 7])
    def test_every_row_has_new_length(self, new_count):
        new = _units(*[f"n{i}" for i in range(new_count)])
        matrix = {"1.1": [1.0, 2.0, 3.0], "2.1": [], "3.1": [4.0]}
        for mode in (BY_ID, POSITIONAL):
            result = reconcile_units(_units("a", "b", "c"), new, matrix, mode)
            assert all(len(row) == new_count for row in result.values())

    def test_units_changed_compares_ids_in_order(self):
        assert not units_changed(_units("a", "b"), _units("a", "b"))
        assert units_changed(_units("a", "b"), _units("b", "a"))
        assert units_changed(_units("a"), _units("a", "b"))


# ===========================================================================
# Class 3: matrix accessor
# ===========================================================================

class TestProgressMatrix:

    def test_clamp(self):
        assert clamp_progress(-5) == 0.0
        assert clamp_progress(150) == 100.0
        assert clamp_progress(42.5) == 42.5

    def test_read_row_sizes_to_unit_count(self):
        assert read_row({"1.1": [1.0, 2.0, 3.0]}, "1.1", 2) == [1.0, 2.0]
        assert read_row({}, "1.1", 2) == [0.0, 0.0]

    def test_with_value_returns_new_matrix(self):
        matrix = {"1.1": [0.0, 0.0]}
        updated = with_value(matrix, "1.1", 1, 2, 80.0)
        assert updated["1.1"] == [0.0, 80.0]
        assert matrix["1.1"] == [0.0, 0.0]

    def test_with_value_rejects_out_of_range(self):
        with pytest.raises(IndexError):
            with_value({"1.1": [0.0]}, "1.1", 3, 1, 10.0)

    def test_rename_row_moves_values(self):
        assert rename_row({"1.1": [5.0], "1.2": [1.0]}, "1.1", "1.9") == {"1.2": [1.0], "1.9": [5.0]}

    def test_retain_template_rows(self, two_category_template):
        matrix = {"1.1": [40.0, 60.0], "old": [100.0, 100.0]}
        result = retain_template_rows(matrix, two_category_template, 2)
        assert result == {"1.1": [40.0, 60.0], "2.1": [0.0, 0.0]}

    def test_ensure_matrix_shape_adds_missing_rows(self, two_category_template):
        result = ensure_matrix_shape({"1.1": [10.0]}, two_category_template, 3)
        assert result == {"1.1": [10.0, 0.0, 0.0], "2.1": [0.0, 0.0, 0.0]}
