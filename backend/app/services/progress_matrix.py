"""
Progress matrix accessor.

The matrix is an arena keyed by line-item id whose columns are housing-unit
positions. All index arithmetic on the matrix lives here; callers never index
a row directly. Every function returns a new matrix and leaves its input intact.
"""
from typing import List, Optional, Sequence

from app.models.pls_schema import BudgetCategory, HousingUnit, ProgressMatrix
from app.services.pls_template import iter_items


def clamp_progress(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def read_row(matrix: ProgressMatrix, item_id: str, unit_count: int) -> List[float]:
    """Row for `item_id` sized to `unit_count`; missing rows and slots read as 0."""
    row = matrix.get(item_id) or []
    return [float(row[i]) if i < len(row) else 0.0 for i in range(unit_count)]


def value_at(matrix: ProgressMatrix, item_id: str, unit_index: int) -> float:
    row = matrix.get(item_id) or []
    if 0 <= unit_index < len(row):
        return float(row[unit_index])
    return 0.0


def with_value(
    matrix: ProgressMatrix, item_id: str, unit_index: int, unit_count: int, value: float
) -> ProgressMatrix:
    if not 0 <= unit_index < unit_count:
        raise IndexError(f"unit index {unit_index} outside 0..{unit_count - 1}")
    row = read_row(matrix, item_id, unit_count)
    row[unit_index] = value
    updated = dict(matrix)
    updated[item_id] = row
    return updated


def with_row(
    matrix: ProgressMatrix, item_id: str, values: Sequence[float], unit_count: int
) -> ProgressMatrix:
    row = [float(values[i]) if i < len(values) else 0.0 for i in range(unit_count)]
    updated = dict(matrix)
    updated[item_id] = row
    return updated


def zero_matrix(template: Sequence[BudgetCategory], unit_count: int) -> ProgressMatrix:
    return {item.id: [0.0] * unit_count for _, item in iter_items(template)}


def ensure_matrix_shape(
    matrix: ProgressMatrix, template: Sequence[BudgetCategory], unit_count: int
) -> ProgressMatrix:
    """Every template item gets a row of length `unit_count`; other rows are resized too."""
    shaped = {item_id: read_row(matrix, item_id, unit_count) for item_id in matrix}
    for _, item in iter_items(template):
        if item.id not in shaped:
            shaped[item.id] = [0.0] * unit_count
    return shaped


def retain_template_rows(
    matrix: ProgressMatrix, template: Sequence[BudgetCategory], unit_count: int
) -> ProgressMatrix:
    """Rows for the template's items only: kept ids keep their values, new ids start at 0."""
    return {item.id: read_row(matrix, item.id, unit_count) for _, item in iter_items(template)}


def rename_row(matrix: ProgressMatrix, old_id: str, new_id: str) -> ProgressMatrix:
    if old_id == new_id or old_id not in matrix:
        return dict(matrix)
    updated = {k: list(v) for k, v in matrix.items() if k != old_id}
    updated[new_id] = list(matrix[old_id])
    return updated


def remap_columns(matrix: ProgressMatrix, sources: Sequence[Optional[int]]) -> ProgressMatrix:
    """
    Rebuild every row so that new column i takes old column sources[i]
    (None -> 0). The new row length is len(sources).
    """
    remapped: ProgressMatrix = {}
    for item_id, row in matrix.items():
        row = row or []
        remapped[item_id] = [
            float(row[src]) if src is not None and src < len(row) else 0.0
            for src in sources
        ]
    return remapped


def unit_index(units: Sequence[HousingUnit], unit_id: str) -> int:
    for index, unit in enumerate(units):
        if unit.id == unit_id:
            return index
    return -1
