"""
Unit reconciliation — keeps the progress matrix aligned with the housing-unit list.

Two modes:
  by_id       a value follows its unit across removals and reorders;
              units without a match start at 0.
  positional  columns 0..min(old, new)-1 are copied, the rest zero-filled.

Both modes produce rows of exactly len(new_units). Mode comes from
UNIT_RECONCILE_MODE (default "by_id") unless passed explicitly.
"""
import logging
import os
from typing import Dict, List, Optional, Sequence

from app.models.pls_schema import HousingUnit, ProgressMatrix
from app.services.progress_matrix import remap_columns

logger = logging.getLogger("pls-reconcile")

BY_ID = "by_id"
POSITIONAL = "positional"
RECONCILE_MODES = (BY_ID, POSITIONAL)

RECONCILE_MODE = os.getenv("UNIT_RECONCILE_MODE", BY_ID).strip().lower()
if RECONCILE_MODE not in RECONCILE_MODES:
    logger.warning("Unknown UNIT_RECONCILE_MODE %r, falling back to %s", RECONCILE_MODE, BY_ID)
    RECONCILE_MODE = BY_ID


def _positional_sources(old_count: int, new_count: int) -> List[Optional[int]]:
    return [i if i < old_count else None for i in range(new_count)]


def column_mapping(
    old_units: Sequence[HousingUnit],
    new_units: Sequence[HousingUnit],
    mode: Optional[str] = None,
) -> List[Optional[int]]:
    """For each new unit position, the old column it inherits (None = start at 0)."""
    mode = mode or RECONCILE_MODE
    if mode not in RECONCILE_MODES:
        raise ValueError(f"unknown reconcile mode: {mode}")

    if mode == POSITIONAL:
        return _positional_sources(len(old_units), len(new_units))

    old_ids = [u.id for u in old_units]
    if len(set(old_ids)) != len(old_ids):
        logger.warning("Duplicate housing-unit ids; reconciling positionally")
        return _positional_sources(len(old_units), len(new_units))

    positions: Dict[str, int] = {unit_id: i for i, unit_id in enumerate(old_ids)}
    return [positions.get(unit.id) for unit in new_units]


def units_changed(old_units: Sequence[HousingUnit], new_units: Sequence[HousingUnit]) -> bool:
    return [u.id for u in old_units] != [u.id for u in new_units]


def reconcile_units(
    old_units: Sequence[HousingUnit],
    new_units: Sequence[HousingUnit],
    progress: ProgressMatrix,
    mode: Optional[str] = None,
) -> ProgressMatrix:
    """New matrix whose every row has len(new_units) entries."""
    sources = column_mapping(old_units, new_units, mode)
    logger.debug(
        "Reconciling %d -> %d units (%s)", len(old_units), len(new_units), mode or RECONCILE_MODE
    )
    return remap_columns(progress, sources)
