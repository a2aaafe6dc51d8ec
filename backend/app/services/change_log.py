"""
Change log — append-only audit trail of committed progress changes.

One entry per changed cell. Display names are captured when the entry is
written so later renames do not rewrite history. The log is never compacted.
"""
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from app.models.pls_schema import ChangeLogEntry


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_entry(
    item_id: str,
    item_name: str,
    unit_id: str,
    unit_name: str,
    old_progress: float,
    new_progress: float,
    timestamp: Optional[str] = None,
) -> ChangeLogEntry:
    return ChangeLogEntry(
        id=f"log_{uuid4().hex}",
        timestamp=timestamp or _now_iso(),
        item_id=item_id,
        item_name=item_name,
        unit_id=unit_id,
        unit_name=unit_name,
        old_progress=old_progress,
        new_progress=new_progress,
    )


class ChangeRecorder:
    """Collects entries for one batch; cells whose value did not change are skipped."""

    def __init__(self, timestamp: Optional[str] = None):
        # a batch shares one timestamp
        self.timestamp = timestamp or _now_iso()
        self.entries: List[ChangeLogEntry] = []

    def record(
        self,
        item_id: str,
        item_name: str,
        unit_id: str,
        unit_name: str,
        old_progress: float,
        new_progress: float,
    ) -> bool:
        if old_progress == new_progress:
            return False
        self.entries.append(make_entry(
            item_id, item_name, unit_id, unit_name, old_progress, new_progress, self.timestamp,
        ))
        return True

    def __len__(self) -> int:
        return len(self.entries)


def append_entries(
    history: Sequence[ChangeLogEntry], entries: Sequence[ChangeLogEntry]
) -> List[ChangeLogEntry]:
    return list(history) + list(entries)


def newest_first(entries: Sequence[ChangeLogEntry]) -> List[ChangeLogEntry]:
    return sorted(entries, key=lambda e: e.timestamp, reverse=True)


def filter_entries(entries: Sequence[ChangeLogEntry], query: str) -> List[ChangeLogEntry]:
    """Case-insensitive substring match over item and unit name; blank query keeps all."""
    needle = (query or "").strip().casefold()
    if not needle:
        return list(entries)
    return [
        e for e in entries
        if needle in e.item_name.casefold() or needle in e.unit_name.casefold()
    ]


def group_by_date(entries: Sequence[ChangeLogEntry]) -> Dict[str, List[ChangeLogEntry]]:
    """Calendar date (YYYY-MM-DD of the ISO timestamp) -> entries, newest date first."""
    groups: Dict[str, List[ChangeLogEntry]] = {}
    for entry in newest_first(entries):
        day = entry.timestamp.split("T")[0]
        groups.setdefault(day, []).append(entry)
    return OrderedDict(sorted(groups.items(), key=lambda kv: kv[0], reverse=True))
