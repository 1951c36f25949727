"""
Secure Data API — record lookup inside array documents.

Records carry their identifier under one of several legacy field names.  All of
them are consulted, in priority order, when matching a route id.

``find_record`` returns the first match; ``remove_records`` drops every match.
The asymmetry is intentional and callers rely on it.
"""

from __future__ import annotations

from typing import Any, Optional

# Legacy identifier fields, highest priority first
ID_FIELDS: tuple[str, ...] = ("id", "_id", "profileId")


def record_matches(record: Any, record_id: str) -> bool:
    """True when any identifier field of *record* equals *record_id*."""
    if not isinstance(record, dict):
        return False
    return any(field in record and record[field] == record_id for field in ID_FIELDS)


def find_record(records: list, record_id: str) -> Optional[int]:
    """Index of the first record matching *record_id*, or ``None``."""
    return next(
        (idx for idx, record in enumerate(records) if record_matches(record, record_id)),
        None,
    )


def remove_records(records: list, record_id: str) -> tuple[list, bool]:
    """Return ``(remaining, removed)`` with every matching record filtered out."""
    remaining = [record for record in records if not record_matches(record, record_id)]
    return remaining, len(remaining) != len(records)
