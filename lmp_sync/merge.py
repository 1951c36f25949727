"""
LMP database merge — add or update, never delete.

The LMP database document has three sections:

    meta     run metadata, rewritten on every save
    data     {iso: [monthly record, ...]}
    hourly   {iso: {"YYYY-MM": [{"dt": ..., "p": ..., "z": ...}, ...]}}

Monthly records are upserted one by one on the key (iso, zone, year, month).
Hourly data is replaced a whole (iso, month) block at a time.  Keys that are
absent from the incoming payload are never touched.

Both merges work on the in-memory database dict passed in and return counts;
persisting the result is the caller's job.

Bad-fetch guards
----------------
* A zero monthly average never overwrites a stored non-zero average.
* An hourly block whose prices are all zero is skipped entirely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

# Minimum |Δ avg_da_lmp| ($/MWh) that counts as a change
PRICE_EPSILON = 0.0001


# ---------------------------------------------------------------------------
# Records and stats
# ---------------------------------------------------------------------------


@dataclass
class MonthlyLMPRecord:
    """One zone's day-ahead LMP summary for one calendar month."""

    iso: str
    zone: str
    zone_id: str
    year: str            # "2025"
    month: str           # "01".."12"
    avg_da_lmp: float    # $/MWh
    min_price: float
    max_price: float
    record_count: int    # hourly points behind the average

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.iso, self.zone, self.year, self.month)

    @classmethod
    def from_raw(cls, raw: dict) -> "MonthlyLMPRecord":
        """
        Normalize a fetched monthly record.

        Older fetch files carry the average as ``lmp`` instead of
        ``avg_da_lmp`` and omit min/max.  A missing or zero min/max falls back
        to the average.
        """
        avg = float(raw.get("avg_da_lmp") or raw.get("lmp") or 0)
        return cls(
            iso=str(raw["iso"]),
            zone=str(raw["zone"]),
            zone_id=str(raw.get("zone_id") or raw["zone"]),
            year=str(raw["year"]),
            month=str(raw["month"]).zfill(2),
            avg_da_lmp=avg,
            min_price=float(raw.get("min_price") or avg),
            max_price=float(raw.get("max_price") or avg),
            record_count=int(raw.get("record_count") or 0),
        )

    def to_dict(self) -> dict:
        return {
            "iso":          self.iso,
            "zone":         self.zone,
            "zone_id":      self.zone_id,
            "year":         self.year,
            "month":        self.month,
            "avg_da_lmp":   self.avg_da_lmp,
            "min_price":    self.min_price,
            "max_price":    self.max_price,
            "record_count": self.record_count,
        }


@dataclass
class MonthlyMergeStats:
    added: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def changed(self) -> bool:
        return self.added > 0 or self.updated > 0


@dataclass
class HourlyMergeStats:
    added_months: int = 0
    updated_months: int = 0
    skipped_months: int = 0
    total_records: int = 0

    @property
    def changed(self) -> bool:
        return self.added_months > 0 or self.updated_months > 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def empty_database() -> dict:
    return {"meta": {}, "data": {}, "hourly": {}}


def monthly_key(record: dict) -> tuple[str, str, str, str]:
    return (
        str(record.get("iso", "")),
        str(record.get("zone", "")),
        str(record.get("year", "")),
        str(record.get("month", "")),
    )


def _sort_key(record: dict) -> tuple[str, str, str]:
    return (
        str(record.get("zone") or ""),
        str(record.get("year") or ""),
        str(record.get("month") or ""),
    )


def count_records(database: dict) -> tuple[int, int]:
    """Return ``(monthly, hourly)`` record totals."""
    monthly = sum(len(records or []) for records in (database.get("data") or {}).values())
    hourly = sum(
        len(points or [])
        for months in (database.get("hourly") or {}).values()
        for points in (months or {}).values()
    )
    return monthly, hourly


# ---------------------------------------------------------------------------
# Monthly merge
# ---------------------------------------------------------------------------


def merge_monthly_data(database: dict, incoming: list[dict]) -> MonthlyMergeStats:
    """
    Upsert *incoming* monthly records into ``database["data"]``.

    New keys are appended.  An existing key is overwritten only when the
    averages differ by more than ``PRICE_EPSILON`` and the incoming value is
    not a zero standing in for a stored non-zero price.  Each ISO's list is
    sorted by (zone, year, month) afterwards.

    Running the same *incoming* twice is a no-op the second time.
    """
    stats = MonthlyMergeStats()
    data: dict[str, list[dict]] = database.setdefault("data", {})
    positions: dict[str, dict[tuple, int]] = {}

    for raw in incoming:
        record = MonthlyLMPRecord.from_raw(raw)
        bucket = data.setdefault(record.iso, [])

        index = positions.get(record.iso)
        if index is None:
            index = {}
            for pos, existing in enumerate(bucket):
                index.setdefault(monthly_key(existing), pos)
            positions[record.iso] = index

        pos: Optional[int] = index.get(record.key)
        if pos is None:
            bucket.append(record.to_dict())
            index[record.key] = len(bucket) - 1
            stats.added += 1
            continue

        existing_price = float(bucket[pos].get("avg_da_lmp") or 0)
        if record.avg_da_lmp == 0 and existing_price != 0:
            logger.warning(
                "Skipping zero-price update for {} (existing: ${})",
                "_".join(record.key), existing_price,
            )
            stats.unchanged += 1
            continue

        if abs(existing_price - record.avg_da_lmp) > PRICE_EPSILON:
            bucket[pos] = record.to_dict()
            stats.updated += 1
        else:
            stats.unchanged += 1

    for records in data.values():
        records.sort(key=_sort_key)

    logger.info(
        "Monthly merge: {} added, {} updated, {} unchanged",
        stats.added, stats.updated, stats.unchanged,
    )
    return stats


# ---------------------------------------------------------------------------
# Hourly merge
# ---------------------------------------------------------------------------


def merge_hourly_data(database: dict, incoming: Optional[dict[str, Any]]) -> HourlyMergeStats:
    """
    Replace ``database["hourly"][iso][year_month]`` with each incoming block.

    *incoming* is the hourly fetch payload ``{"data": {iso: {ym: [points]}}}``.
    Empty blocks are ignored; blocks whose prices are all zero are skipped
    and counted as bad fetches.  Months not in *incoming* are left alone.
    """
    stats = HourlyMergeStats()
    if not incoming or not incoming.get("data"):
        return stats

    hourly: dict[str, dict[str, list]] = database.setdefault("hourly", {})

    for iso, months in incoming["data"].items():
        stored = hourly.setdefault(iso, {})
        for year_month, points in (months or {}).items():
            if not points:
                continue

            if all(point.get("p") == 0 for point in points):
                logger.warning(
                    "Skipping {}/{}: all {} records have p=0 (bad fetch)",
                    iso, year_month, len(points),
                )
                stats.skipped_months += 1
                continue

            if year_month in stored:
                stats.updated_months += 1
            else:
                stats.added_months += 1
            stored[year_month] = points
            stats.total_records += len(points)

    logger.info(
        "Hourly merge: {} new months, {} updated, {} skipped, {} points",
        stats.added_months, stats.updated_months, stats.skipped_months, stats.total_records,
    )
    return stats
