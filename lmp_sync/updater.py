"""
LMP Sync — database updater
Merges freshly fetched monthly + hourly LMPs into ``lmp-database.json`` via the
Secure Data API.  Records are only ever added or updated, never deleted.

One run is one unit of work:

    read database (1 GET)  →  merge in memory  →  save (1 PUT, only if changed)

Any failure before the PUT leaves the stored document exactly as it was.  Two
runs must not overlap: the read-merge-write window is unprotected.

Usage
-----
    python -m lmp_sync.updater                 # merge temp/fetched-*.json
    python -m lmp_sync.updater --fetch \\
        --start 2025-01-01 --end 2025-01-31 --markets PJM,ISONE

Environment: DATA_API_ENDPOINT, DATA_API_KEY (write access to the LMP
database), plus ARCADIA_APP_ID / ARCADIA_APP_KEY when fetching.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from loguru import logger

from lmp_sync.data_api import DataApiClient
from lmp_sync.genability import (
    HOURLY_PATH,
    MONTHLY_PATH,
    client_from_env,
    fetch_markets,
    resolve_markets,
)
from lmp_sync.merge import (
    HourlyMergeStats,
    MonthlyMergeStats,
    count_records,
    empty_database,
    merge_hourly_data,
    merge_monthly_data,
)

load_dotenv()

LMP_FILE = "lmp-database.json"
DATABASE_VERSION = "3.1"
DATA_SOURCE = "arcadia-genability"


@dataclass
class UpdateReport:
    monthly: MonthlyMergeStats
    hourly: HourlyMergeStats
    total_monthly: int
    total_hourly: int
    saved: bool

    @property
    def changed(self) -> bool:
        return self.monthly.changed or self.hourly.changed


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def load_fetch_file(path: Path) -> Optional[dict]:
    """Parsed fetch file, or ``None`` when it does not exist."""
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def load_database(client: DataApiClient) -> dict:
    """Current LMP database, or a fresh empty one if none is stored yet."""
    database = client.get_document(LMP_FILE)
    if not isinstance(database, dict) or not isinstance(database.get("data"), dict):
        logger.info("No existing database, creating new one.")
        return empty_database()

    monthly, hourly = count_records(database)
    logger.info("Loaded database: {:,} monthly, {:,} hourly records", monthly, hourly)
    return database


def build_meta(database: dict, fetch_range: Optional[dict], now: Optional[datetime] = None) -> dict:
    monthly, hourly = count_records(database)
    stamp = (now or datetime.now(tz=timezone.utc)).isoformat()
    return {
        "lastUpdate":          stamp,
        "lastFetchRange":      fetch_range,
        "storage":             "azure",
        "version":             DATABASE_VERSION,
        "source":              DATA_SOURCE,
        "hasHourlyData":       hourly > 0,
        "totalMonthlyRecords": monthly,
        "totalHourlyRecords":  hourly,
    }


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


def run_update(
    client: DataApiClient,
    monthly_records: list[dict],
    hourly_payload: Optional[dict[str, Any]] = None,
    fetch_range: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> UpdateReport:
    """
    Merge one fetch into the stored database and save it once.

    Exceptions propagate unchanged; nothing is written unless the merge
    completed and produced at least one added or updated entry.
    """
    zero_monthly = sum(
        1 for r in monthly_records if not (r.get("avg_da_lmp") or r.get("lmp"))
    )
    if zero_monthly:
        logger.warning(
            "{}/{} monthly records have zero LMP; they will not overwrite stored non-zero values.",
            zero_monthly, len(monthly_records),
        )

    database = load_database(client)
    monthly_stats = merge_monthly_data(database, monthly_records)
    hourly_stats = merge_hourly_data(database, hourly_payload)

    database["meta"] = build_meta(database, fetch_range, now)
    total_monthly = database["meta"]["totalMonthlyRecords"]
    total_hourly = database["meta"]["totalHourlyRecords"]

    report = UpdateReport(
        monthly=monthly_stats,
        hourly=hourly_stats,
        total_monthly=total_monthly,
        total_hourly=total_hourly,
        saved=False,
    )

    if not report.changed:
        logger.info("No changes to save.")
        return report

    payload_mb = len(json.dumps(database)) / 1024 / 1024
    logger.info(
        "Saving {}: {:,} monthly, {:,} hourly records ({:.2f} MB)",
        LMP_FILE, total_monthly, total_hourly, payload_mb,
    )
    client.put_document(LMP_FILE, database)
    report.saved = True
    return report


# ---------------------------------------------------------------------------
# Command line  (python -m lmp_sync.updater)
# ---------------------------------------------------------------------------


def _parse_args(argv: Optional[list[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Merge fetched LMP data into the LMP database.")
    parser.add_argument("--fetch", action="store_true",
                        help="Fetch from Genability in this run instead of reading temp files")
    parser.add_argument("--start", default=os.getenv("START_DATE"), help="YYYY-MM-DD (with --fetch)")
    parser.add_argument("--end", default=os.getenv("END_DATE"), help="YYYY-MM-DD (with --fetch)")
    parser.add_argument("--markets", default=os.getenv("ISO_MARKETS", "all"),
                        help="Comma-separated ISOs or 'all' (with --fetch)")
    parser.add_argument("--monthly-file", type=Path, default=MONTHLY_PATH)
    parser.add_argument("--hourly-file", type=Path, default=HOURLY_PATH)
    parser.add_argument("--keep-files", action="store_true",
                        help="Do not delete the fetch files after a successful run")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO"))
    logger.info("LMP Database Updater v{}", DATABASE_VERSION)

    try:
        client = DataApiClient(
            os.getenv("DATA_API_ENDPOINT", ""), os.getenv("DATA_API_KEY", "")
        )

        if args.fetch:
            if not args.start or not args.end:
                logger.error("--fetch needs --start/--end (or START_DATE/END_DATE).")
                return 1
            fetched = fetch_markets(
                client_from_env(), resolve_markets(args.markets), args.start, args.end
            )
            monthly_records = fetched.monthly
            hourly_payload: Optional[dict] = fetched.hourly_payload(
                datetime.now(tz=timezone.utc).isoformat()
            )
            fetch_range = {"start": args.start, "end": args.end}
        else:
            monthly_file = load_fetch_file(args.monthly_file)
            if monthly_file is None:
                logger.error("Monthly data file not found: {}", args.monthly_file)
                return 1
            hourly_payload = load_fetch_file(args.hourly_file)
            if hourly_payload is None:
                logger.info("No hourly data file (optional).")
            monthly_records = monthly_file.get("records") or []
            fetch_range = monthly_file.get("dateRange")
            logger.info("Monthly data: {:,} records | range: {}", len(monthly_records), fetch_range)

        report = run_update(client, monthly_records, hourly_payload, fetch_range)

    except Exception as exc:
        logger.exception("Fatal: {}", exc)
        return 1

    if not args.fetch and not args.keep_files:
        for path in (args.monthly_file, args.hourly_file):
            path.unlink(missing_ok=True)
        logger.info("Fetch files cleaned up.")

    logger.info("Database updated." if report.saved else "No changes needed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
