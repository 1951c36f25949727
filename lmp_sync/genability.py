"""
LMP Sync — Arcadia/Genability Day-Ahead LMP fetcher
Pulls hourly day-ahead LMPs per ISO zone and rolls them up into monthly
averages for the LMP database.

Endpoint: https://api.genability.com/rest/public/properties/{propertyKey}/lookups
Auth:     HTTP Basic with ARCADIA_APP_ID / ARCADIA_APP_KEY

Output shapes
-------------
hourly   {iso: {"YYYY-MM": [{"dt": ISO timestamp, "p": $/MWh, "z": zone}, ...]}}
monthly  [{iso, zone, zone_id, year, month, avg_da_lmp, min_price,
           max_price, record_count}, ...]

Price field: ``actualValue`` then ``bestValue``.  Months are bucketed on the
timestamp's own local date (first seven characters), not the runner's clock.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pandas as pd
import requests
from dotenv import load_dotenv
from loguru import logger

load_dotenv()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

API_BASE_URL = "https://api.genability.com/rest/public/properties"

PAGE_COUNT = 1000
MAX_RETRIES = 3
RETRY_BACKOFF = 2.0
REQUEST_TIMEOUT = 30.0
ZONE_DELAY_SECONDS = 0.25   # courtesy pause between zones

TEMP_DIR = Path(__file__).resolve().parent.parent / "temp"
HOURLY_PATH = TEMP_DIR / "fetched-lmp-hourly.json"
MONTHLY_PATH = TEMP_DIR / "fetched-lmp-data.json"

# value = API subKeyName, name = zone label stored in the database
ISO_CONFIG: dict[str, dict[str, Any]] = {
    "ERCOT": {
        "name": "ERCOT",
        "property_key": "hourlyPricingDayAheadERCOT",
        "zones": [
            {"value": "AEN",     "name": "AEN"},
            {"value": "CPS",     "name": "CPS"},
            {"value": "HOUSTON", "name": "HOUSTON"},
            {"value": "LCRA",    "name": "LCRA"},
            {"value": "NORTH",   "name": "NORTH"},
            {"value": "RAYBN",   "name": "RAYBN"},
            {"value": "SOUTH",   "name": "SOUTH"},
            {"value": "WEST",    "name": "WEST"},
        ],
    },
    "ISONE": {
        "name": "ISO-NE",
        "property_key": "hourlyPricingDayAheadISONE",
        "zones": [
            {"value": "4001", "name": "4001_Maine"},
            {"value": "4002", "name": "4002_NH"},
            {"value": "4003", "name": "4003_Vermont"},
            {"value": "4004", "name": "4004_Connecticut"},
            {"value": "4005", "name": "4005_Rhode_Island"},
            {"value": "4006", "name": "4006_SEMA"},
            {"value": "4007", "name": "4007_WCMA"},
            {"value": "4008", "name": "4008_NEMA"},
        ],
    },
    "MISO": {
        "name": "MISO",
        "property_key": "hourlyPricingDayAheadMISO",
        "zones": [
            {"value": "ARKANSAS",  "name": "ARKANSAS"},
            {"value": "ILLINOIS",  "name": "ILLINOIS"},
            {"value": "INDIANA",   "name": "INDIANA"},
            {"value": "LOUISIANA", "name": "LOUISIANA"},
            {"value": "MICHIGAN",  "name": "MICHIGAN"},
            {"value": "MINN",      "name": "MINN"},
            {"value": "MS",        "name": "MS"},
            {"value": "TEXAS",     "name": "TEXAS"},
        ],
    },
    "NYISO": {
        "name": "NYISO",
        "property_key": "hourlyPricingDayAheadNYISO",
        # 11 load zones A–K followed by 4 hubs; stored under their numeric ids
        "zones": [
            {"value": zone_id, "name": zone_id}
            for zone_id in (
                "61752", "61753", "61754", "61755", "61756", "61757", "61758",
                "61759", "61760", "61761", "61762", "61844", "61845", "61846",
                "61847",
            )
        ],
    },
    "PJM": {
        "name": "PJM",
        "property_key": "hourlyPricingDayAheadPJM",
        "zones": [
            {"value": "51291",     "name": "AECO"},
            {"value": "51292",     "name": "BGE"},
            {"value": "51293",     "name": "DPL"},
            {"value": "51295",     "name": "JCPL"},
            {"value": "51296",     "name": "METED"},
            {"value": "51297",     "name": "PECO"},
            {"value": "51298",     "name": "PENELEC"},
            {"value": "51299",     "name": "PEPCO"},
            {"value": "51300",     "name": "PPL"},
            {"value": "51301",     "name": "DUQ"},
            {"value": "7633629",   "name": "EKPC"},
            {"value": "8394954",   "name": "APS"},
            {"value": "8445784",   "name": "AEP"},
            {"value": "33092371",  "name": "COMED"},
            {"value": "34508503",  "name": "DAY"},
            {"value": "34964545",  "name": "DOM"},
            {"value": "37737283",  "name": "RECO"},
            {"value": "116013753", "name": "ATSI"},
            {"value": "124076095", "name": "DEOK"},
        ],
    },
}


class GenabilityError(RuntimeError):
    """Upstream pricing fetch failed or produced nothing usable."""


# ---------------------------------------------------------------------------
# Output container
# ---------------------------------------------------------------------------


@dataclass
class FetchResult:
    """Everything one fetch run produced, ready for merging or saving."""

    start: str
    end: str
    markets: list[str]
    hourly: dict[str, dict[str, list[dict]]] = field(default_factory=dict)
    monthly: list[dict] = field(default_factory=list)

    @property
    def hourly_record_count(self) -> int:
        return sum(len(points) for months in self.hourly.values() for points in months.values())

    def hourly_payload(self, fetched_at: str) -> dict:
        return {
            "fetchedAt": fetched_at,
            "dateRange": {"start": self.start, "end": self.end},
            "markets": self.markets,
            "hourlyRecordCount": self.hourly_record_count,
            "data": self.hourly,
        }

    def monthly_payload(self, fetched_at: str) -> dict:
        return {
            "fetchedAt": fetched_at,
            "dateRange": {"start": self.start, "end": self.end},
            "markets": self.markets,
            "recordCount": len(self.monthly),
            "records": self.monthly,
        }


# ---------------------------------------------------------------------------
# Core client
# ---------------------------------------------------------------------------


class GenabilityClient:
    """
    Reads hourly day-ahead LMP lookups from the Genability properties API.

    Parameters
    ----------
    app_id / app_key:  Arcadia credentials (HTTP Basic).
    timeout:           Per-request HTTP timeout in seconds.
    max_retries:       Attempts on timeouts, connection errors and 5xx.
    page_count:        Rows per paginated request.
    """

    def __init__(
        self,
        app_id: str,
        app_key: str,
        timeout: float = REQUEST_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        page_count: int = PAGE_COUNT,
    ) -> None:
        if not app_id or not app_key:
            raise GenabilityError("Missing ARCADIA_APP_ID or ARCADIA_APP_KEY.")
        self._timeout = timeout
        self._max_retries = max_retries
        self._page_count = page_count
        self._session = requests.Session()
        self._session.auth = (app_id, app_key)
        self._session.headers.update({"Accept": "application/json"})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get(self, url: str, params: dict[str, Any]) -> Any:
        """GET with retry/backoff. Returns parsed JSON."""
        last_exc: Exception = RuntimeError("No attempts made")
        for attempt in range(1, self._max_retries + 1):
            try:
                logger.debug("Genability GET {} params={} attempt={}/{}", url, params, attempt, self._max_retries)
                resp = self._session.get(url, params=params, timeout=self._timeout)
                resp.raise_for_status()
                return resp.json()
            except requests.exceptions.Timeout as exc:
                logger.warning("Genability timeout (attempt {}): {}", attempt, exc)
                last_exc = exc
            except requests.exceptions.ConnectionError as exc:
                logger.warning("Genability connection error (attempt {}): {}", attempt, exc)
                last_exc = exc
            except requests.exceptions.HTTPError as exc:
                status = exc.response.status_code if exc.response is not None else "?"
                if exc.response is not None and 400 <= exc.response.status_code < 500:
                    logger.error("Genability client error {}: {}", status, exc)
                    raise GenabilityError(f"Genability API returned {status}") from exc
                logger.warning("Genability server error {} (attempt {}): {}", status, attempt, exc)
                last_exc = exc
            except ValueError as exc:
                raise GenabilityError(f"Genability returned invalid JSON: {exc}") from exc

            if attempt < self._max_retries:
                wait = RETRY_BACKOFF * attempt
                logger.info("Genability retry in {:.1f}s…", wait)
                time.sleep(wait)

        raise GenabilityError(f"Genability request failed: {last_exc}") from last_exc

    # ------------------------------------------------------------------
    # Public methods
    # ------------------------------------------------------------------

    def fetch_zone_hourly(
        self, property_key: str, sub_key: str, start_date: str, end_date: str
    ) -> list[dict]:
        """
        Fetch every hourly price for one zone between two YYYY-MM-DD dates.

        Returns ``[{"datetime": str, "price": float}, ...]`` in API order.
        """
        url = f"{API_BASE_URL}/{property_key}/lookups"
        records: list[dict] = []
        page_start = 0

        while True:
            body = self._get(url, {
                "subKeyName": sub_key,
                "fromDateTime": f"{start_date}T00:00:00",
                "toDateTime": f"{end_date}T23:59:59",
                "pageStart": page_start,
                "pageCount": self._page_count,
            })
            results = body.get("results") or []
            if not results:
                break

            for item in results:
                stamp = item.get("fromDateTime")
                try:
                    price = float(item.get("actualValue") or item.get("bestValue") or 0)
                except (TypeError, ValueError):
                    continue
                if stamp:
                    records.append({"datetime": stamp, "price": price})

            total = body.get("count") or 0
            logger.debug("{} {}: {}/{} rows", property_key, sub_key, len(records), total)
            if total <= page_start + self._page_count:
                break
            page_start += self._page_count

        return records


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def monthly_from_hourly(records: list[dict], iso: str, zone: str) -> list[dict]:
    """Roll hourly ``{datetime, price}`` rows up into monthly summary records."""
    if not records:
        return []

    df = pd.DataFrame(records)
    df["year"] = df["datetime"].str.slice(0, 4)
    df["month"] = df["datetime"].str.slice(5, 7)

    grouped = (
        df.groupby(["year", "month"], sort=True)["price"]
        .agg(avg="mean", low="min", high="max", points="count")
        .reset_index()
    )

    return [
        {
            "iso": iso,
            "zone": zone,
            "zone_id": zone,
            "year": str(row["year"]),
            "month": str(row["month"]),
            "avg_da_lmp": round(float(row["avg"]), 4),
            "min_price": round(float(row["low"]), 4),
            "max_price": round(float(row["high"]), 4),
            "record_count": int(row["points"]),
        }
        for row in grouped.to_dict("records")
    ]


def resolve_markets(markets: str) -> list[str]:
    """``"all"`` or a comma list → known ISO keys, unknown names dropped."""
    if markets.strip().lower() == "all":
        return list(ISO_CONFIG)
    requested = [m.strip().upper() for m in markets.split(",") if m.strip()]
    unknown = [m for m in requested if m not in ISO_CONFIG]
    if unknown:
        logger.warning("Unknown ISO(s) ignored: {}", ", ".join(unknown))
    return [m for m in requested if m in ISO_CONFIG]


def fetch_markets(
    client: GenabilityClient,
    markets: list[str],
    start_date: str,
    end_date: str,
    zone_delay: float = ZONE_DELAY_SECONDS,
) -> FetchResult:
    """
    Fetch every configured zone of *markets* and build hourly + monthly output.

    Any zone failure aborts the whole fetch.  A run that returns no hourly
    points at all is treated as a failure too.
    """
    result = FetchResult(start=start_date, end=end_date, markets=list(markets))

    for iso in markets:
        config = ISO_CONFIG[iso]
        iso_hourly = result.hourly.setdefault(iso, {})
        iso_monthly: list[dict] = []
        logger.info("Fetching {} ({} zones)…", config["name"], len(config["zones"]))

        for zone in config["zones"]:
            records = client.fetch_zone_hourly(
                config["property_key"], zone["value"], start_date, end_date
            )
            if not records:
                logger.warning("  {} {}: no data", iso, zone["name"])
                continue

            for rec in records:
                iso_hourly.setdefault(rec["datetime"][:7], []).append({
                    "dt": rec["datetime"],
                    "p": round(rec["price"], 4),
                    "z": zone["name"],
                })

            monthly = monthly_from_hourly(records, iso, zone["name"])
            iso_monthly.extend(monthly)

            first_price = next((r["price"] for r in records if r["price"] != 0), None)
            note = f"${first_price:.2f}/MWh" if first_price is not None else "all zeros"
            logger.info("  {} {}: {} hourly → {} monthly ({})",
                        iso, zone["name"], len(records), len(monthly), note)

            if zone_delay:
                time.sleep(zone_delay)

        iso_monthly.sort(key=lambda r: (r["zone"], r["year"], r["month"]))
        result.monthly.extend(iso_monthly)

    if result.hourly_record_count == 0:
        raise GenabilityError("No data fetched. Check API credentials and date range.")

    logger.info("Fetched {} hourly points, {} monthly records",
                result.hourly_record_count, len(result.monthly))
    return result


def write_fetch_files(
    result: FetchResult,
    hourly_path: Path = HOURLY_PATH,
    monthly_path: Path = MONTHLY_PATH,
) -> None:
    """Persist a fetch as the two JSON files the updater consumes."""
    fetched_at = datetime.now(tz=timezone.utc).isoformat()
    for path, payload in (
        (hourly_path, result.hourly_payload(fetched_at)),
        (monthly_path, result.monthly_payload(fetched_at)),
    ):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload), encoding="utf-8")
        logger.info("Saved {} ({:.1f} KB)", path, path.stat().st_size / 1024)


def client_from_env() -> GenabilityClient:
    return GenabilityClient(
        app_id=os.getenv("ARCADIA_APP_ID", ""),
        app_key=os.getenv("ARCADIA_APP_KEY", ""),
    )


# ---------------------------------------------------------------------------
# Command line  (python -m lmp_sync.genability)
# ---------------------------------------------------------------------------


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch day-ahead LMPs into temp files.")
    parser.add_argument("--start", default=os.getenv("START_DATE"), help="YYYY-MM-DD")
    parser.add_argument("--end", default=os.getenv("END_DATE"), help="YYYY-MM-DD")
    parser.add_argument("--markets", default=os.getenv("ISO_MARKETS", "all"),
                        help="Comma-separated ISOs or 'all'")
    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO"))

    if not args.start or not args.end:
        logger.error("Missing START_DATE/END_DATE (or --start/--end).")
        return 1

    try:
        markets = resolve_markets(args.markets)
        result = fetch_markets(client_from_env(), markets, args.start, args.end)
        write_fetch_files(result)
    except GenabilityError as exc:
        logger.error("Fetch failed: {}", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
