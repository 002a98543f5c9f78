#!/usr/bin/env python
"""
Import ZIP Codes - load the ZIP -> state/city/county reference table.

Sources:
    hud   HUD USPS ZIP-county crosswalk API (needs HUD_API_TOKEN)
    csv   A CSV file or URL with columns zip,state,city,county

Usage:
    HUD_API_TOKEN=... python scripts/import_zipcodes.py --source hud
    python scripts/import_zipcodes.py --source csv --path data/zipcodes.csv
    python scripts/import_zipcodes.py --source csv --path https://example.com/zips.csv

Rows are upserted, so re-running refreshes the table.
"""

import sys
import os
import csv
import io
import click
import logging
from typing import Dict, Iterable, List, Optional

import requests

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.web import create_app
from app.web.db import db
from app.services.catalog_store import ZipcodeStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

HUD_CROSSWALK_URL = "https://www.huduser.gov/hudapi/public/usps"
BATCH_SIZE = 1000


def fetch_hud_rows(token: str) -> List[Dict[str, str]]:
    """ZIP -> county crosswalk (type=2) for every US ZIP."""
    resp = requests.get(
        HUD_CROSSWALK_URL,
        params={"type": 2, "query": "All"},
        headers={"Authorization": f"Bearer {token}"},
        timeout=120,
    )
    resp.raise_for_status()
    results = resp.json().get("data", {}).get("results", [])
    logger.info(f"Downloaded {len(results)} crosswalk rows from HUD")

    # A ZIP spanning several counties is assigned to the one with most addresses
    best: Dict[str, Dict[str, str]] = {}
    for row in results:
        zip_code = str(row.get("zip", "")).zfill(5)
        ratio = float(row.get("tot_ratio") or 0)
        current = best.get(zip_code)
        if current is None or ratio > current["_ratio"]:
            best[zip_code] = {
                "zip": zip_code,
                "state": row.get("state"),
                "city": row.get("city"),
                "county": row.get("geoid"),
                "_ratio": ratio,
            }
    return list(best.values())


def read_csv_rows(path: str) -> List[Dict[str, str]]:
    if path.startswith("http://") or path.startswith("https://"):
        resp = requests.get(path, timeout=60)
        resp.raise_for_status()
        text = resp.text
    else:
        with open(path, newline="", encoding="utf-8") as f:
            text = f.read()
    return list(csv.DictReader(io.StringIO(text)))


def normalize_rows(rows: Iterable[Dict[str, str]]) -> List[Dict[str, Optional[str]]]:
    normalized = []
    skipped = 0
    for row in rows:
        zip_code = str(row.get("zip") or "").strip().zfill(5)
        state = str(row.get("state") or "").strip().upper()
        if not zip_code.isdigit() or len(zip_code) != 5 or len(state) != 2:
            skipped += 1
            continue
        normalized.append({
            "zip": zip_code,
            "state": state,
            "city": (row.get("city") or "").strip().title() or None,
            "county": (row.get("county") or "").strip() or None,
        })
    if skipped:
        logger.warning(f"Skipped {skipped} rows without a valid zip/state")
    return normalized


@click.command()
@click.option('--source', type=click.Choice(['hud', 'csv']), default='hud',
              help='Where to load ZIP codes from (default: hud)')
@click.option('--path', default=None,
              help='CSV file path or URL (with --source csv)')
def main(source: str, path: Optional[str]):
    """Load the us_zipcodes reference table."""
    if source == 'hud':
        token = os.environ.get("HUD_API_TOKEN")
        if not token:
            raise click.UsageError("HUD_API_TOKEN environment variable is not set")
        raw_rows = fetch_hud_rows(token)
    else:
        if not path:
            raise click.UsageError("--path is required with --source csv")
        raw_rows = read_csv_rows(path)

    rows = normalize_rows(raw_rows)
    logger.info(f"Importing {len(rows)} ZIP codes")

    app = create_app()
    with app.app_context():
        db.create_all()
        store = ZipcodeStore()
        written = 0
        for start in range(0, len(rows), BATCH_SIZE):
            written += store.upsert(rows[start:start + BATCH_SIZE])
            logger.info(f"  {written}/{len(rows)}")

    logger.info("ZIP import complete")


if __name__ == '__main__':
    main()
