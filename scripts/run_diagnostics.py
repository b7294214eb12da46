#!/usr/bin/env python3
"""
One-off script to print catalog health diagnostics.

Usage (inside the API container):
    python scripts/run_diagnostics.py
    python scripts/run_diagnostics.py --json     # raw JSON instead of a summary
"""
import argparse
import asyncio
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s: %(message)s",
    stream=sys.stdout,
)

from app.db.session import AsyncSessionLocal
from app.services.catalog_diagnostics import run_diagnostics
from app.services.catalog_store import CatalogStore

parser = argparse.ArgumentParser(description="Catalog health diagnostics (read-only)")
parser.add_argument("--json", action="store_true", help="Print the full diagnostics object as JSON")

SUMMARY_KEYS = (
    "total_varieties",
    "duplicate_groups_by_code",
    "total_duplicate_records_by_code",
    "duplicate_groups_by_name",
    "total_duplicate_records_by_name",
    "duplicate_groups_strict",
    "varieties_with_invalid_subcats",
    "varieties_with_inactive_subcats",
    "true_uncategorized",
)


async def main() -> None:
    args = parser.parse_args()
    async with AsyncSessionLocal() as db:
        diagnostics = await run_diagnostics(CatalogStore(db, dry_run=True))

    if args.json:
        print(json.dumps(diagnostics, indent=2, default=str))
        return

    width = max(len(k) for k in SUMMARY_KEYS)
    print()
    for key in SUMMARY_KEYS:
        print(f"{key:<{width}}  {diagnostics[key]:>8,}")


if __name__ == "__main__":
    asyncio.run(main())
