#!/usr/bin/env python3
"""
One-off script to merge duplicate varieties outside HTTP.

Usage (inside the API container):
    python scripts/run_merge.py                              # dry run, name matching
    python scripts/run_merge.py --mode code_first --apply    # live merge
    python scripts/run_merge.py --plant-type <id> --max-groups 100 --apply
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
from app.services.catalog_store import CatalogStore
from app.services.reconciliation_runs import record_run
from app.services.variety_dedup import MATCHING_MODES, merge_duplicates

parser = argparse.ArgumentParser(description="Merge duplicate catalog varieties")
parser.add_argument("--plant-type", dest="plant_type_id", default=None, help="Limit to one plant type id")
parser.add_argument("--mode", choices=MATCHING_MODES, default="name", help="Duplicate matching mode")
parser.add_argument("--max-groups", type=int, default=None, help="Merge at most this many groups")
parser.add_argument("--apply", action="store_true", help="Write changes (default is a dry run)")


async def main() -> None:
    args = parser.parse_args()
    dry_run = not args.apply
    print(f"Starting merge ({'dry run' if dry_run else 'live'}, mode={args.mode})...\n")

    async with AsyncSessionLocal() as db:
        store = CatalogStore(db, dry_run=dry_run)
        _, stats = await record_run(
            db,
            "merge_duplicates",
            "script",
            dry_run,
            lambda: merge_duplicates(store, args.plant_type_id, args.mode, args.max_groups),
            plant_type_id=args.plant_type_id,
        )

    summary = {k: stats[k] for k in ("groupsMerged", "recordsMerged", "referencesUpdated", "remainingDuplicates")}
    print(json.dumps(summary, indent=2))
    if stats["errors"]:
        print(f"\n{len(stats['errors'])} errors:")
        for err in stats["errors"]:
            print(f"  {err}")
    print("\nMerge finished.")


if __name__ == "__main__":
    asyncio.run(main())
