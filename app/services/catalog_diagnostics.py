"""
Catalog health diagnostics. Read-only: nothing in this module writes.
"""
import logging
from typing import Any, Iterable

from app.models.catalog import PlantSubCategory, Variety
from app.services.catalog_store import CatalogStore
from app.services.catalog_types import STATUS_ACTIVE, Classification
from app.services.variety_dedup import group_duplicates, strict_duplicate_groups

logger = logging.getLogger(__name__)

CODE_SAMPLE_SIZE = 5
NAME_SAMPLE_SIZE = 5
INVALID_SAMPLE_SIZE = 10
INACTIVE_SAMPLE_SIZE = 10
UNCATEGORIZED_SAMPLE_SIZE = 10


def compute_diagnostics(varieties: Iterable[Variety], subcategories: Iterable[PlantSubCategory]) -> dict[str, Any]:
    subcats = list(subcategories)
    valid_ids = {sc.id for sc in subcats}
    active_ids = {sc.id for sc in subcats if sc.is_active}
    active = [v for v in varieties if (v.status or STATUS_ACTIVE) == STATUS_ACTIVE]

    by_code: dict[str, list[Variety]] = {}
    for v in active:
        code = (v.variety_code or "").strip()
        if code:
            by_code.setdefault(code, []).append(v)
    code_groups = [g for g in by_code.values() if len(g) > 1]
    name_groups = [g.varieties for g in group_duplicates(active, "name")]
    strict_groups = strict_duplicate_groups(active)

    invalid_count = 0
    inactive_count = 0
    invalid_samples: list[dict[str, Any]] = []
    inactive_samples: list[dict[str, Any]] = []
    uncategorized: list[Variety] = []

    for v in active:
        ids = Classification.from_variety(v).ids
        if any(i not in valid_ids for i in ids):
            invalid_count += 1
            if len(invalid_samples) < INVALID_SAMPLE_SIZE:
                invalid_samples.append({"id": v.id, "name": v.variety_name, "ids": list(ids)})
        elif any(i not in active_ids for i in ids):
            inactive_count += 1
            if len(inactive_samples) < INACTIVE_SAMPLE_SIZE:
                inactive_samples.append({"id": v.id, "name": v.variety_name, "ids": list(ids)})

        if not any(i in valid_ids for i in ids):
            uncategorized.append(v)

    return {
        "total_varieties": len(active),
        "duplicate_groups_by_code": len(code_groups),
        "duplicate_groups_by_name": len(name_groups),
        "total_duplicate_records_by_code": sum(len(g) - 1 for g in code_groups),
        "total_duplicate_records_by_name": sum(len(g) - 1 for g in name_groups),
        "duplicate_groups_strict": len(strict_groups),
        "total_duplicate_records_strict": sum(len(g.varieties) - 1 for g in strict_groups),
        "varieties_with_invalid_subcats": invalid_count,
        "varieties_with_inactive_subcats": inactive_count,
        "true_uncategorized": len(uncategorized),
        "sample_duplicates_by_code": [
            {
                "code": g[0].variety_code,
                "count": len(g),
                "names": ", ".join(v.variety_name for v in g),
            }
            for g in code_groups[:CODE_SAMPLE_SIZE]
        ],
        "sample_duplicates_by_name": [
            {
                "name": g[0].variety_name,
                "type": g[0].plant_type_name,
                "count": len(g),
                "ids": [v.id for v in g],
            }
            for g in name_groups[:NAME_SAMPLE_SIZE]
        ],
        "sample_invalid": invalid_samples,
        "sample_inactive": inactive_samples,
        "sample_uncategorized": [
            {"id": v.id, "name": v.variety_name, "type": v.plant_type_name}
            for v in uncategorized[:UNCATEGORIZED_SAMPLE_SIZE]
        ],
    }


async def run_diagnostics(store: CatalogStore) -> dict[str, Any]:
    varieties = await store.list_varieties(status=STATUS_ACTIVE)
    subcats = await store.list_subcategories()
    diagnostics = compute_diagnostics(varieties, subcats)
    logger.info(
        "run_diagnostics: %d active varieties, %d invalid, %d inactive, %d uncategorized",
        diagnostics["total_varieties"],
        diagnostics["varieties_with_invalid_subcats"],
        diagnostics["varieties_with_inactive_subcats"],
        diagnostics["true_uncategorized"],
    )
    return diagnostics
