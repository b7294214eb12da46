"""
Subcategory repair: reactivate subcategories and make every variety's primary
and array classification fields agree with one resolvable subcategory.

Every routine is idempotent: a variety is written only when a field actually
changes, so a second run over the same data issues no writes.
"""
import logging
from typing import Any, Optional

from app.models.catalog import PlantSubCategory, Variety
from app.services.catalog_store import CatalogStore
from app.services.catalog_types import Classification, has_content
from app.services.subcategory_resolver import SubcategoryLookup, SubcategoryResolver

logger = logging.getLogger(__name__)

INACTIVE_SAMPLE_SIZE = 20
FIX_SAMPLE_SIZE = 50
NO_MATCH_SAMPLE_SIZE = 20
DEFAULT_BATCH_SIZE = 500

CARROT_TYPE_NAME = "carrot"
CARROT_CANONICAL: dict[str, str] = {
    "PSC_CARROT_STORAGE":   "Storage",
    "PSC_CARROT_COLOR":     "Colored",
    "PSC_CARROT_KURODA":    "Kuroda",
    "PSC_CARROT_ROUND":     "Round",
    "PSC_CARROT_CHANTENAY": "Chantenay",
    "PSC_CARROT_DANVERS":   "Danvers",
    "PSC_CARROT_IMPERATOR": "Imperator",
    "PSC_CARROT_NANTES":    "Nantes",
}

_MALFORMED_CHARS = ("[", "]", '"')


def _new_stats() -> dict[str, Any]:
    return {
        "subcats_activated": 0,
        "varieties_normalized": 0,
        "junk_cleared": 0,
        "missing_code": 0,
        "errors": [],
    }


# ── Pure decisions ────────────────────────────────────────────────────────────

def resolve_primary(variety: Any, lookup: SubcategoryLookup) -> Optional[PlantSubCategory]:
    """
    Single primary subcategory for a variety, tried in order:
    existing id, stored code, ``extended_data.import_subcat_code``.
    """
    subcat = lookup.get(variety.plant_subcategory_id)
    if subcat is not None:
        return subcat

    plant_type_id = variety.plant_type_id
    for code in (variety.plant_subcategory_code, _import_code(variety)):
        if not code:
            continue
        subcat = lookup.find(code, plant_type_id)
        if subcat is not None and (not plant_type_id or subcat.plant_type_id == plant_type_id):
            return subcat
    return None


def _import_code(variety: Any) -> Optional[str]:
    ext = variety.extended_data
    if isinstance(ext, dict):
        code = ext.get("import_subcat_code")
        if isinstance(code, str) and code.strip():
            return code.strip()
    return None


def desired_classification_fields(variety: Any, subcat: Optional[PlantSubCategory]) -> dict[str, Any]:
    if subcat is not None:
        return Classification.single(subcat.id, subcat.subcat_code).as_fields()
    # Unresolved: clear the id and the mirrors, keep the stored code for follow-up
    return {
        "plant_subcategory_id": None,
        "plant_subcategory_code": variety.plant_subcategory_code,
        "plant_subcategory_ids": [],
        "plant_subcategory_codes": [],
    }


def malformed_canonical_code(subcat: PlantSubCategory) -> Optional[str]:
    """Canonical carrot code hidden in a malformed record, if any."""
    name = subcat.name or ""
    code = subcat.subcat_code or ""
    if not any(ch in name or ch in code for ch in _MALFORMED_CHARS):
        return None
    cleaned = code
    for ch in _MALFORMED_CHARS:
        cleaned = cleaned.replace(ch, "")
    cleaned = cleaned.strip().upper()
    return cleaned if cleaned in CARROT_CANONICAL else None


# ── Store-backed steps ────────────────────────────────────────────────────────

async def normalize_variety(
    store: CatalogStore,
    variety: Variety,
    lookup: SubcategoryLookup,
    stats: dict[str, Any],
) -> None:
    subcat = resolve_primary(variety, lookup)
    desired = desired_classification_fields(variety, subcat)
    changes = store.changed_fields(variety, desired)

    if subcat is None:
        stats["missing_code"] += 1

    if not changes:
        return

    had_array_content = has_content(variety.plant_subcategory_ids) or has_content(variety.plant_subcategory_codes)
    try:
        await store.update(variety, changes)
    except Exception as exc:
        logger.warning("normalize_variety: failed to update %s (%s): %s", variety.variety_name, variety.id, exc)
        stats["errors"].append(f"{variety.variety_name}: {exc}")
        return

    stats["varieties_normalized"] += 1
    if subcat is None and had_array_content:
        stats["junk_cleared"] += 1


async def _activate(store: CatalogStore, subcats: list[PlantSubCategory], stats: dict[str, Any]) -> None:
    for subcat in subcats:
        if subcat.is_active:
            continue
        try:
            await store.update(subcat, {"is_active": True})
        except Exception as exc:
            logger.warning("activate: failed to activate %s (%s): %s", subcat.name, subcat.id, exc)
            stats["errors"].append(f"{subcat.name}: {exc}")
            continue
        stats["subcats_activated"] += 1
        logger.info("activate: activated %s (%s)", subcat.name, subcat.subcat_code)


# ── Routines ──────────────────────────────────────────────────────────────────

async def repair_plant_type(store: CatalogStore, plant_type_id: str) -> dict[str, Any]:
    """Activate every subcategory of the plant type, then normalize its active varieties."""
    await store.get_plant_type(plant_type_id)
    subcats = await store.list_subcategories(plant_type_id)
    varieties = await store.list_varieties(plant_type_id=plant_type_id)
    logger.info(
        "repair_plant_type: %s — %d subcategories, %d varieties (dry_run=%s)",
        plant_type_id, len(subcats), len(varieties), store.dry_run,
    )

    stats = _new_stats()
    await _activate(store, subcats, stats)

    lookup = SubcategoryLookup(subcats)
    for variety in varieties:
        await normalize_variety(store, variety, lookup, stats)

    logger.info(
        "repair_plant_type: done — activated=%d normalized=%d junk_cleared=%d missing_code=%d errors=%d",
        stats["subcats_activated"], stats["varieties_normalized"], stats["junk_cleared"],
        stats["missing_code"], len(stats["errors"]),
    )
    return stats


async def repair_carrots(store: CatalogStore) -> dict[str, Any]:
    """
    Carrot repair against the fixed canonical code set.

    Malformed canonical records (bracket or quote artifacts from a bad import)
    are rewritten to their canonical code and name first; only canonical
    subcategories are then activated and used for variety normalization.
    """
    plant_type = await store.find_plant_type_by_name(CARROT_TYPE_NAME)
    subcats = await store.list_subcategories(plant_type.id)
    varieties = await store.list_varieties(plant_type_id=plant_type.id)

    stats = _new_stats()
    stats["step1_subcats_cleaned"] = 0

    well_formed = {
        sc.subcat_code for sc in subcats
        if sc.subcat_code in CARROT_CANONICAL and malformed_canonical_code(sc) is None
    }
    for subcat in subcats:
        canonical_code = malformed_canonical_code(subcat)
        if canonical_code is None:
            continue
        if canonical_code in well_formed:
            logger.warning(
                "repair_carrots: malformed subcategory %s duplicates existing %s — skipped",
                subcat.id, canonical_code,
            )
            continue
        changes = {
            "subcat_code": canonical_code,
            "name": CARROT_CANONICAL[canonical_code],
            "is_active": True,
        }
        try:
            await store.update(subcat, changes)
        except Exception as exc:
            logger.warning("repair_carrots: failed to clean subcategory %s: %s", subcat.id, exc)
            stats["errors"].append(f"{subcat.name}: {exc}")
            continue
        well_formed.add(canonical_code)
        stats["step1_subcats_cleaned"] += 1

    canonical = [sc for sc in subcats if sc.subcat_code in CARROT_CANONICAL]
    await _activate(store, canonical, stats)

    lookup = SubcategoryLookup(canonical)
    for variety in varieties:
        await normalize_variety(store, variety, lookup, stats)

    logger.info(
        "repair_carrots: done — cleaned=%d activated=%d normalized=%d junk_cleared=%d errors=%d",
        stats["step1_subcats_cleaned"], stats["subcats_activated"], stats["varieties_normalized"],
        stats["junk_cleared"], len(stats["errors"]),
    )
    return stats


async def activate_subcategories(store: CatalogStore, plant_type_id: Optional[str] = None) -> dict[str, Any]:
    if plant_type_id:
        await store.get_plant_type(plant_type_id)
    subcats = await store.list_subcategories(plant_type_id)
    inactive = [sc for sc in subcats if not sc.is_active]
    logger.info("activate_subcategories: %d inactive of %d (dry_run=%s)", len(inactive), len(subcats), store.dry_run)

    samples = [
        {"id": sc.id, "name": sc.name, "subcat_code": sc.subcat_code}
        for sc in inactive[:INACTIVE_SAMPLE_SIZE]
    ]
    stats = _new_stats()
    await _activate(store, inactive, stats)
    return {
        "inactive_count": len(inactive),
        "inactive_samples": samples,
        "activated": stats["subcats_activated"],
        "errors": stats["errors"],
    }


async def assign_subcategories_by_code(store: CatalogStore, plant_type_id: Optional[str] = None) -> dict[str, Any]:
    """Assign a subcategory to active varieties that have none, using the classification rules."""
    if plant_type_id:
        await store.get_plant_type(plant_type_id)
    subcats = await store.list_subcategories(plant_type_id)
    varieties = await store.list_varieties(plant_type_id=plant_type_id, missing_subcategory=True)
    logger.info(
        "assign_subcategories_by_code: %d varieties missing subcategory, %d subcategories loaded (dry_run=%s)",
        len(varieties), len(subcats), store.dry_run,
    )

    resolver = SubcategoryResolver(SubcategoryLookup(subcats))
    fixed = 0
    no_match = 0
    fixes: list[dict[str, Any]] = []
    no_match_log: list[dict[str, Any]] = []
    errors: list[str] = []

    for variety in varieties:
        resolution = resolver.resolve(variety)
        if not resolution.matched:
            no_match += 1
            no_match_log.append({
                "id": variety.id,
                "name": variety.variety_name,
                "variety_code": variety.variety_code,
                "plant_type_id": variety.plant_type_id,
                "reason": resolution.reason,
            })
            continue

        subcat = resolution.subcategory
        desired = Classification.single(subcat.id, subcat.subcat_code).as_fields()
        try:
            await store.update(variety, store.changed_fields(variety, desired))
        except Exception as exc:
            logger.warning("assign_subcategories_by_code: failed to update %s: %s", variety.variety_name, exc)
            errors.append(f"{variety.variety_name}: {exc}")
            continue

        fixed += 1
        fixes.append({
            "id": variety.id,
            "name": variety.variety_name,
            "assigned_subcat": subcat.name,
            "subcat_code": subcat.subcat_code,
            "reason": resolution.reason,
        })

    logger.info("assign_subcategories_by_code: fixed=%d no_match=%d errors=%d", fixed, no_match, len(errors))
    return {
        "summary": {"total_missing": len(varieties), "fixed": fixed, "no_match": no_match},
        "fixes": fixes[:FIX_SAMPLE_SIZE],
        "no_match_sample": no_match_log[:NO_MATCH_SAMPLE_SIZE],
        "errors": errors,
    }


async def repair_catalog_varieties(
    store: CatalogStore,
    offset: int = 0,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> dict[str, Any]:
    """
    Normalize one batch of active varieties across the whole catalog.

    Each variety resolves only against active subcategories of its own plant
    type. Callers page through with ``next_offset`` until ``has_more`` is false.
    """
    total = await store.count_varieties()
    subcats = [sc for sc in await store.list_subcategories() if sc.is_active]
    by_type: dict[str, list[PlantSubCategory]] = {}
    for sc in subcats:
        by_type.setdefault(sc.plant_type_id, []).append(sc)
    lookups = {type_id: SubcategoryLookup(group) for type_id, group in by_type.items()}
    empty = SubcategoryLookup([])

    varieties = await store.list_varieties(offset=offset, limit=batch_size)
    logger.info(
        "repair_catalog_varieties: batch offset=%d size=%d of %d (dry_run=%s)",
        offset, len(varieties), total, store.dry_run,
    )

    stats = _new_stats()
    stats.pop("subcats_activated")
    for variety in varieties:
        await normalize_variety(store, variety, lookups.get(variety.plant_type_id, empty), stats)

    next_offset = offset + len(varieties)
    stats.update({
        "total": total,
        "has_more": next_offset < total and len(varieties) > 0,
        "next_offset": next_offset,
    })
    return stats

