"""
Duplicate variety detection and merging.

Grouping
  ``group_duplicates`` keys active varieties either by raw ``variety_code``
  (``code_first``, falling back to the name key for code-less records) or by
  ``"<plant_type_id>:<light-normalized name>"``. ``strict_duplicate_groups`` is
  the independent strict view: code groups first, then strict-normalized name
  groups over the records not already captured.

Canonical selection (total order)
  has ``variety_code`` > higher completeness > older ``created_at`` > id.

Merge policy
  Scalars fill only where the canonical is empty. ``images`` / ``synonyms`` /
  ``sources`` and the subcategory arrays are unioned. ``traits`` and
  ``extended_data`` are shallow-merged with the canonical's keys winning.
  Duplicates are tombstoned (``status='removed'`` plus
  ``extended_data.merged_into_variety_id``), never deleted, and dependents are
  repointed by the reference cascade.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from app.models.catalog import Variety
from app.services.catalog_store import CatalogStore
from app.services.catalog_types import MERGED_INTO_KEY, Classification, tombstone_fields
from app.services.reference_cascade import cascade_references
from app.services.variety_names import normalize_light, normalize_strict

logger = logging.getLogger(__name__)

MATCHING_MODES = ("code_first", "name")
DRY_RUN_GROUP_LIMIT = 50
STRICT_GROUP_LIMIT = 20
MERGE_SAMPLE_SIZE = 50

SCALAR_FIELDS: tuple[str, ...] = (
    "variety_code",
    "description",
    "days_to_maturity",
    "spacing_inches",
    "flavor_profile",
    "growth_habit",
    "sun_requirement",
    "water_requirement",
    "species",
    "seed_line_type",
    "breeder_or_origin",
    "grower_notes",
    "fruit_shape",
    "fruit_size",
    "fruit_color",
    "scoville_min",
    "scoville_max",
)
UNION_FIELDS: tuple[str, ...] = ("images", "synonyms", "sources")
OBJECT_FIELDS: tuple[str, ...] = ("traits", "extended_data")
_TOMBSTONE_KEYS = (MERGED_INTO_KEY, "merged_at")


@dataclass
class DuplicateGroup:
    key: str
    varieties: list[Variety]


@dataclass
class MergePlan:
    key: str
    canonical: Variety
    duplicates: list[Variety]
    changes: dict[str, Any]


# ── Scoring & selection ───────────────────────────────────────────────────────

def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def completeness(variety: Any) -> int:
    """Number of filled scalar fields."""
    return sum(1 for name in SCALAR_FIELDS if not is_empty(getattr(variety, name, None)))


def _created_ts(variety: Any) -> float:
    created: Optional[datetime] = variety.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created.timestamp()


def canonical_sort_key(variety: Any) -> tuple:
    has_code = not is_empty(variety.variety_code)
    return (
        not has_code,
        -completeness(variety),
        variety.created_at is None,
        _created_ts(variety) if variety.created_at is not None else 0.0,
        variety.id or "",
    )


def select_canonical(varieties: Iterable[Variety]) -> tuple[Variety, list[Variety]]:
    ordered = sorted(varieties, key=canonical_sort_key)
    return ordered[0], ordered[1:]


# ── Grouping ──────────────────────────────────────────────────────────────────

def name_key(variety: Any) -> Optional[str]:
    normalized = normalize_light(variety.variety_name)
    if not normalized:
        return None
    return f"{variety.plant_type_id}:{normalized}"


def group_duplicates(varieties: Iterable[Variety], matching_mode: str = "name") -> list[DuplicateGroup]:
    if matching_mode not in MATCHING_MODES:
        raise ValueError(f"Unknown matching_mode: {matching_mode}")

    buckets: dict[str, list[Variety]] = {}
    for variety in varieties:
        code = (variety.variety_code or "").strip()
        if matching_mode == "code_first" and code:
            key = f"code:{code}"
        else:
            key = name_key(variety)
        if key is None:
            continue
        buckets.setdefault(key, []).append(variety)

    return [DuplicateGroup(key, members) for key, members in buckets.items() if len(members) > 1]


def strict_duplicate_groups(varieties: list[Variety]) -> list[DuplicateGroup]:
    """Code groups, then strict-name groups over whatever the code pass left."""
    groups: list[DuplicateGroup] = []
    grouped: set[str] = set()

    by_code: dict[tuple, list[Variety]] = {}
    for v in varieties:
        code = (v.variety_code or "").strip()
        if code:
            by_code.setdefault((code, v.plant_type_id), []).append(v)
    for (code, _), members in by_code.items():
        if len(members) > 1:
            groups.append(DuplicateGroup(f"code:{code}", members))
            grouped.update(m.id for m in members)

    by_name: dict[tuple, list[Variety]] = {}
    for v in varieties:
        if v.id in grouped:
            continue
        normalized = normalize_strict(v.variety_name)
        if not normalized:
            continue
        by_name.setdefault((normalized, v.plant_type_id), []).append(v)
    for (normalized, _), members in by_name.items():
        if len(members) > 1:
            groups.append(DuplicateGroup(f"name:{normalized}", members))

    return groups


# ── Merge planning ────────────────────────────────────────────────────────────

def _hashable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return json.dumps(value, sort_keys=True, default=str)


def union_values(*arrays: Any) -> list[Any]:
    seen: set = set()
    out: list[Any] = []
    for array in arrays:
        if not isinstance(array, list):
            continue
        for value in array:
            key = _hashable(value)
            if key in seen:
                continue
            seen.add(key)
            out.append(value)
    return out


def build_merge_changes(canonical: Variety, duplicates: list[Variety]) -> dict[str, Any]:
    """Fields of ``canonical`` that change once every duplicate is folded in."""
    merged: dict[str, Any] = {}

    for name in SCALAR_FIELDS:
        if not is_empty(getattr(canonical, name)):
            continue
        for dup in duplicates:
            value = getattr(dup, name)
            if not is_empty(value):
                merged[name] = value
                break

    for name in UNION_FIELDS:
        values = union_values(getattr(canonical, name), *(getattr(d, name) for d in duplicates))
        if values or isinstance(getattr(canonical, name), list):
            merged[name] = values

    classification = Classification.from_variety(canonical)
    for dup in duplicates:
        classification = classification.union(Classification.from_variety(dup))
    if classification.ids or classification.codes:
        fields = classification.as_fields()
        fields["plant_subcategory_id"] = classification.primary_id or canonical.plant_subcategory_id
        merged.update(fields)

    for name in OBJECT_FIELDS:
        combined: dict[str, Any] = {}
        for dup in reversed(duplicates):
            value = getattr(dup, name)
            if isinstance(value, dict):
                combined.update(value)
        for key in _TOMBSTONE_KEYS:
            combined.pop(key, None)
        own = getattr(canonical, name)
        if isinstance(own, dict):
            combined.update(own)
        if combined or isinstance(own, dict):
            merged[name] = combined

    return CatalogStore.changed_fields(canonical, merged)


def plan_merge(group: DuplicateGroup) -> MergePlan:
    canonical, duplicates = select_canonical(group.varieties)
    return MergePlan(group.key, canonical, duplicates, build_merge_changes(canonical, duplicates))


# ── Routines ──────────────────────────────────────────────────────────────────

async def merge_duplicates(
    store: CatalogStore,
    plant_type_id: Optional[str] = None,
    matching_mode: str = "name",
    max_groups: Optional[int] = None,
) -> dict[str, Any]:
    """
    Merge every duplicate group (up to ``max_groups``) into its canonical record.

    Groups are processed one at a time: canonical update, tombstones, then the
    reference cascade for that group's duplicate ids.
    """
    if plant_type_id:
        await store.get_plant_type(plant_type_id)
    varieties = await store.list_varieties(plant_type_id=plant_type_id)
    groups = group_duplicates(varieties, matching_mode)
    logger.info(
        "merge_duplicates: %d active varieties, %d duplicate groups (mode=%s, dry_run=%s)",
        len(varieties), len(groups), matching_mode, store.dry_run,
    )

    groups_merged = 0
    records_merged = 0
    references_updated = 0
    errors: list[str] = []
    merged_sample: list[dict[str, Any]] = []

    to_process = groups if max_groups is None else groups[:max_groups]
    for group in to_process:
        plan = plan_merge(group)
        canonical = plan.canonical
        try:
            await store.update(canonical, plan.changes)
        except Exception as exc:
            logger.warning("merge_duplicates: failed to update canonical %s: %s", canonical.variety_name, exc)
            errors.append(f"{canonical.variety_name}: {exc}")
            continue

        merged_at = datetime.now(timezone.utc).isoformat()
        id_map: dict[str, str] = {}
        for dup in plan.duplicates:
            try:
                await store.update(dup, tombstone_fields(dup, canonical.id, merged_at))
            except Exception as exc:
                logger.warning("merge_duplicates: failed to tombstone %s (%s): %s", dup.variety_name, dup.id, exc)
                errors.append(f"{dup.variety_name}: {exc}")
                continue
            id_map[dup.id] = canonical.id
            records_merged += 1

        cascade = await cascade_references(store, id_map)
        references_updated += cascade.references_updated
        errors.extend(cascade.errors)

        if id_map:
            groups_merged += 1
        if len(merged_sample) < MERGE_SAMPLE_SIZE:
            merged_sample.append({
                "key": plan.key,
                "canonical_id": canonical.id,
                "canonical_name": canonical.variety_name,
                "merged_ids": list(id_map),
                "fields_changed": sorted(plan.changes),
            })
        logger.info(
            "merge_duplicates: %s → kept %s, merged %d", plan.key, canonical.id, len(id_map),
        )

    remaining = len(groups) - groups_merged
    logger.info(
        "merge_duplicates: done — groups=%d records=%d references=%d remaining=%d errors=%d",
        groups_merged, records_merged, references_updated, remaining, len(errors),
    )
    return {
        "groupsMerged": groups_merged,
        "recordsMerged": records_merged,
        "referencesUpdated": references_updated,
        "remainingDuplicates": remaining,
        "errors": errors,
        "merged": merged_sample,
    }


def _record_summary(variety: Variety, canonical_id: str) -> dict[str, Any]:
    return {
        "id": variety.id,
        "variety_name": variety.variety_name,
        "variety_code": variety.variety_code,
        "completeness": completeness(variety),
        "created_at": variety.created_at.isoformat() if variety.created_at else None,
        "canonical": variety.id == canonical_id,
    }


async def dedup_dry_run(
    store: CatalogStore,
    plant_type_id: Optional[str] = None,
    matching_mode: str = "code_first",
) -> dict[str, Any]:
    """Read-only preview of the merge plan: groups, chosen canonical, per-record completeness."""
    if plant_type_id:
        await store.get_plant_type(plant_type_id)
    varieties = await store.list_varieties(plant_type_id=plant_type_id)
    groups = group_duplicates(varieties, matching_mode)

    preview = []
    for group in groups[:DRY_RUN_GROUP_LIMIT]:
        canonical, duplicates = select_canonical(group.varieties)
        preview.append({
            "key": group.key,
            "canonical_id": canonical.id,
            "canonical_name": canonical.variety_name,
            "duplicate_count": len(duplicates),
            "records": [_record_summary(v, canonical.id) for v in [canonical, *duplicates]],
        })

    return {
        "duplicate_groups": len(groups),
        "records_to_merge": sum(len(g.varieties) - 1 for g in groups),
        "groups": preview,
    }


async def strict_dedup_dry_run(store: CatalogStore, plant_type_name: str = "tomato") -> dict[str, Any]:
    plant_type = await store.find_plant_type_by_name(plant_type_name)
    varieties = await store.list_varieties(plant_type_id=plant_type.id)
    groups = strict_duplicate_groups(varieties)
    logger.info(
        "strict_dedup_dry_run: %s — %d active varieties, %d groups",
        plant_type.common_name, len(varieties), len(groups),
    )
    return {
        "plant_type_id": plant_type.id,
        "duplicate_groups": len(groups),
        "total_duplicates": sum(len(g.varieties) - 1 for g in groups),
        "groups": [
            {
                "key": g.key,
                "varieties": [v.id for v in g.varieties],
                "sample": g.varieties[0].variety_name,
                "count": len(g.varieties),
            }
            for g in groups[:STRICT_GROUP_LIMIT]
        ],
    }
