"""
Reference cascade: repoint dependents (profiles, instances, grow-list items)
from merged-away varieties to their surviving record.

Dependents are scanned in full on every call and written one record at a time;
a grow list is rewritten with a single ``items`` update. Nothing here is
transactional, so a partial run leaves some dependents on the tombstoned id;
``repair_dangling_references`` follows the tombstones and finishes the job.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.services.catalog_store import CatalogLoadError, CatalogStore
from app.services.catalog_types import Active, resolve_survivor, variety_state

logger = logging.getLogger(__name__)


class VarietyNotFound(CatalogLoadError):
    def __init__(self, variety_id: str):
        super().__init__(f"Variety not found: {variety_id}")
        self.variety_id = variety_id


@dataclass
class CascadeResult:
    references_updated: int = 0
    unresolved: int = 0
    errors: list[str] = field(default_factory=list)


async def _repoint(store: CatalogStore, record: Any, changes: dict[str, Any], label: str, result: CascadeResult) -> None:
    try:
        await store.update(record, changes)
    except Exception as exc:
        logger.warning("cascade: failed to update %s %s: %s", label, record.id, exc)
        result.errors.append(f"{label} {record.id}: {exc}")
        return
    result.references_updated += 1


async def _cascade(store: CatalogStore, target_for: Callable[[str], Optional[str]], result: CascadeResult) -> None:
    for profile in await store.list_profiles():
        target = target_for(profile.variety_id) if profile.variety_id else None
        if target:
            await _repoint(store, profile, {"variety_id": target}, "plant_profile", result)

    for instance in await store.list_instances():
        target = target_for(instance.variety_id) if instance.variety_id else None
        if target:
            await _repoint(store, instance, {"variety_id": target}, "plant_instance", result)

    for grow_list in await store.list_grow_lists():
        if not isinstance(grow_list.items, list):
            continue
        items = []
        changed = False
        for item in grow_list.items:
            variety_id = item.get("variety_id") if isinstance(item, dict) else None
            target = target_for(variety_id) if variety_id else None
            if target:
                items.append({**item, "variety_id": target})
                changed = True
            else:
                items.append(item)
        if changed:
            await _repoint(store, grow_list, {"items": items}, "grow_list", result)


async def cascade_references(store: CatalogStore, id_map: dict[str, str]) -> CascadeResult:
    """Rewrite every dependent pointing at a key of ``id_map`` to the mapped canonical id."""
    result = CascadeResult()
    if not id_map:
        return result
    await _cascade(store, id_map.get, result)
    logger.info(
        "cascade_references: %d duplicate ids → %d references updated (%d errors)",
        len(id_map), result.references_updated, len(result.errors),
    )
    return result


async def repair_dangling_references(store: CatalogStore) -> CascadeResult:
    """
    Repoint dependents still referencing a tombstoned variety.

    References to unknown varieties, or to removed varieties whose chain does
    not end in an active record, are counted as unresolved and left alone.
    """
    varieties = await store.list_all_varieties()
    by_id = {v.id: v for v in varieties}
    result = CascadeResult()

    def target_for(variety_id: str) -> Optional[str]:
        variety = by_id.get(variety_id)
        if variety is not None and isinstance(variety_state(variety), Active):
            return None
        survivor = resolve_survivor(variety_id, by_id) if variety is not None else None
        if survivor is None or survivor == variety_id:
            result.unresolved += 1
            return None
        return survivor

    await _cascade(store, target_for, result)
    logger.info(
        "repair_dangling_references: %d references updated, %d unresolved, %d errors (dry_run=%s)",
        result.references_updated, result.unresolved, len(result.errors), store.dry_run,
    )
    return result


async def find_survivor(store: CatalogStore, variety_id: str) -> dict[str, Any]:
    """State of a variety and the id its tombstone chain ends at (None if the chain breaks)."""
    variety = await store.get_variety(variety_id)
    if variety is None:
        raise VarietyNotFound(variety_id)

    state = variety_state(variety)
    chain = [variety_id]
    current = variety
    survivor: Optional[str] = None
    while current is not None:
        current_state = variety_state(current)
        if isinstance(current_state, Active):
            survivor = current.id
            break
        next_id = getattr(current_state, "canonical_id", None)
        if next_id is None or next_id in chain:
            break
        chain.append(next_id)
        current = await store.get_variety(next_id)

    return {
        "variety_id": variety_id,
        "state": state.name,
        "merged_into": getattr(state, "canonical_id", None),
        "survivor_id": survivor,
        "chain": chain,
    }
