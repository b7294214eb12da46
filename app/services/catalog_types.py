"""
Value types for variety classification and lifecycle.

Storage keeps a primary subcategory pair plus two array mirrors, and marks
merged-away varieties with ``status='removed'`` and a free-form
``extended_data.merged_into_variety_id``. The reconciliation code never reads
those fields directly: it derives a ``Classification`` / ``VarietyState`` and
renders them back to storage fields when writing.
"""
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

STATUS_ACTIVE = "active"
STATUS_REMOVED = "removed"
MERGED_INTO_KEY = "merged_into_variety_id"


def clean_entries(raw: Any) -> list[str]:
    """Usable string entries of an array field, in order. Junk (blank, non-string) is dropped."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        return []
    return [v.strip() for v in raw if isinstance(v, str) and v.strip()]


def has_content(raw: Any) -> bool:
    """True if an array field holds anything at all, junk included."""
    if raw is None:
        return False
    if isinstance(raw, str):
        return bool(raw.strip())
    if isinstance(raw, (list, tuple, dict)):
        return len(raw) > 0
    return True


def _dedupe(values: list[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return tuple(out)


@dataclass(frozen=True)
class Classification:
    """Ordered set of subcategory ids (and codes); the first entry is the primary."""

    ids: tuple[str, ...] = ()
    codes: tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> "Classification":
        return cls()

    @classmethod
    def single(cls, subcategory_id: str, subcat_code: Optional[str]) -> "Classification":
        return cls(ids=(subcategory_id,), codes=(subcat_code,) if subcat_code else ())

    @classmethod
    def from_variety(cls, variety: Any) -> "Classification":
        """Effective classification re-derived from the primary field and the array mirror."""
        ids = clean_entries(getattr(variety, "plant_subcategory_id", None))
        ids += clean_entries(getattr(variety, "plant_subcategory_ids", None))
        codes = clean_entries(getattr(variety, "plant_subcategory_code", None))
        codes += clean_entries(getattr(variety, "plant_subcategory_codes", None))
        return cls(ids=_dedupe(ids), codes=_dedupe(codes))

    @property
    def primary_id(self) -> Optional[str]:
        return self.ids[0] if self.ids else None

    @property
    def primary_code(self) -> Optional[str]:
        return self.codes[0] if self.codes else None

    def union(self, other: "Classification") -> "Classification":
        return Classification(
            ids=_dedupe(list(self.ids) + list(other.ids)),
            codes=_dedupe(list(self.codes) + list(other.codes)),
        )

    def restricted_to(self, valid_ids: set[str]) -> "Classification":
        return Classification(ids=tuple(i for i in self.ids if i in valid_ids), codes=self.codes)

    def as_fields(self) -> dict[str, Any]:
        return {
            "plant_subcategory_id": self.primary_id,
            "plant_subcategory_code": self.primary_code,
            "plant_subcategory_ids": list(self.ids),
            "plant_subcategory_codes": list(self.codes),
        }


# ── Lifecycle ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Active:
    name: str = field(default="active", init=False)


@dataclass(frozen=True)
class MergedInto:
    canonical_id: str
    name: str = field(default="merged", init=False)


@dataclass(frozen=True)
class Removed:
    """Removed without a merge pointer; nothing to follow."""

    name: str = field(default="removed", init=False)


VarietyState = Union[Active, MergedInto, Removed]


def variety_state(variety: Any) -> VarietyState:
    status = getattr(variety, "status", None) or STATUS_ACTIVE
    if status != STATUS_REMOVED:
        return Active()
    ext = getattr(variety, "extended_data", None)
    target = ext.get(MERGED_INTO_KEY) if isinstance(ext, Mapping) else None
    if isinstance(target, str) and target:
        return MergedInto(target)
    return Removed()


def tombstone_fields(variety: Any, canonical_id: str, merged_at: str) -> dict[str, Any]:
    ext = dict(variety.extended_data) if isinstance(variety.extended_data, Mapping) else {}
    ext[MERGED_INTO_KEY] = canonical_id
    ext["merged_at"] = merged_at
    return {"status": STATUS_REMOVED, "extended_data": ext}


def resolve_survivor(variety_id: str, varieties_by_id: Mapping[str, Any]) -> Optional[str]:
    """
    Follow merge tombstones from variety_id to the record that survived.

    Returns None when the chain ends in a removed record without a pointer,
    points at an unknown id, or loops.
    """
    current = variety_id
    seen: set[str] = set()
    while current not in seen:
        seen.add(current)
        variety = varieties_by_id.get(current)
        if variety is None:
            return None
        state = variety_state(variety)
        if isinstance(state, Active):
            return current
        if isinstance(state, Removed):
            return None
        current = state.canonical_id
    return None
