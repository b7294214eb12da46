"""
Classification resolver: variety → subcategory via the ordered rule tables.

``match_rule`` is pure and table-driven; ``SubcategoryResolver`` validates the
matched rule's candidate codes against the live subcategory set so a variety is
never assigned a code that does not exist or belongs to another plant type.
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from app.models.catalog import PlantSubCategory
from app.services.subcategory_rules import RULE_TIERS

logger = logging.getLogger(__name__)

_CODE_PREFIX = "PSC_"


def code_key(code: Any) -> str:
    """Comparison key for a subcategory code: case-insensitive, ``PSC_`` prefix optional."""
    if not isinstance(code, str):
        return ""
    key = code.strip().upper()
    if key.startswith(_CODE_PREFIX):
        key = key[len(_CODE_PREFIX):]
    return key


@dataclass(frozen=True)
class RuleMatch:
    tier: str
    codes: tuple[str, ...]
    reason: str

    @property
    def code(self) -> str:
        return self.codes[0]


@dataclass(frozen=True)
class Resolution:
    subcategory: Optional[PlantSubCategory]
    code: Optional[str]
    reason: str

    @property
    def matched(self) -> bool:
        return self.subcategory is not None


def match_rule(variety: Any) -> Optional[RuleMatch]:
    """First matching rule across the tiers, or None. Never consults the store."""
    for tier, rules in RULE_TIERS:
        for rule in rules:
            reason = rule.match(variety)
            if reason:
                return RuleMatch(tier=tier, codes=rule.codes, reason=reason)
    return None


def resolve_code(variety: Any) -> Optional[str]:
    match = match_rule(variety)
    return match.code if match else None


class SubcategoryLookup:
    """``subcat_code → record`` index tolerant of case and the ``PSC_`` prefix."""

    def __init__(self, subcategories: Iterable[PlantSubCategory]):
        self.subcategories = list(subcategories)
        self.by_id: dict[str, PlantSubCategory] = {sc.id: sc for sc in self.subcategories}
        self._by_key: dict[str, list[PlantSubCategory]] = {}
        for sc in self.subcategories:
            key = code_key(sc.subcat_code)
            if key:
                self._by_key.setdefault(key, []).append(sc)

    @property
    def ids(self) -> set[str]:
        return set(self.by_id)

    def __len__(self) -> int:
        return len(self.subcategories)

    def get(self, subcategory_id: Any) -> Optional[PlantSubCategory]:
        if not isinstance(subcategory_id, str):
            return None
        return self.by_id.get(subcategory_id)

    def find(self, code: Any, plant_type_id: Optional[str] = None) -> Optional[PlantSubCategory]:
        """Record for ``code``, preferring one under ``plant_type_id`` when several share the code."""
        candidates = self._by_key.get(code_key(code))
        if not candidates:
            return None
        if plant_type_id:
            for sc in candidates:
                if sc.plant_type_id == plant_type_id:
                    return sc
        return candidates[0]


class SubcategoryResolver:
    def __init__(self, lookup: SubcategoryLookup):
        self.lookup = lookup

    def resolve(self, variety: Any) -> Resolution:
        match = match_rule(variety)
        if match is None:
            return Resolution(None, None, "no rule matched")

        plant_type_id = getattr(variety, "plant_type_id", None)
        mismatched: Optional[PlantSubCategory] = None
        for code in match.codes:
            subcat = self.lookup.find(code, plant_type_id)
            if subcat is None:
                continue
            if plant_type_id and subcat.plant_type_id and subcat.plant_type_id != plant_type_id:
                mismatched = mismatched or subcat
                continue
            return Resolution(subcat, subcat.subcat_code, match.reason)

        if mismatched is not None:
            return Resolution(
                None,
                match.code,
                f"subcat plant_type mismatch: subcat={mismatched.plant_type_id} vs variety={plant_type_id}",
            )
        return Resolution(None, match.code, f"subcat code {match.code} not found")
