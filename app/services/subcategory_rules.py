"""
Ordered rule tables mapping a variety to a candidate subcategory code.

Three tiers, tried in this order, first match wins:

  1. CODE_PREFIX_RULES: structured ``variety_code`` prefix (case-insensitive).
  2. ATTRIBUTE_RULES: refinement for generic prefixes (bare ``TOM_`` / ``PEP_``)
     from fruit shape, fruit size or Scoville heat.
  3. NAME_RULES: free-text keyword regexes per plant type, only for
     varieties without a ``variety_code``.

Each rule carries an ordered tuple of candidate codes; stores created at
different times used different code spellings, so the resolver takes the first
candidate that exists for the variety's plant type. Adding a plant type means
adding rows here, not touching the resolver.
"""
import re
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class CodePrefixRule:
    prefix: str
    codes: tuple[str, ...]

    def match(self, variety: Any) -> Optional[str]:
        code = (getattr(variety, "variety_code", None) or "").strip().upper()
        if code and code.startswith(self.prefix):
            return f"code:{self.prefix}"
        return None


@dataclass(frozen=True)
class KeywordRule:
    """Regex against a descriptive attribute (column first, then ``traits``)."""

    code_prefix: str
    field: str
    pattern: re.Pattern
    codes: tuple[str, ...]

    def match(self, variety: Any) -> Optional[str]:
        if not _refines(variety, self.code_prefix):
            return None
        value = read_attribute(variety, self.field)
        if isinstance(value, str) and self.pattern.search(value):
            return f"{self.field}:{value}"
        return None


@dataclass(frozen=True)
class ScovilleRule:
    code_prefix: str
    low: int
    high: Optional[int]
    codes: tuple[str, ...]

    def match(self, variety: Any) -> Optional[str]:
        if not _refines(variety, self.code_prefix):
            return None
        heat = scoville_of(variety)
        if heat is None or heat < self.low:
            return None
        if self.high is not None and heat > self.high:
            return None
        return f"scoville:{heat}"


@dataclass(frozen=True)
class NameRule:
    plant_type: str
    pattern: re.Pattern
    codes: tuple[str, ...]

    def match(self, variety: Any) -> Optional[str]:
        if (getattr(variety, "variety_code", None) or "").strip():
            return None
        type_name = plant_type_key(getattr(variety, "plant_type_name", None))
        if type_name and self.plant_type not in type_name:
            return None
        name = getattr(variety, "variety_name", None) or ""
        if self.pattern.search(name):
            return f"name:{name}"
        return None


def plant_type_key(name: Any) -> str:
    return str(name).strip().lower() if name else ""


def read_attribute(variety: Any, field: str) -> Any:
    value = getattr(variety, field, None)
    if value in (None, ""):
        traits = getattr(variety, "traits", None)
        if isinstance(traits, dict):
            value = traits.get(field)
    return value


def scoville_of(variety: Any) -> Optional[int]:
    for field in ("scoville_max", "scoville_min", "heat_scoville_max", "heat_scoville_min"):
        value = read_attribute(variety, field)
        if value in (None, ""):
            continue
        try:
            return int(float(value))
        except (TypeError, ValueError):
            continue
    return None


def _refines(variety: Any, code_prefix: str) -> bool:
    """Generic code of the rule's family, e.g. a bare ``TOM_`` or ``TOM``. Code-less varieties go to the name tier."""
    code = (getattr(variety, "variety_code", None) or "").strip().upper()
    if not code:
        return False
    return code == code_prefix.rstrip("_") or code.startswith(code_prefix)


def _re(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


# ── Candidate code sets ───────────────────────────────────────────────────────

TOM_CHERRY     = ("PSC_TOM_CHERRY", "PSC_TOMATO_CHERRY_SMALL", "TOMATO_CHERRY")
TOM_GRAPE      = ("PSC_TOM_GRAPE", "PSC_TOMATO_GRAPE", "TOMATO_GRAPE")
TOM_PLUM       = ("PSC_TOM_PLUM", "PSC_TOM_ROMA", "PSC_TOMATO_PASTE_ROMA", "TOMATO_PASTE")
TOM_BEEFSTEAK  = ("PSC_TOM_BEEFSTEAK", "PSC_TOMATO_BEEFSTEAK", "TOMATO_BEEFSTEAK")
TOM_OXHEART    = ("PSC_TOM_OXHEART", "PSC_TOMATO_OXHEART", "TOMATO_OXHEART")
TOM_CURRANT    = ("PSC_TOM_CURRANT_SPOON", "TOMATO_CURRANT")
TOM_SLICER     = ("PSC_TOM_SLICER", "PSC_TOMATO_SLICER", "TOMATO_SLICER")
TOM_DWARF      = ("PSC_TOM_DWARF", "PSC_TOMATO_DWARF_COMPACT", "TOMATO_DWARF")

PEP_SWEET      = ("PSC_PEP_BELL", "PSC_PEP_SWEET", "PSC_PEPPER_HEAT_SWEET")
PEP_MILD       = ("PSC_PEP_MILD", "PSC_PEPPER_HEAT_MILD")
PEP_MEDIUM     = ("PSC_PEP_MEDIUM_HEAT", "PSC_PEPPER_HEAT_MEDIUM", "PSC_PEPPER_MEDIUM")
PEP_HOT        = ("PSC_PEP_HOT", "PSC_PEPPER_HEAT_HOT")
PEP_EXTRA_HOT  = ("PSC_PEP_EXTRAHOT", "PSC_PEPPER_HEAT_EXTRA_HOT", "PSC_PEP_HOT")
PEP_SUPERHOT   = ("PSC_PEP_SUPERHOT", "PSC_PEPPER_HEAT_SUPERHOT")


# ── Tier 1: structured code prefix ────────────────────────────────────────────
# More specific prefixes first.

CODE_PREFIX_RULES: tuple[CodePrefixRule, ...] = (
    # Tomato
    CodePrefixRule("TOM_CHERRY",      ("PSC_TOM_CHERRY",)),
    CodePrefixRule("TOM_GRAPE",       ("PSC_TOM_GRAPE",)),
    CodePrefixRule("TOM_PLUM",        ("PSC_TOM_PLUM",)),
    CodePrefixRule("TOM_ROMA",        ("PSC_TOM_ROMA",)),
    CodePrefixRule("TOM_BEEFSTEAK",   ("PSC_TOM_BEEFSTEAK",)),
    CodePrefixRule("TOM_MEDIUM",      ("PSC_TOM_MEDIUM",)),
    CodePrefixRule("TOM_LARGE",       ("PSC_TOM_LARGE",)),
    CodePrefixRule("TOM_HEIRLOOM",    ("PSC_TOM_HEIRLOOM",)),
    CodePrefixRule("TOM_SAUCE",       ("PSC_TOM_SAUCE",)),
    CodePrefixRule("TOM_SALAD",       ("PSC_TOM_SALAD",)),
    # Pepper
    CodePrefixRule("PEP_SWEET",       ("PSC_PEP_SWEET",)),
    CodePrefixRule("PEP_HOT",         ("PSC_PEP_HOT",)),
    CodePrefixRule("PEP_BELL",        ("PSC_PEP_BELL",)),
    CodePrefixRule("PEP_MILD",        ("PSC_PEP_MILD",)),
    CodePrefixRule("PEP_MEDIUM_HEAT", ("PSC_PEP_MEDIUM_HEAT",)),
    CodePrefixRule("PEP_SUPERHOT",    ("PSC_PEP_SUPERHOT",)),
    CodePrefixRule("PEP_ANNUUM",      ("PSC_PEP_ANNUUM",)),
    CodePrefixRule("PEP_CHINENSE",    ("PSC_PEP_CHINENSE",)),
    CodePrefixRule("PEP_BACCATUM",    ("PSC_PEP_BACCATUM",)),
    # Zucchini / summer squash
    CodePrefixRule("ZUC_STANDARD",    ("PSC_ZUC_STANDARD",)),
    CodePrefixRule("ZUC_ROUND",       ("PSC_ZUC_ROUND",)),
    CodePrefixRule("ZUC_SUMMER",      ("PSC_ZUC_SUMMER",)),
    # Cucumber
    CodePrefixRule("CUC_SLICING",     ("PSC_CUC_SLICING",)),
    CodePrefixRule("CUC_PICKLING",    ("PSC_CUC_PICKLING",)),
    CodePrefixRule("CUC_BURPLESS",    ("PSC_CUC_BURPLESS",)),
    # Bean
    CodePrefixRule("BEAN_BUSH",       ("PSC_BEAN_BUSH",)),
    CodePrefixRule("BEAN_POLE",       ("PSC_BEAN_POLE",)),
    CodePrefixRule("BEAN_SNAP",       ("PSC_BEAN_SNAP",)),
    # Lettuce
    CodePrefixRule("LET_ROMAINE",     ("PSC_LET_ROMAINE",)),
    CodePrefixRule("LET_BUTTERHEAD",  ("PSC_LET_BUTTERHEAD",)),
    CodePrefixRule("LET_LOOSE_LEAF",  ("PSC_LET_LOOSE_LEAF",)),
    CodePrefixRule("LET_ICEBERG",     ("PSC_LET_ICEBERG",)),
)


# ── Tier 2: attribute refinement ──────────────────────────────────────────────
# Order within the tier: tomato fruit_shape, tomato fruit_size, pepper Scoville.

_TOMATO_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (r"cherry",                   TOM_CHERRY),
    (r"grape",                    TOM_GRAPE),
    (r"plum|roma|paste|sauce",    TOM_PLUM),
    (r"beefsteak",                TOM_BEEFSTEAK),
    (r"oxheart|heart",            TOM_OXHEART),
    (r"currant|spoon",            TOM_CURRANT),
    (r"slicer|globe|oblate|round", TOM_SLICER),
    (r"dwarf|micro|compact",      TOM_DWARF),
)

_PEPPER_HEAT: tuple[tuple[int, Optional[int], tuple[str, ...]], ...] = (
    (0,      0,      PEP_SWEET),
    (1,      2500,   PEP_MILD),
    (2501,   30000,  PEP_MEDIUM),
    (30001,  100000, PEP_HOT),
    (100001, 300000, PEP_EXTRA_HOT),
    (300001, None,   PEP_SUPERHOT),
)

ATTRIBUTE_RULES: tuple[Any, ...] = (
    *(KeywordRule("TOM_", "fruit_shape", _re(p), codes) for p, codes in _TOMATO_KEYWORDS),
    *(KeywordRule("TOM_", "fruit_size", _re(p), codes) for p, codes in _TOMATO_KEYWORDS),
    *(ScovilleRule("PEP_", low, high, codes) for low, high, codes in _PEPPER_HEAT),
)


# ── Tier 3: free-text name keywords (no variety_code only) ────────────────────

NAME_RULES: tuple[NameRule, ...] = (
    # Tomato
    NameRule("tomato", _re(r"cherry|currant|tumbler|sweet 100|sun ?gold|sun sugar|gold nugget|juliet"), TOM_CHERRY),
    NameRule("tomato", _re(r"\bgrape\b"), TOM_GRAPE),
    NameRule("tomato", _re(r"roma|san marzano|amish paste|jersey devil|plum|paste|sauce"), TOM_PLUM),
    NameRule("tomato", _re(r"beefsteak|beef steak|brandywine|mortgage lifter|big boy|big girl|crimson cushion"), TOM_BEEFSTEAK),
    NameRule("tomato", _re(r"oxheart|pineapple|cossack|hungarian"), TOM_OXHEART),
    NameRule("tomato", _re(r"dwarf|micro\s*dwarf|patio|tiny tim|window box"), TOM_DWARF),
    # Pepper
    NameRule("pepper", _re(r"habanero|scotch bonnet|bhut|ghost|reaper|scorpion|7.?pot|peri\s*peri"), PEP_SUPERHOT),
    NameRule("pepper", _re(r"jalapen|serrano|cayenne|thai|tabasco|pequin|bird\s*s?\s*eye"), PEP_HOT),
    NameRule("pepper", _re(r"banana|pepperoncini|anaheim|new mexico|ancho|poblano|pasilla|guajillo|wax"), PEP_MILD),
    NameRule("pepper", _re(r"bell|sweet\s+(pepper|red|green|yellow|orange|italian)|lipstick|carnival|cubanelle"), PEP_SWEET),
    # Cucumber
    NameRule("cucumber", _re(r"pickling|kirby|cornichon|gherkin"), ("PSC_CUC_PICKLING",)),
    NameRule("cucumber", _re(r"burpless|english|european|seedless|thin\s+skin"), ("PSC_CUC_BURPLESS",)),
    NameRule("cucumber", _re(r"lemon|armenian|persian|asian|japanese"), ("PSC_CUC_SPECIALTY",)),
    # Bean
    NameRule("bean", _re(r"pole|runner|climbing|rattlesnake"), ("PSC_BEAN_POLE",)),
    NameRule("bean", _re(r"lima|butter"), ("PSC_BEAN_LIMA",)),
    NameRule("bean", _re(r"\bsoy\b|soybean|edamame"), ("PSC_BEAN_SOY",)),
)

RULE_TIERS: tuple[tuple[str, tuple[Any, ...]], ...] = (
    ("code_prefix", CODE_PREFIX_RULES),
    ("attribute",   ATTRIBUTE_RULES),
    ("name",        NAME_RULES),
)
