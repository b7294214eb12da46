"""
Variety name normalization for duplicate detection.

Two strictness levels are used on purpose:

- ``normalize_light``: trim, lowercase, collapse whitespace, straighten curly
  quotes, drop one trailing period. Used by diagnostics, subcategory repair and
  the default name-based merge key. "Brandywine" and "brandywine." collide;
  "Brandywine (Organic)" does not.
- ``normalize_strict``: light normalization, then bracketed qualifiers such as
  "(organic)" / "[heirloom]" and all remaining punctuation are removed. Used by
  the strict (tomato-style) duplicate view, where "Cherokee Purple (Organic)"
  and "Cherokee Purple!" should collide. Hyphens are dropped in place, so
  "Cherokee-Purple" becomes "cherokeepurple".

Both are pure and never raise; ``None`` yields ``""``.
"""
import re
from typing import Any

_WHITESPACE_RE = re.compile(r"\s+")
_BRACKETED_RE = re.compile(r"\([^()]*\)|\[[^\[\]]*\]")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")

_QUOTE_MAP = str.maketrans({
    "‘": "'",
    "’": "'",
    "‚": "'",
    "′": "'",
    "“": '"',
    "”": '"',
    "„": '"',
    "″": '"',
})


def normalize_light(name: Any) -> str:
    if name is None:
        return ""
    text = str(name).strip().lower()
    text = _WHITESPACE_RE.sub(" ", text)
    text = text.translate(_QUOTE_MAP)
    if text.endswith("."):
        text = text[:-1]
    return text


def normalize_strict(name: Any) -> str:
    text = normalize_light(name)
    text = _BRACKETED_RE.sub(" ", text)
    text = _PUNCTUATION_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()
