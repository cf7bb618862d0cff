"""
zone_matcher.py — Subscriber zone canonicalisation and alert matching.

Subscriber zone lists have been saved in several shapes over the years.
They all converge to one canonical set of lower-cased strings that mixes
zone codes (``inc040``) and FIPS codes (``18035``).

═══════════════════════════════════════════════════════════════════════════
STORED SHAPES
═══════════════════════════════════════════════════════════════════════════

    Shape              Example                                   Detected by
    ─────────────────  ────────────────────────────────────────  ───────────────────────
    STRING_LIST        ["INC040", "INZ040"]                      first element a code
    ALTERNATING_PAIRS  ["INC040", "18035", "INC047", "18047"]    code followed by digits
    OBJECT_LIST        [{"STATE_ZONE": "INC040", "FIPS": "18035"}] first element an object
    NUMERIC_LIST       [18035, "18047"]                          first element numeric

Any shape may arrive JSON-encoded; it is decoded first. Elements that do
not fit the detected shape fall back to the per-element rule, so mixed
lists still canonicalise.

═══════════════════════════════════════════════════════════════════════════
MATCHING
═══════════════════════════════════════════════════════════════════════════

    matches(alert, codes)  ⇔  codes ∩ lower(alert.same_codes ∪ alert.zone_codes) ≠ ∅

Matching is pure set intersection; the zones table is not consulted.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from alert_relay.alerts.models import Alert

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

# Preference order for the code-like key of an object element
CODE_KEYS = ("STATE_ZONE", "STATEZONE", "STATE", "ZONE", "UGC", "zone")
FIPS_KEYS = ("FIPS", "fips", "Fips")

_DIGITS = re.compile(r"^[0-9]+$")
_LEADING_LETTER = re.compile(r"^[A-Za-z]")
_PLAIN_TOKEN = re.compile(r"^[A-Za-z0-9]+$")


class SubscriptionShape(str, Enum):
    EMPTY = "empty"
    STRING_LIST = "string_list"
    ALTERNATING_PAIRS = "alternating_pairs"
    OBJECT_LIST = "object_list"
    NUMERIC_LIST = "numeric_list"


# ═══════════════════════════════════════════════════════════════════════════
# Element helpers
# ═══════════════════════════════════════════════════════════════════════════

def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and _DIGITS.match(value.strip()) is not None


def _is_code(value: Any) -> bool:
    return isinstance(value, str) and _LEADING_LETTER.match(value.strip()) is not None


def _first_present(item: Dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if value is not None and str(value).strip() != "":
            return str(value).strip()
    return None


def _object_codes(item: Dict[str, Any]) -> List[str]:
    out = []
    code = _first_present(item, CODE_KEYS)
    if code is not None:
        out.append(code.lower())
    fips = _first_present(item, FIPS_KEYS)
    if fips is not None:
        out.append(fips)
    return out


def _element_codes(item: Any) -> List[str]:
    """Per-element rule, without lookahead."""
    if isinstance(item, dict):
        return _object_codes(item)
    if _is_numeric(item):
        return [str(item).strip()]
    if isinstance(item, str) and item.strip():
        value = item.strip()
        return [value.lower()] if _LEADING_LETTER.match(value) else [value]
    return []


# ═══════════════════════════════════════════════════════════════════════════
# Per-shape rules
# ═══════════════════════════════════════════════════════════════════════════

def _canonicalize_string_list(items: Sequence[Any]) -> List[str]:
    out: List[str] = []
    for item in items:
        out.extend(_element_codes(item))
    return out


def _canonicalize_alternating(items: Sequence[Any]) -> List[str]:
    """Code then optional FIPS, repeated. A numeric after a code is its pair."""
    out: List[str] = []
    i = 0
    while i < len(items):
        item = items[i]
        if _is_code(item):
            out.append(item.strip().lower())
            if i + 1 < len(items) and _is_numeric(items[i + 1]):
                out.append(str(items[i + 1]).strip())
                i += 1
        else:
            out.extend(_element_codes(item))
        i += 1
    return out


def _canonicalize_objects(items: Sequence[Any]) -> List[str]:
    out: List[str] = []
    for item in items:
        out.extend(_object_codes(item) if isinstance(item, dict) else _element_codes(item))
    return out


def _canonicalize_numeric(items: Sequence[Any]) -> List[str]:
    out: List[str] = []
    for item in items:
        out.extend([str(item).strip()] if _is_numeric(item) else _element_codes(item))
    return out


_RULES: Dict[SubscriptionShape, Callable[[Sequence[Any]], List[str]]] = {
    SubscriptionShape.STRING_LIST: _canonicalize_string_list,
    SubscriptionShape.ALTERNATING_PAIRS: _canonicalize_alternating,
    SubscriptionShape.OBJECT_LIST: _canonicalize_objects,
    SubscriptionShape.NUMERIC_LIST: _canonicalize_numeric,
}


# ═══════════════════════════════════════════════════════════════════════════
# Decoding & shape detection
# ═══════════════════════════════════════════════════════════════════════════

def _decode(raw: Any) -> List[Any]:
    """Turn any stored value into a list of elements; unparseable → []."""
    if raw is None:
        return []
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        try:
            raw = json.loads(text)
        except ValueError:
            # bare "INC040,18035" style text
            tokens = [t.strip() for t in text.split(",") if t.strip()]
            if tokens and all(_PLAIN_TOKEN.match(t) for t in tokens):
                return tokens
            logger.debug("Unparseable zone subscription: %r", text[:80])
            return []
    if isinstance(raw, dict):
        return [raw]
    if isinstance(raw, (list, tuple)):
        return list(raw)
    if _is_numeric(raw):
        return [raw]
    return []


def detect_shape(items: Sequence[Any]) -> SubscriptionShape:
    """Classify a decoded subscription by its first element."""
    if not items:
        return SubscriptionShape.EMPTY
    first = items[0]
    if isinstance(first, dict):
        return SubscriptionShape.OBJECT_LIST
    if _is_numeric(first):
        return SubscriptionShape.NUMERIC_LIST
    if _is_code(first) and len(items) > 1 and _is_numeric(items[1]):
        return SubscriptionShape.ALTERNATING_PAIRS
    return SubscriptionShape.STRING_LIST


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


# ═══════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════

def canonical_list(raw: Any) -> List[str]:
    """Canonical codes in first-seen order."""
    items = _decode(raw)
    shape = detect_shape(items)
    if shape is SubscriptionShape.EMPTY:
        return []
    return _dedupe(_RULES[shape](items))


def canonicalize(raw: Any) -> FrozenSet[str]:
    """Any stored subscription shape → set of lower-cased zone and FIPS codes."""
    return frozenset(canonical_list(raw))


def serialize_subscription(raw: Any) -> str:
    """JSON list for storage; re-reads as a STRING_LIST/ALTERNATING_PAIRS value."""
    return json.dumps(canonical_list(raw))


def matches(alert: Alert, subscriber_codes: Iterable[str]) -> bool:
    """True when the subscriber's codes intersect the alert's SAME ∪ UGC codes."""
    wanted = {code.strip().lower() for code in subscriber_codes if code}
    return not wanted.isdisjoint(alert.codes)


class ZoneMatcher:
    """
    Caches canonical sets per raw subscription value.

    One instance lives for one cycle; the same subscriber is canonicalised
    once no matter how many pending alerts are checked against it.
    """

    def __init__(self) -> None:
        self._cache: Dict[str, FrozenSet[str]] = {}

    def canonicalize(self, raw: Any) -> FrozenSet[str]:
        key = raw if isinstance(raw, str) else json.dumps(raw, sort_keys=True, default=str)
        cached = self._cache.get(key)
        if cached is None:
            cached = canonicalize(raw)
            self._cache[key] = cached
        return cached

    @staticmethod
    def matches(alert: Alert, subscriber_codes: Iterable[str]) -> bool:
        return matches(alert, subscriber_codes)
