"""
models.py — Shared data structures for the alert distribution pipeline.

Defines:
    • Channel          — delivery provider enum
    • DeliveryStatus   — per (alert, subscriber, channel) outcome
    • Alert            — one feed alert in canonical form
    • Subscriber       — a notification recipient with per-channel credentials
    • Zone             — reference geography (used only for map links)
    • NotificationResult — outcome of one deliver() call

═══════════════════════════════════════════════════════════════════════════
ALERT LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    feed ──► incoming ──(diff vs active)──► pending ──► sent (ledger)
                 │                             │
                 └──────(after notify)──────► active

    incoming  latest full snapshot; replaced wholesale, only on a
              non-empty fetch
    active    the "already seen" baseline
    pending   new alerts awaiting match + notify; retired win or lose
    sent      append-only; one row per attempted (alert, subscriber, channel)

Alerts are immutable once staged; a resync replaces the whole row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Channel(str, Enum):
    """Delivery providers. Fixed set; not pluggable at runtime."""
    PUSHOVER = "pushover"
    NTFY     = "ntfy"


class DeliveryStatus(str, Enum):
    """Final disposition of one (alert, subscriber, channel) delivery."""
    SUCCESS = "success"   # provider answered 2xx
    FAILURE = "failure"   # attempts exhausted
    SKIPPED = "skipped"   # channel not usable for this subscriber


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Alert:
    """
    A feed alert in canonical form.

    ``same_codes`` and ``zone_codes`` are always sets (possibly empty), never
    None. ``raw`` keeps the full upstream GeoJSON feature for message
    composition and link enrichment.
    """
    id: str
    type: Optional[str] = None
    status: Optional[str] = None
    message_type: Optional[str] = None
    category: Optional[str] = None
    severity: Optional[str] = None
    certainty: Optional[str] = None
    urgency: Optional[str] = None
    event: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    instruction: Optional[str] = None
    area_description: Optional[str] = None
    sent: Optional[str] = None
    effective: Optional[str] = None
    onset: Optional[str] = None
    expires: Optional[str] = None
    ends: Optional[str] = None
    same_codes: FrozenSet[str] = frozenset()
    zone_codes: FrozenSet[str] = frozenset()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def codes(self) -> FrozenSet[str]:
        """SAME ∪ UGC codes, lower-cased for matching."""
        return frozenset(
            code.strip().lower()
            for code in (*self.same_codes, *self.zone_codes)
            if code and code.strip()
        )

    @property
    def geometry(self) -> Optional[Dict[str, Any]]:
        geometry = self.raw.get("geometry")
        return geometry if isinstance(geometry, dict) else None


@dataclass(frozen=True)
class Subscriber:
    """
    A notification recipient.

    ``zone_subscription`` is stored verbatim in whichever historical shape it
    was saved; ``ZoneMatcher.canonicalize`` turns it into a code set.
    """
    id: int
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    timezone: Optional[str] = None
    pushover_user: Optional[str] = None
    pushover_token: Optional[str] = None
    ntfy_topic: Optional[str] = None
    ntfy_user: Optional[str] = None
    ntfy_password: Optional[str] = None
    ntfy_token: Optional[str] = None
    zone_subscription: Any = None


@dataclass(frozen=True)
class Zone:
    """Reference geography row."""
    state: Optional[str] = None
    zone: Optional[str] = None
    name: Optional[str] = None
    county: Optional[str] = None
    fips: Optional[str] = None
    state_zone: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of delivering one alert to one subscriber on one channel."""
    status: DeliveryStatus
    attempts: int = 0
    error: Optional[str] = None
    provider_request_id: Optional[str] = None

    @classmethod
    def skipped(cls, reason: str) -> "NotificationResult":
        return cls(status=DeliveryStatus.SKIPPED, attempts=0, error=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
            "provider_request_id": self.provider_request_id,
        }
