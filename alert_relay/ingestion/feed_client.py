"""
feed_client.py — weather.gov active-alert feed polling.

Fetches ``/alerts/active`` as GeoJSON and turns each feature into an
``Alert``.

Conditional requests
====================
The last ETag / Last-Modified seen are replayed as If-None-Match /
If-Modified-Since. An unchanged feed answers 304 and costs almost nothing.

Error Handling Strategy
=======================
``fetch_active()`` never raises. The caller cannot tell "nothing new" from
"request failed"; both return ``[]`` and ingestion is skipped. Only the
log severity differs:

    304 Not Modified        → INFO
    other non-200 status    → WARNING
    transport / bad JSON    → ERROR

Normalisation
=============
    id          feature.id, else properties.id (features without one dropped)
    UGC codes   properties.geocode.UGC, else properties.UGC
    SAME codes  properties.geocode.SAME, else properties.SAME
    non-list code values become empty sets, never None
    repeated ids keep the first occurrence and log a warning
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from alert_relay.alerts.models import Alert
from alert_relay.alerts.rate_limiter import RateLimiter
from alert_relay.core.config import Settings
from alert_relay.core.errors import UpstreamFeedError

logger = logging.getLogger(__name__)

ACCEPT = "application/geo+json, application/json;q=0.9, */*;q=0.8"


# ═══════════════════════════════════════════════════════════════════════════
# Normalisation
# ═══════════════════════════════════════════════════════════════════════════

def _code_set(value: Any) -> frozenset:
    if not isinstance(value, list):
        return frozenset()
    return frozenset(str(v).strip() for v in value if v is not None and str(v).strip())


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def normalize_feature(feature: Dict[str, Any]) -> Optional[Alert]:
    """One GeoJSON feature → Alert, or None when it carries no id."""
    if not isinstance(feature, dict):
        return None
    props = feature.get("properties")
    if not isinstance(props, dict):
        props = {}

    alert_id = feature.get("id") or props.get("id")
    if not alert_id:
        return None

    geocode = props.get("geocode") if isinstance(props.get("geocode"), dict) else {}
    ugc = geocode.get("UGC") if geocode.get("UGC") is not None else props.get("UGC")
    same = geocode.get("SAME") if geocode.get("SAME") is not None else props.get("SAME")

    return Alert(
        id=str(alert_id),
        type=_text(feature.get("type")),
        status=_text(props.get("status")),
        message_type=_text(props.get("messageType")),
        category=_text(props.get("category")),
        severity=_text(props.get("severity")),
        certainty=_text(props.get("certainty")),
        urgency=_text(props.get("urgency")),
        event=_text(props.get("event")),
        headline=_text(props.get("headline")),
        description=_text(props.get("description")),
        instruction=_text(props.get("instruction")),
        area_description=_text(props.get("areaDesc")),
        sent=_text(props.get("sent")),
        effective=_text(props.get("effective")),
        onset=_text(props.get("onset")),
        expires=_text(props.get("expires")),
        ends=_text(props.get("ends")),
        same_codes=_code_set(same),
        zone_codes=_code_set(ugc),
        raw=feature,
    )


def normalize_features(features: List[Dict[str, Any]]) -> List[Alert]:
    """Normalise a feature list, dropping id-less features and repeated ids."""
    alerts: List[Alert] = []
    seen = set()
    skipped = 0
    for feature in features:
        alert = normalize_feature(feature)
        if alert is None:
            skipped += 1
            continue
        if alert.id in seen:
            continue
        seen.add(alert.id)
        alerts.append(alert)

    duplicates = len(features) - skipped - len(alerts)
    if duplicates:
        logger.warning(
            "Duplicate alert ids from feed: %d total, %d unique",
            len(features) - skipped, len(alerts),
        )
    if skipped:
        logger.debug("Dropped %d features without an id", skipped)
    return alerts


# ═══════════════════════════════════════════════════════════════════════════
# Client
# ═══════════════════════════════════════════════════════════════════════════

class FeedClient:
    """
    Conditional-GET client for the active-alert feed.

    Usage:
        client = FeedClient(settings)
        features = client.fetch_active()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.Client] = None,
        limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = settings.WEATHER_API_URL
        self._client = client or httpx.Client(timeout=settings.FEED_TIMEOUT_SECONDS)
        self._owns_client = client is None
        self._headers = {"User-Agent": settings.user_agent, "Accept": ACCEPT}
        self._limiter = limiter or RateLimiter(
            settings.API_RATE_PER_MINUTE, sleep=sleep, name="feed"
        )
        self.etag: Optional[str] = None
        self.last_modified: Optional[str] = None

    def fetch_active(self) -> List[Dict[str, Any]]:
        """Raw GeoJSON features; ``[]`` when unchanged or on any failure."""
        try:
            return self._fetch()
        except UpstreamFeedError as exc:
            if exc.status_code is None:
                logger.error("%s", exc.message)
            else:
                logger.warning("%s", exc.message, extra={"status_code": exc.status_code})
            return []

    def _fetch(self) -> List[Dict[str, Any]]:
        self._limiter.acquire()

        headers = dict(self._headers)
        if self.etag:
            headers["If-None-Match"] = self.etag
        if self.last_modified:
            headers["If-Modified-Since"] = self.last_modified

        start = time.monotonic()
        try:
            response = self._client.get(self.url, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamFeedError(f"{type(exc).__name__}: {exc}") from exc
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        if response.status_code == 304:
            logger.info("Feed not modified", extra={"status_code": 304, "duration_ms": duration_ms})
            return []
        if response.status_code != 200:
            raise UpstreamFeedError(
                f"unexpected status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamFeedError(f"invalid JSON: {exc}") from exc

        self.etag = response.headers.get("ETag") or self.etag
        self.last_modified = response.headers.get("Last-Modified") or self.last_modified

        features = data.get("features") if isinstance(data, dict) else None
        if not isinstance(features, list):
            features = []
        logger.info(
            "Fetched feed",
            extra={"count": len(features), "status_code": 200, "duration_ms": duration_ms},
        )
        return features

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
