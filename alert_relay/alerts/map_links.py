"""
Details-link enrichment for notifications.

Resolution order for the link attached to a notification:

    1. zones_table     MapClick URL at the first zone matching the alert's codes
    2. alert_geometry  MapClick URL at the first [lon, lat] in the alert geometry
    3. alert_id        the alert id, when it is an http(s) URL
    4. none
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from alert_relay.alerts.models import Alert

logger = logging.getLogger(__name__)


class CoordinateLookup(Protocol):
    def coordinates_for(self, codes: Sequence[str]) -> Optional[Tuple[float, float]]: ...


@dataclass(frozen=True)
class DetailsLink:
    url: Optional[str]
    source: str  # zones_table | alert_geometry | alert_id | none


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def first_coordinate_pair(data: Any) -> Optional[Tuple[float, float]]:
    """Depth-first search for the first [lon, lat] pair in GeoJSON coordinates."""
    if not isinstance(data, (list, tuple)):
        return None
    if len(data) >= 2 and _is_number(data[0]) and _is_number(data[1]):
        return float(data[0]), float(data[1])
    for item in data:
        found = first_coordinate_pair(item)
        if found is not None:
            return found
    return None


def lookup_codes(alert: Alert) -> List[str]:
    """Alert codes in zones-table case: upper-case zone ids, FIPS unchanged."""
    codes = []
    for code in sorted(alert.same_codes) + sorted(alert.zone_codes):
        code = code.strip().upper()
        if code and code not in codes:
            codes.append(code)
    return codes


class MapLinkResolver:
    """Picks the details link passed to the notifiers."""

    def __init__(self, template: str, zones: Optional[CoordinateLookup] = None):
        self.template = template
        self.zones = zones

    def map_click_url(self, lat: float, lon: float) -> str:
        return self.template.format(lat=lat, lon=lon)

    def resolve(self, alert: Alert) -> DetailsLink:
        if self.zones is not None:
            coords = self.zones.coordinates_for(lookup_codes(alert))
            if coords is not None:
                lat, lon = coords
                return DetailsLink(self.map_click_url(lat, lon), "zones_table")

        geometry = alert.geometry
        if geometry is not None:
            pair = first_coordinate_pair(geometry.get("coordinates"))
            if pair is not None:
                lon, lat = pair
                return DetailsLink(self.map_click_url(lat, lon), "alert_geometry")

        if alert.id.startswith(("http://", "https://")):
            logger.info(
                "No coordinates for details link, using alert id",
                extra={"alert_id": alert.id},
            )
            return DetailsLink(alert.id, "alert_id")

        return DetailsLink(None, "none")
