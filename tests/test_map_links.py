"""
test_map_links.py — Details-link resolution and zone coordinate lookup.

Run with:
    pytest tests/test_map_links.py -v
"""

from __future__ import annotations

from alert_relay.alerts.map_links import MapLinkResolver, first_coordinate_pair, lookup_codes
from alert_relay.alerts.models import Alert, Zone
from alert_relay.alerts.subscribers import is_valid_zone_id

TEMPLATE = "https://forecast.weather.gov/MapClick.php?lat={lat}&lon={lon}"

POLYGON = {
    "type": "Polygon",
    "coordinates": [[[-86.15, 39.78], [-86.10, 39.80], [-86.12, 39.70], [-86.15, 39.78]]],
}


class StaticLookup:
    def __init__(self, coords=None):
        self.coords = coords
        self.seen = None

    def coordinates_for(self, codes):
        self.seen = list(codes)
        return self.coords


class TestResolver:

    def test_zones_table_first(self):
        lookup = StaticLookup((39.78, -86.15))
        alert = Alert(id="A1", zone_codes=frozenset({"inc097"}), raw={"geometry": POLYGON})
        link = MapLinkResolver(TEMPLATE, lookup).resolve(alert)
        assert link.source == "zones_table"
        assert link.url == "https://forecast.weather.gov/MapClick.php?lat=39.78&lon=-86.15"
        assert lookup.seen == ["INC097"]

    def test_geometry_when_no_zone_match(self):
        alert = Alert(id="A1", raw={"geometry": POLYGON})
        link = MapLinkResolver(TEMPLATE, StaticLookup()).resolve(alert)
        assert link.source == "alert_geometry"
        assert link.url == "https://forecast.weather.gov/MapClick.php?lat=39.78&lon=-86.15"

    def test_alert_id_url_fallback(self):
        alert = Alert(id="https://api.weather.gov/alerts/urn:oid:1", raw={"geometry": None})
        link = MapLinkResolver(TEMPLATE).resolve(alert)
        assert link.source == "alert_id"
        assert link.url == alert.id

    def test_none(self):
        link = MapLinkResolver(TEMPLATE).resolve(Alert(id="urn:oid:1"))
        assert link.source == "none"
        assert link.url is None


class TestHelpers:

    def test_first_coordinate_pair_depth_first(self):
        assert first_coordinate_pair(POLYGON["coordinates"]) == (-86.15, 39.78)
        assert first_coordinate_pair([[], [[1, 2]]]) == (1.0, 2.0)
        assert first_coordinate_pair([[True, False]]) is None
        assert first_coordinate_pair(None) is None

    def test_lookup_codes_upper_and_deduped(self):
        alert = Alert(id="A1", same_codes=frozenset({"018097"}), zone_codes=frozenset({"inc097", "INC097"}))
        assert lookup_codes(alert) == ["018097", "INC097"]

    def test_zone_id_validation(self):
        assert is_valid_zone_id("INC097")
        assert is_valid_zone_id("18097")
        assert not is_valid_zone_id("1809")
        assert not is_valid_zone_id("INC097;--")
        assert not is_valid_zone_id("ABCDEFGHIJK")


class TestZoneRepository:

    def _seed(self, zones):
        zones.add(Zone(state="IN", zone="097", fips="18097", state_zone="INC097,INZ097", lat=39.78, lon=-86.15))
        zones.add(Zone(state="OH", zone="010", fips="39001", state_zone="OHZ010", lat=None, lon=None))

    def test_matches_comma_separated_variant(self, zones):
        self._seed(zones)
        assert zones.coordinates_for(["INZ097"]) == (39.78, -86.15)
        assert zones.coordinates_for(["INC097"]) == (39.78, -86.15)

    def test_matches_fips(self, zones):
        self._seed(zones)
        assert zones.coordinates_for(["18097"]) == (39.78, -86.15)

    def test_rows_without_coordinates_ignored(self, zones):
        self._seed(zones)
        assert zones.coordinates_for(["OHZ010"]) is None

    def test_invalid_codes_never_queried(self, zones):
        self._seed(zones)
        assert zones.coordinates_for(["%", "INC097' OR 1=1"]) is None
