"""
test_message.py — Notification title/body composition.

Covers:
    • Title format and fallbacks
    • Body lines, optional description/instruction blocks
    • Timezone conversion and fallback chain
    • Raw feed properties taking precedence over stored columns

Run with:
    pytest tests/test_message.py -v
"""

from __future__ import annotations

from datetime import timezone

import pytest

from alert_relay.alerts.message import (
    ComposedMessage,
    MessageComposer,
    format_local_time,
    resolve_timezone,
    truncate,
)
from alert_relay.alerts.models import Alert


def _make_alert(**overrides) -> Alert:
    fields = {
        "id": "urn:oid:2.49.0.1.840.0.abc",
        "status": "Actual",
        "message_type": "Alert",
        "category": "Met",
        "severity": "Extreme",
        "certainty": "Observed",
        "urgency": "Immediate",
        "event": "Tornado Warning",
        "headline": "Tornado Warning issued May 1 at 3:15PM EDT",
        "area_description": "Marion, IN",
        "effective": "2025-05-01T19:15:00Z",
        "expires": "2025-05-01T20:00:00+00:00",
        "description": "A confirmed tornado was located near Speedway.",
        "instruction": "Take cover now!",
    }
    fields.update(overrides)
    return Alert(**fields)


@pytest.fixture
def composer() -> MessageComposer:
    return MessageComposer("America/Indianapolis")


# ═══════════════════════════════════════════════════════════════════════════
# Title
# ═══════════════════════════════════════════════════════════════════════════

class TestTitle:

    def test_event_upper_then_headline(self, composer):
        message = composer.compose(_make_alert())
        assert message.title == "[TORNADO WARNING] Tornado Warning issued May 1 at 3:15PM EDT"

    def test_headline_defaults_to_event(self, composer):
        message = composer.compose(_make_alert(headline=None))
        assert message.title == "[TORNADO WARNING] Tornado Warning"

    def test_event_defaults_to_weather_alert(self, composer):
        message = composer.compose(_make_alert(event=None, headline=None))
        assert message.title == "[WEATHER ALERT] Weather Alert"


# ═══════════════════════════════════════════════════════════════════════════
# Body
# ═══════════════════════════════════════════════════════════════════════════

class TestBody:

    def test_full_body(self, composer):
        body = composer.compose(_make_alert()).body
        assert body.split("\n") == [
            "S/C/U: Extreme/Observed/Immediate",
            "Status/Msg/Cat: Actual/Alert/Met",
            "Area: Marion, IN",
            "Time: 2025-05-01 15:15 → 2025-05-01 16:00",
            "",
            "A confirmed tornado was located near Speedway.",
            "",
            "Instruction: Take cover now!",
        ]

    def test_missing_fields_render_dash(self, composer):
        alert = Alert(id="x")
        body = composer.compose(alert).body
        assert body.split("\n") == [
            "S/C/U: -/-/-",
            "Status/Msg/Cat: -/-/-",
            "Area: -",
            "Time: - → -",
        ]

    def test_instruction_without_description(self, composer):
        body = composer.compose(_make_alert(description=None)).body
        assert body.endswith("Time: 2025-05-01 15:15 → 2025-05-01 16:00\n\nInstruction: Take cover now!")

    def test_subscriber_timezone_wins(self, composer):
        body = composer.compose(_make_alert(), "America/Los_Angeles").body
        assert "Time: 2025-05-01 12:15 → 2025-05-01 13:00" in body

    def test_unknown_subscriber_timezone_falls_back(self, composer):
        body = composer.compose(_make_alert(), "Mars/Olympus_Mons").body
        assert "Time: 2025-05-01 15:15" in body

    def test_raw_properties_take_precedence(self, composer):
        alert = _make_alert(
            raw={"properties": {"event": "Severe Thunderstorm Warning", "areaDesc": "Hamilton, IN"}},
        )
        message = composer.compose(alert)
        assert message.title.startswith("[SEVERE THUNDERSTORM WARNING]")
        assert "Area: Hamilton, IN" in message.body


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestHelpers:

    def test_resolve_timezone_chain(self):
        assert resolve_timezone(None, "", "Not/AZone") is timezone.utc
        assert str(resolve_timezone("bogus", "America/Chicago")) == "America/Chicago"

    def test_format_local_time(self):
        assert format_local_time(None, timezone.utc) == "-"
        assert format_local_time("2025-05-01T19:15:00Z", timezone.utc) == "2025-05-01 19:15"
        assert format_local_time("2025-05-01T19:15:00", timezone.utc) == "2025-05-01 19:15"
        assert format_local_time("soon", timezone.utc) == "soon"

    def test_truncate_and_limited(self):
        assert truncate("abcdef", 3) == "abc"
        assert truncate("ab", 3) == "ab"
        limited = ComposedMessage("t" * 300, "b" * 2000).limited(250, 1024)
        assert len(limited.title) == 250
        assert len(limited.body) == 1024
