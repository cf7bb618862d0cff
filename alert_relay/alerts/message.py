"""
Notification text shared by every channel.

Format:

    title  [TORNADO WARNING] Tornado Warning issued May 1 at 3:15PM EDT ...

    body   S/C/U: Extreme/Observed/Immediate
           Status/Msg/Cat: Actual/Alert/Met
           Area: Marion, IN
           Time: 2025-05-01 15:15 → 2025-05-01 16:00

           <description>

           Instruction: <instruction>

Times are shown in the subscriber's timezone, falling back to the
configured default and then UTC. A timestamp that does not parse is shown
as received. Each channel applies its own length limits afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from alert_relay.alerts.models import Alert

logger = logging.getLogger(__name__)

DEFAULT_EVENT = "Weather Alert"
TIME_FORMAT = "%Y-%m-%d %H:%M"


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


def resolve_timezone(*names: Optional[str]) -> tzinfo:
    """First loadable IANA zone among ``names``, else UTC."""
    for name in names:
        if not name or not name.strip():
            continue
        try:
            return ZoneInfo(name.strip())
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown timezone %r, trying fallback", name)
    return timezone.utc


def format_local_time(value: Optional[str], tz: tzinfo) -> str:
    if not value or not isinstance(value, str):
        return "-"
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(tz).strftime(TIME_FORMAT)


@dataclass(frozen=True)
class ComposedMessage:
    title: str
    body: str

    def limited(self, title_limit: int, body_limit: int) -> "ComposedMessage":
        return ComposedMessage(truncate(self.title, title_limit), truncate(self.body, body_limit))


class MessageComposer:
    """Builds {title, body} for an alert; consumed by both notifiers."""

    def __init__(self, default_timezone: Optional[str] = None):
        self.default_timezone = default_timezone

    def compose(self, alert: Alert, timezone_name: Optional[str] = None) -> ComposedMessage:
        props = _properties(alert)
        tz = resolve_timezone(timezone_name, self.default_timezone)
        return ComposedMessage(
            title=self.title(alert, props),
            body=self.body(alert, props, tz),
        )

    @staticmethod
    def title(alert: Alert, props: Optional[Dict[str, Any]] = None) -> str:
        props = props if props is not None else _properties(alert)
        event = _pick(props.get("event"), alert.event) or DEFAULT_EVENT
        headline = _pick(props.get("headline"), alert.headline) or event
        return f"[{event.upper()}] {headline}"

    @staticmethod
    def body(alert: Alert, props: Dict[str, Any], tz: tzinfo) -> str:
        def field(key: str, fallback: Optional[str]) -> str:
            return _pick(props.get(key), fallback) or "-"

        lines = [
            "S/C/U: %s/%s/%s" % (
                field("severity", alert.severity),
                field("certainty", alert.certainty),
                field("urgency", alert.urgency),
            ),
            "Status/Msg/Cat: %s/%s/%s" % (
                field("status", alert.status),
                field("messageType", alert.message_type),
                field("category", alert.category),
            ),
            "Area: %s" % field("areaDesc", alert.area_description),
            "Time: %s → %s" % (
                format_local_time(_pick(props.get("effective"), alert.effective), tz),
                format_local_time(_pick(props.get("expires"), alert.expires), tz),
            ),
        ]

        description = _pick(props.get("description"), alert.description)
        if description:
            lines.extend(["", description])

        instruction = _pick(props.get("instruction"), alert.instruction)
        if instruction:
            lines.extend(["", f"Instruction: {instruction}"])

        return "\n".join(lines)


def _properties(alert: Alert) -> Dict[str, Any]:
    props = alert.raw.get("properties") if isinstance(alert.raw, dict) else None
    return props if isinstance(props, dict) else {}


def _pick(*values: Any) -> Optional[str]:
    for value in values:
        if value is not None and str(value) != "":
            return str(value)
    return None
