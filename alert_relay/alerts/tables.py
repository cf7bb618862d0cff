"""
ORM tables for the alert pipeline.

═══════════════════════════════════════════════════════════════════════════
DATABASE SCHEMA DESIGN
═══════════════════════════════════════════════════════════════════════════

Tables: incoming_alerts / active_alerts / pending_alerts (same columns)
─────────────────────────────────────────────────────────────────────────────
| Column            | Type          | Description                          |
|-------------------|---------------|--------------------------------------|
| id                | TEXT PK       | Upstream alert identifier            |
| event, headline…  | TEXT          | CAP properties, one column each      |
| sent…ends         | TEXT          | ISO-8601 timestamps, as received     |
| same_codes        | JSON          | SAME/FIPS codes (list, never null)   |
| zone_codes        | JSON          | UGC zone codes (list, never null)    |
| raw_json          | JSON          | Full upstream GeoJSON feature        |
─────────────────────────────────────────────────────────────────────────────

Table: sent_alerts (delivery ledger, append-only)
─────────────────────────────────────────────────────────────────────────────
| alert_id, subscriber_id, channel  | composite PK — one row per tuple, ever |
| result_status                     | success | failure | skipped          |
| result_attempts, result_error     | delivery outcome                     |
| provider_request_id               | Pushover "request" id                |
| notified_at                       | UTC, used for retention cleanup      |
─────────────────────────────────────────────────────────────────────────────

Tables: subscribers, zones — recipients and read-only reference geography.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from alert_relay.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertColumns:
    """Column set shared by the three alert staging tables."""

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    type: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[Optional[str]] = mapped_column(String(32))
    message_type: Mapped[Optional[str]] = mapped_column(String(32))
    category: Mapped[Optional[str]] = mapped_column(String(32))
    severity: Mapped[Optional[str]] = mapped_column(String(32))
    certainty: Mapped[Optional[str]] = mapped_column(String(32))
    urgency: Mapped[Optional[str]] = mapped_column(String(32))
    event: Mapped[Optional[str]] = mapped_column(String(255))
    headline: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    instruction: Mapped[Optional[str]] = mapped_column(Text)
    area_desc: Mapped[Optional[str]] = mapped_column(Text)
    sent: Mapped[Optional[str]] = mapped_column(String(64))
    effective: Mapped[Optional[str]] = mapped_column(String(64))
    onset: Mapped[Optional[str]] = mapped_column(String(64))
    expires: Mapped[Optional[str]] = mapped_column(String(64))
    ends: Mapped[Optional[str]] = mapped_column(String(64))
    same_codes: Mapped[List[str]] = mapped_column(JSON, default=list)
    zone_codes: Mapped[List[str]] = mapped_column(JSON, default=list)
    raw_json: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)


# Columns copied verbatim between staging tables (incoming → pending/active)
ALERT_COLUMN_NAMES = (
    "id", "type", "status", "message_type", "category", "severity",
    "certainty", "urgency", "event", "headline", "description", "instruction",
    "area_desc", "sent", "effective", "onset", "expires", "ends",
    "same_codes", "zone_codes", "raw_json",
)


class IncomingAlertRow(AlertColumns, Base):
    """Latest full feed snapshot."""
    __tablename__ = "incoming_alerts"


class ActiveAlertRow(AlertColumns, Base):
    """Baseline of alerts already seen."""
    __tablename__ = "active_alerts"


class PendingAlertRow(AlertColumns, Base):
    """New-alert work queue."""
    __tablename__ = "pending_alerts"


class SentAlertRow(Base):
    """One delivery ledger entry per (alert, subscriber, channel)."""

    __tablename__ = "sent_alerts"
    __table_args__ = (
        Index("ix_sent_alerts_notified_at", "notified_at"),
    )

    alert_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    subscriber_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    channel: Mapped[str] = mapped_column(String(32), primary_key=True)
    event: Mapped[Optional[str]] = mapped_column(String(255))
    headline: Mapped[Optional[str]] = mapped_column(Text)
    severity: Mapped[Optional[str]] = mapped_column(String(32))
    result_status: Mapped[str] = mapped_column(String(16), nullable=False)
    result_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result_error: Mapped[Optional[str]] = mapped_column(Text)
    provider_request_id: Mapped[Optional[str]] = mapped_column(String(255))
    notified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    raw_json: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)


class SubscriberRow(Base):
    __tablename__ = "subscribers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    pushover_user: Mapped[Optional[str]] = mapped_column(String(64))
    pushover_token: Mapped[Optional[str]] = mapped_column(String(64))
    ntfy_topic: Mapped[Optional[str]] = mapped_column(String(128))
    ntfy_user: Mapped[Optional[str]] = mapped_column(String(128))
    ntfy_password: Mapped[Optional[str]] = mapped_column(String(255))
    ntfy_token: Mapped[Optional[str]] = mapped_column(String(255))
    # any historical shape; see ZoneMatcher
    zone_subscription: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class ZoneRow(Base):
    __tablename__ = "zones"
    __table_args__ = (
        Index("ix_zones_state_zone", "state_zone"),
        Index("ix_zones_fips", "fips"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    state: Mapped[Optional[str]] = mapped_column(String(2))
    zone: Mapped[Optional[str]] = mapped_column(String(16))
    name: Mapped[Optional[str]] = mapped_column(String(255))
    county: Mapped[Optional[str]] = mapped_column(String(255))
    fips: Mapped[Optional[str]] = mapped_column(String(16))
    # may hold comma-separated variants, e.g. "INC040,INZ040"
    state_zone: Mapped[Optional[str]] = mapped_column(String(64))
    lat: Mapped[Optional[float]] = mapped_column(Float)
    lon: Mapped[Optional[float]] = mapped_column(Float)
