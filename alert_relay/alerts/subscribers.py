"""
Subscriber and zone reference lookups.

Administrative editing lives outside this service; the repository covers
what the pipeline reads plus ``create`` for seeding.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from alert_relay.alerts.models import Subscriber, Zone
from alert_relay.alerts.store import AlertStore
from alert_relay.alerts.tables import SubscriberRow, ZoneRow
from alert_relay.alerts.zone_matcher import serialize_subscription

logger = logging.getLogger(__name__)

_ZONE_ID = re.compile(r"^[A-Za-z0-9]{1,10}$")
_DIGITS = re.compile(r"^[0-9]+$")


def _to_subscriber(row: SubscriberRow) -> Subscriber:
    return Subscriber(
        id=row.id,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        email=row.email or "",
        timezone=row.timezone,
        pushover_user=row.pushover_user,
        pushover_token=row.pushover_token,
        ntfy_topic=row.ntfy_topic,
        ntfy_user=row.ntfy_user,
        ntfy_password=row.ntfy_password,
        ntfy_token=row.ntfy_token,
        zone_subscription=row.zone_subscription,
    )


class SubscriberRepository:
    """Read access to subscribers, sharing the store's transaction handling."""

    def __init__(self, store: AlertStore):
        self._store = store

    def list_all(self) -> List[Subscriber]:
        """All subscribers, newest first."""

        def work(session: Session) -> List[Subscriber]:
            rows = session.scalars(select(SubscriberRow).order_by(SubscriberRow.id.desc())).all()
            return [_to_subscriber(row) for row in rows]

        return self._store.transaction("list_subscribers", work)

    def create(
        self,
        *,
        first_name: str = "",
        last_name: str = "",
        email: str = "",
        timezone: Optional[str] = None,
        pushover_user: Optional[str] = None,
        pushover_token: Optional[str] = None,
        ntfy_topic: Optional[str] = None,
        ntfy_user: Optional[str] = None,
        ntfy_password: Optional[str] = None,
        ntfy_token: Optional[str] = None,
        zone_subscription: Any = None,
        raw_zone_subscription: bool = False,
    ) -> int:
        """
        Insert a subscriber and return its id.

        The zone subscription is stored canonicalised unless
        ``raw_zone_subscription`` is set, which keeps the value verbatim
        (legacy rows, tests of the historical shapes).
        """
        if raw_zone_subscription:
            stored = zone_subscription
            if stored is not None and not isinstance(stored, str):
                stored = json.dumps(stored)
        else:
            stored = serialize_subscription(zone_subscription)

        def work(session: Session) -> int:
            row = SubscriberRow(
                first_name=first_name,
                last_name=last_name,
                email=email,
                timezone=timezone,
                pushover_user=pushover_user,
                pushover_token=pushover_token,
                ntfy_topic=ntfy_topic,
                ntfy_user=ntfy_user,
                ntfy_password=ntfy_password,
                ntfy_token=ntfy_token,
                zone_subscription=stored,
            )
            session.add(row)
            session.flush()
            return row.id

        subscriber_id = self._store.transaction("create_subscriber", work)
        logger.info("Created subscriber", extra={"subscriber_id": subscriber_id})
        return subscriber_id


# ── Zones ──

def is_valid_zone_id(zone_id: str) -> bool:
    """Alphanumeric, at most 10 chars; purely numeric ids must be 5–6 digits."""
    if not _ZONE_ID.match(zone_id):
        return False
    if _DIGITS.match(zone_id):
        return 5 <= len(zone_id) <= 6
    return True


def _zone_condition(code: str) -> Any:
    # state_zone may hold comma-separated variants, e.g. "INC040,INZ040"
    return or_(
        ZoneRow.state_zone == code,
        ZoneRow.state_zone.like(f"{code},%"),
        ZoneRow.state_zone.like(f"%,{code}"),
        ZoneRow.state_zone.like(f"%,{code},%"),
        ZoneRow.zone == code,
        ZoneRow.fips == code,
    )


class ZoneRepository:
    """Reference geography used for details-link enrichment."""

    def __init__(self, store: AlertStore):
        self._store = store

    def add(self, zone: Zone) -> None:
        def work(session: Session) -> None:
            session.add(ZoneRow(
                state=zone.state,
                zone=zone.zone,
                name=zone.name,
                county=zone.county,
                fips=zone.fips,
                state_zone=zone.state_zone,
                lat=zone.lat,
                lon=zone.lon,
            ))

        self._store.transaction("add_zone", work)

    def coordinates_for(self, codes: Iterable[str]) -> Optional[Tuple[float, float]]:
        """First (lat, lon) of a zone matching any valid code, else None."""
        valid = []
        for code in codes:
            code = str(code).strip()
            if code and is_valid_zone_id(code):
                valid.append(code)
        if not valid:
            return None

        def work(session: Session) -> Optional[Tuple[float, float]]:
            stmt = (
                select(ZoneRow.lat, ZoneRow.lon)
                .where(and_(
                    or_(*[_zone_condition(code) for code in valid]),
                    ZoneRow.lat.is_not(None),
                    ZoneRow.lon.is_not(None),
                ))
                .order_by(ZoneRow.id)
                .limit(1)
            )
            row = session.execute(stmt).first()
            return (float(row.lat), float(row.lon)) if row is not None else None

        return self._store.transaction("zone_coordinates", work)
