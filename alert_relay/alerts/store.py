"""
Alert store — staging tables and the delivery ledger.

Every multi-row transition runs inside one transaction: an exception rolls
the whole operation back and surfaces as ``StoreTransactionError``, so no
reader ever sees a half-replaced snapshot. Lock contention from concurrent
writers (an admin tool, a one-off script) is retried with exponential
backoff before it is escalated.

State transitions per cycle:
    replace_incoming(alerts)      incoming := alerts          (non-empty fetch only)
    queue_new_alerts()            pending  += incoming − active
    list_pending / remove_pending drain the work queue
    record_delivery(...)          sent     += one ledger row  (never overwritten)
    promote_incoming_to_active()  active   := incoming

Usage:
    store = AlertStore(engine)
    store.replace_incoming(alerts)
    queued = store.queue_new_alerts()
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar

from sqlalchemy import delete, func, insert, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from alert_relay.alerts.models import Alert, NotificationResult
from alert_relay.alerts.tables import (
    ALERT_COLUMN_NAMES,
    ActiveAlertRow,
    IncomingAlertRow,
    PendingAlertRow,
    SentAlertRow,
    SubscriberRow,
    ZoneRow,
)
from alert_relay.core.database import create_session_factory, session_scope
from alert_relay.core.errors import DuplicateDeliveryError, StoreTransactionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TABLES = {
    "incoming": IncomingAlertRow,
    "active": ActiveAlertRow,
    "pending": PendingAlertRow,
    "sent": SentAlertRow,
    "subscribers": SubscriberRow,
    "zones": ZoneRow,
}

BUSY_RETRIES = 5
BUSY_BACKOFF_SECONDS = 0.1


def _is_busy(exc: OperationalError) -> bool:
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return "locked" in text or "busy" in text


# ── Row conversion ──

def alert_to_row(alert: Alert) -> Dict[str, Any]:
    """Column dict for any of the staging tables."""
    return {
        "id": alert.id,
        "type": alert.type,
        "status": alert.status,
        "message_type": alert.message_type,
        "category": alert.category,
        "severity": alert.severity,
        "certainty": alert.certainty,
        "urgency": alert.urgency,
        "event": alert.event,
        "headline": alert.headline,
        "description": alert.description,
        "instruction": alert.instruction,
        "area_desc": alert.area_description,
        "sent": alert.sent,
        "effective": alert.effective,
        "onset": alert.onset,
        "expires": alert.expires,
        "ends": alert.ends,
        "same_codes": sorted(alert.same_codes),
        "zone_codes": sorted(alert.zone_codes),
        "raw_json": alert.raw,
    }


def row_to_alert(row: Any) -> Alert:
    return Alert(
        id=row.id,
        type=row.type,
        status=row.status,
        message_type=row.message_type,
        category=row.category,
        severity=row.severity,
        certainty=row.certainty,
        urgency=row.urgency,
        event=row.event,
        headline=row.headline,
        description=row.description,
        instruction=row.instruction,
        area_description=row.area_desc,
        sent=row.sent,
        effective=row.effective,
        onset=row.onset,
        expires=row.expires,
        ends=row.ends,
        same_codes=frozenset(row.same_codes or ()),
        zone_codes=frozenset(row.zone_codes or ()),
        raw=row.raw_json or {},
    )


def _alert_columns(model: Any) -> List[Any]:
    return [getattr(model, name) for name in ALERT_COLUMN_NAMES]


class AlertStore:
    """Transactional access to the staging tables and the delivery ledger."""

    def __init__(
        self,
        engine: Engine,
        *,
        session_factory: Optional[sessionmaker[Session]] = None,
        busy_retries: int = BUSY_RETRIES,
        busy_backoff: float = BUSY_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self._session_factory = session_factory or create_session_factory(engine)
        self._busy_retries = max(1, busy_retries)
        self._busy_backoff = busy_backoff
        self._sleep = sleep

    # ── Transaction helper ──

    def transaction(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in one transaction, retrying on lock contention."""
        attempt = 0
        while True:
            attempt += 1
            try:
                with session_scope(self._session_factory) as session:
                    return work(session)
            except OperationalError as exc:
                if _is_busy(exc) and attempt < self._busy_retries:
                    delay = self._busy_backoff * (2 ** (attempt - 1))
                    logger.warning(
                        "Database busy during %s, retrying in %.2fs (attempt %d/%d)",
                        operation, delay, attempt, self._busy_retries,
                    )
                    self._sleep(delay)
                    continue
                raise StoreTransactionError(operation, str(exc), attempts=attempt) from exc
            except SQLAlchemyError as exc:
                raise StoreTransactionError(operation, str(exc)) from exc

    # ── Snapshot operations ──

    def replace_incoming(self, alerts: Iterable[Alert]) -> int:
        """
        Replace the incoming snapshot with ``alerts`` in one transaction.

        An empty iterable clears the table; skipping an empty fetch is the
        caller's job. When an id repeats, the last occurrence wins.
        """
        rows: Dict[str, Dict[str, Any]] = {}
        for alert in alerts:
            rows[alert.id] = alert_to_row(alert)

        def work(session: Session) -> int:
            session.execute(delete(IncomingAlertRow))
            if rows:
                session.execute(insert(IncomingAlertRow), list(rows.values()))
            return len(rows)

        count = self.transaction("replace_incoming", work)
        logger.info("Replaced incoming snapshot", extra={"count": count})
        return count

    def queue_new_alerts(self) -> int:
        """Queue incoming alerts absent from active. Returns rows actually inserted."""

        def work(session: Session) -> int:
            active_ids = select(ActiveAlertRow.id)
            new_rows = session.execute(
                select(*_alert_columns(IncomingAlertRow))
                .where(IncomingAlertRow.id.not_in(active_ids))
                .order_by(IncomingAlertRow.id)
            ).all()

            inserted = 0
            for row in new_rows:
                stmt = (
                    sqlite_insert(PendingAlertRow.__table__)
                    .values(**row._asdict())
                    .on_conflict_do_nothing(index_elements=["id"])
                )
                inserted += session.execute(stmt).rowcount or 0
            return inserted

        count = self.transaction("queue_new_alerts", work)
        if count:
            logger.info("Queued new alerts", extra={"count": count})
        return count

    def promote_incoming_to_active(self) -> int:
        """Replace active with the current incoming contents."""

        def work(session: Session) -> int:
            session.execute(delete(ActiveAlertRow))
            session.execute(
                insert(ActiveAlertRow.__table__).from_select(
                    list(ALERT_COLUMN_NAMES),
                    select(*[IncomingAlertRow.__table__.c[name] for name in ALERT_COLUMN_NAMES]),
                )
            )
            return session.scalar(select(func.count()).select_from(ActiveAlertRow)) or 0

        count = self.transaction("promote_incoming_to_active", work)
        logger.debug("Promoted incoming to active", extra={"count": count})
        return count

    def list_alerts(self, table: str) -> List[Alert]:
        """All alerts in one staging table (incoming, active or pending), by id."""
        model = self._model(table)
        if model not in (IncomingAlertRow, ActiveAlertRow, PendingAlertRow):
            raise ValueError(f"Not an alert staging table: {table}")

        def work(session: Session) -> List[Alert]:
            rows = session.scalars(select(model).order_by(model.id)).all()
            return [row_to_alert(row) for row in rows]

        return self.transaction(f"list_{table}", work)

    # ── Pending queue ──

    def list_pending(self) -> List[Alert]:
        return self.list_alerts("pending")

    def remove_pending(self, alert_id: str) -> bool:
        def work(session: Session) -> bool:
            result = session.execute(delete(PendingAlertRow).where(PendingAlertRow.id == alert_id))
            return bool(result.rowcount)

        return self.transaction("remove_pending", work)

    # ── Delivery ledger ──

    def record_delivery(
        self,
        alert: Alert,
        subscriber_id: int,
        channel: str,
        result: NotificationResult,
    ) -> None:
        """
        Append one ledger row.

        Raises:
            DuplicateDeliveryError: the tuple is already recorded. Never
                retried and never turned into an overwrite.
        """
        channel = getattr(channel, "value", channel)
        values = {
            "alert_id": alert.id,
            "subscriber_id": subscriber_id,
            "channel": channel,
            "event": alert.event,
            "headline": alert.headline,
            "severity": alert.severity,
            "result_status": result.status.value,
            "result_attempts": result.attempts,
            "result_error": result.error,
            "provider_request_id": result.provider_request_id,
            "raw_json": alert.raw,
        }

        def work(session: Session) -> None:
            try:
                session.execute(insert(SentAlertRow).values(**values))
            except IntegrityError as exc:
                raise DuplicateDeliveryError(alert.id, subscriber_id, channel) from exc

        self.transaction("record_delivery", work)

    def delivered_tuples(self, alert_id: str) -> Set[Tuple[int, str]]:
        """(subscriber_id, channel) pairs already in the ledger for ``alert_id``."""

        def work(session: Session) -> Set[Tuple[int, str]]:
            rows = session.execute(
                select(SentAlertRow.subscriber_id, SentAlertRow.channel)
                .where(SentAlertRow.alert_id == alert_id)
            ).all()
            return {(row.subscriber_id, row.channel) for row in rows}

        return self.transaction("delivered_tuples", work)

    def list_deliveries(self, alert_id: Optional[str] = None) -> List[Dict[str, Any]]:
        def work(session: Session) -> List[Dict[str, Any]]:
            stmt = select(SentAlertRow).order_by(
                SentAlertRow.notified_at, SentAlertRow.subscriber_id, SentAlertRow.channel
            )
            if alert_id is not None:
                stmt = stmt.where(SentAlertRow.alert_id == alert_id)
            return [
                {
                    "alert_id": row.alert_id,
                    "subscriber_id": row.subscriber_id,
                    "channel": row.channel,
                    "status": row.result_status,
                    "attempts": row.result_attempts,
                    "error": row.result_error,
                    "provider_request_id": row.provider_request_id,
                    "notified_at": row.notified_at,
                }
                for row in session.scalars(stmt).all()
            ]

        return self.transaction("list_deliveries", work)

    # ── Maintenance ──

    def delete_sent_before(self, cutoff: datetime) -> int:
        """Delete ledger rows notified before ``cutoff``. Returns rows removed."""

        def work(session: Session) -> int:
            result = session.execute(delete(SentAlertRow).where(SentAlertRow.notified_at < cutoff))
            return result.rowcount or 0

        removed = self.transaction("delete_sent_before", work)
        logger.info("Removed old ledger rows", extra={"count": removed})
        return removed

    def vacuum(self) -> None:
        """Reclaim free pages. VACUUM cannot run inside a transaction."""
        start = time.monotonic()
        try:
            with self.engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
                conn.exec_driver_sql("VACUUM")
        except SQLAlchemyError as exc:
            raise StoreTransactionError("vacuum", str(exc)) from exc
        logger.info(
            "VACUUM complete",
            extra={"duration_ms": round((time.monotonic() - start) * 1000, 1)},
        )

    # ── Diagnostics ──

    def count(self, table: str) -> int:
        model = self._model(table)

        def work(session: Session) -> int:
            return session.scalar(select(func.count()).select_from(model)) or 0

        return self.transaction(f"count_{table}", work)

    @staticmethod
    def _model(table: str) -> Any:
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None
