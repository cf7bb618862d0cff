"""
test_alert_store.py — Staging tables, work queue and delivery ledger.

Covers:
    • Incoming snapshot replacement (upsert-by-id)
    • Queueing new alerts (incoming − active), idempotent
    • Promotion of incoming to active
    • Ledger uniqueness per (alert, subscriber, channel)
    • Retention cleanup and VACUUM
    • Lock-contention retry and error wrapping

Run with:
    pytest tests/test_alert_store.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, OperationalError

from alert_relay.alerts.models import Alert, Channel, DeliveryStatus, NotificationResult
from alert_relay.alerts.store import AlertStore
from alert_relay.alerts.tables import IncomingAlertRow
from alert_relay.core.errors import DuplicateDeliveryError, StoreTransactionError


def _make_alert(alert_id: str = "urn:oid:1", **overrides) -> Alert:
    fields = {
        "id": alert_id,
        "event": "Tornado Warning",
        "headline": "Tornado Warning issued for Marion County",
        "severity": "Extreme",
        "zone_codes": frozenset({"INC097"}),
        "same_codes": frozenset({"018097"}),
        "raw": {"id": alert_id, "properties": {"event": "Tornado Warning"}},
    }
    fields.update(overrides)
    return Alert(**fields)


def _ids(alerts):
    return [a.id for a in alerts]


# ═══════════════════════════════════════════════════════════════════════════
# Snapshot operations
# ═══════════════════════════════════════════════════════════════════════════

class TestReplaceIncoming:

    def test_replaces_previous_snapshot(self, store):
        store.replace_incoming([_make_alert("A1"), _make_alert("A2")])
        store.replace_incoming([_make_alert("A3")])
        assert _ids(store.list_alerts("incoming")) == ["A3"]

    def test_same_id_overwrites(self, store):
        store.replace_incoming([_make_alert("A1", description="first")])
        store.replace_incoming([_make_alert("A1", description="second")])
        rows = store.list_alerts("incoming")
        assert len(rows) == 1
        assert rows[0].description == "second"

    def test_repeated_id_in_batch_keeps_last(self, store):
        count = store.replace_incoming([
            _make_alert("A1", headline="old"),
            _make_alert("A1", headline="new"),
        ])
        assert count == 1
        assert store.list_alerts("incoming")[0].headline == "new"

    def test_codes_and_raw_survive_storage(self, store):
        store.replace_incoming([_make_alert("A1")])
        alert = store.list_alerts("incoming")[0]
        assert alert.zone_codes == frozenset({"INC097"})
        assert alert.same_codes == frozenset({"018097"})
        assert alert.raw["properties"]["event"] == "Tornado Warning"


class TestQueueNewAlerts:

    def test_queues_everything_when_active_empty(self, store):
        store.replace_incoming([_make_alert("A1"), _make_alert("A2")])
        assert store.queue_new_alerts() == 2
        assert _ids(store.list_pending()) == ["A1", "A2"]

    def test_idempotent(self, store):
        store.replace_incoming([_make_alert("A1"), _make_alert("A2")])
        store.queue_new_alerts()
        assert store.queue_new_alerts() == 0
        assert store.count("pending") == 2

    def test_skips_alerts_already_active(self, store):
        store.replace_incoming([_make_alert("A1"), _make_alert("A2")])
        store.promote_incoming_to_active()
        store.replace_incoming([_make_alert("A1"), _make_alert("A2"), _make_alert("A3")])
        assert store.queue_new_alerts() == 1
        assert _ids(store.list_pending()) == ["A3"]


class TestPromote:

    def test_active_mirrors_incoming(self, store):
        store.replace_incoming([_make_alert("A1"), _make_alert("A2")])
        store.promote_incoming_to_active()
        store.replace_incoming([_make_alert("A2"), _make_alert("A3")])
        assert store.promote_incoming_to_active() == 2
        assert _ids(store.list_alerts("active")) == ["A2", "A3"]


class TestPendingQueue:

    def test_remove_pending(self, store):
        store.replace_incoming([_make_alert("A1")])
        store.queue_new_alerts()
        assert store.remove_pending("A1") is True
        assert store.remove_pending("A1") is False
        assert store.list_pending() == []

    def test_list_alerts_rejects_non_staging_table(self, store):
        with pytest.raises(ValueError):
            store.list_alerts("sent")

    def test_unknown_table(self, store):
        with pytest.raises(ValueError):
            store.count("nope")


# ═══════════════════════════════════════════════════════════════════════════
# Delivery ledger
# ═══════════════════════════════════════════════════════════════════════════

class TestDeliveryLedger:

    def test_record_and_list(self, store):
        alert = _make_alert("A1")
        result = NotificationResult(DeliveryStatus.SUCCESS, attempts=1, provider_request_id="req-1")
        store.record_delivery(alert, 7, Channel.PUSHOVER, result)

        rows = store.list_deliveries("A1")
        assert len(rows) == 1
        assert rows[0]["subscriber_id"] == 7
        assert rows[0]["channel"] == "pushover"
        assert rows[0]["status"] == "success"
        assert rows[0]["provider_request_id"] == "req-1"
        assert rows[0]["notified_at"] is not None

    def test_duplicate_tuple_rejected(self, store):
        alert = _make_alert("A1")
        store.record_delivery(alert, 7, Channel.NTFY, NotificationResult(DeliveryStatus.FAILURE, 3, "HTTP 500"))

        with pytest.raises(DuplicateDeliveryError) as exc_info:
            store.record_delivery(alert, 7, "ntfy", NotificationResult(DeliveryStatus.SUCCESS, 1))

        assert isinstance(exc_info.value.__cause__, IntegrityError)
        rows = store.list_deliveries("A1")
        assert len(rows) == 1
        assert rows[0]["status"] == "failure"

    def test_same_alert_other_channel_allowed(self, store):
        alert = _make_alert("A1")
        store.record_delivery(alert, 7, Channel.PUSHOVER, NotificationResult(DeliveryStatus.SUCCESS, 1))
        store.record_delivery(alert, 7, Channel.NTFY, NotificationResult.skipped("no topic available"))
        assert store.delivered_tuples("A1") == {(7, "pushover"), (7, "ntfy")}

    def test_delete_sent_before(self, store):
        alert = _make_alert("A1")
        store.record_delivery(alert, 1, Channel.PUSHOVER, NotificationResult(DeliveryStatus.SUCCESS, 1))
        past = datetime.now(timezone.utc) - timedelta(days=30)
        assert store.delete_sent_before(past) == 0

        future = datetime.now(timezone.utc) + timedelta(minutes=5)
        assert store.delete_sent_before(future) == 1
        assert store.count("sent") == 0

    def test_vacuum(self, store):
        store.replace_incoming([_make_alert("A1")])
        store.vacuum()
        assert store.count("incoming") == 1


# ═══════════════════════════════════════════════════════════════════════════
# Transaction helper
# ═══════════════════════════════════════════════════════════════════════════

def _operational_error(message: str) -> OperationalError:
    return OperationalError("INSERT INTO x", {}, Exception(message))


class TestTransaction:

    def test_busy_is_retried_with_backoff(self, engine):
        sleeps = []
        store = AlertStore(engine, sleep=sleeps.append)
        calls = {"n": 0}

        def work(session):
            calls["n"] += 1
            if calls["n"] < 3:
                raise _operational_error("database is locked")
            return "done"

        assert store.transaction("lookup", work) == "done"
        assert calls["n"] == 3
        assert sleeps == [pytest.approx(0.1), pytest.approx(0.2)]

    def test_busy_gives_up_after_retries(self, engine):
        sleeps = []
        store = AlertStore(engine, busy_retries=5, sleep=sleeps.append)

        def work(session):
            raise _operational_error("database is locked")

        with pytest.raises(StoreTransactionError) as exc_info:
            store.transaction("lookup", work)

        assert len(sleeps) == 4
        assert exc_info.value.details["operation"] == "lookup"
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_other_errors_not_retried(self, engine):
        sleeps = []
        store = AlertStore(engine, sleep=sleeps.append)

        def work(session):
            raise _operational_error("no such table: ghosts")

        with pytest.raises(StoreTransactionError):
            store.transaction("lookup", work)
        assert sleeps == []

    def test_failed_work_rolls_back(self, store):
        store.replace_incoming([_make_alert("A1")])

        def work(session):
            session.execute(delete(IncomingAlertRow))
            raise _operational_error("disk I/O error")

        with pytest.raises(StoreTransactionError):
            store.transaction("lookup", work)
        assert store.count("incoming") == 1
