"""
distribution.py — One pass of the alert distribution pipeline.

═══════════════════════════════════════════════════════════════════════════
CYCLE FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Fetch           │  FeedClient.fetch_active()
    │                     │  [] (304 / failure) → skip ingestion, keep incoming
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  2. Ingest          │  normalise features → replace_incoming()
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  3. Diff            │  queue_new_alerts(): incoming − active → pending
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  4. Match + Notify  │  per pending alert × subscriber:
    │                     │    canonicalise zones → matches()?
    │                     │    per applicable channel: deliver → record_delivery
    │                     │  pending row retired win or lose
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  5. Promote         │  active := incoming
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
FAILURE ISOLATION
═══════════════════════════════════════════════════════════════════════════

    • A store failure in steps 2, 3 or 5 propagates; the scheduler logs it
      and the next tick resumes from the consistent-per-table state.
    • A failure while processing one pending alert is logged; the alert is
      still retired and the remaining alerts are processed.
    • A duplicate ledger insert is a programming error: the alert is retired,
      then the error propagates and aborts the cycle.
    • Ledger tuples already recorded for an alert are not attempted again,
      so a cycle resumed after a failed promote cannot double-send.

Deliveries for one alert may fan out over a bounded thread pool
(DELIVERY_WORKERS > 1). Ledger writes stay on the calling thread and
channel pacers are shared, so provider-facing rates remain bounded.
"""

from __future__ import annotations

import contextvars
import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from alert_relay.alerts.channels.delivery import ChannelNotifier
from alert_relay.alerts.map_links import MapLinkResolver
from alert_relay.alerts.models import Alert, DeliveryStatus, NotificationResult, Subscriber
from alert_relay.alerts.store import AlertStore
from alert_relay.alerts.subscribers import SubscriberRepository
from alert_relay.alerts.zone_matcher import ZoneMatcher
from alert_relay.core.errors import DuplicateDeliveryError
from alert_relay.core.logging_config import clear_cycle_context, set_cycle_context
from alert_relay.ingestion.feed_client import FeedClient, normalize_features

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Report
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CycleReport:
    """What one cycle did. Returned to the scheduler and the CLI."""
    cycle_id: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    fetched: int = 0
    ingested: int = 0
    queued: int = 0
    processed: int = 0
    unmatched: int = 0
    deliveries: Dict[str, int] = field(
        default_factory=lambda: {status.value: 0 for status in DeliveryStatus}
    )
    failed_alerts: List[str] = field(default_factory=list)
    promoted: int = 0

    def count(self, result: NotificationResult) -> None:
        self.deliveries[result.status.value] += 1

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "fetched": self.fetched,
            "ingested": self.ingested,
            "queued": self.queued,
            "processed": self.processed,
            "unmatched": self.unmatched,
            "deliveries": dict(self.deliveries),
            "failed_alerts": list(self.failed_alerts),
            "promoted": self.promoted,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Cycle
# ═══════════════════════════════════════════════════════════════════════════

DeliveryTask = Tuple[Subscriber, ChannelNotifier]


class DistributionCycle:
    """
    Orchestrates ingest → diff → match+notify → promote.

    Usage:
        cycle = DistributionCycle(store, feed, subscribers, [pushover, ntfy])
        report = cycle.run()
    """

    def __init__(
        self,
        store: AlertStore,
        feed: FeedClient,
        subscribers: SubscriberRepository,
        notifiers: Sequence[ChannelNotifier],
        *,
        link_resolver: Optional[MapLinkResolver] = None,
        workers: int = 1,
    ):
        self.store = store
        self.feed = feed
        self.subscribers = subscribers
        self.notifiers = list(notifiers)
        self.link_resolver = link_resolver
        self.workers = max(1, workers)

    def run(self) -> CycleReport:
        report = CycleReport(cycle_id=uuid.uuid4().hex[:8])
        set_cycle_context(cycle_id=report.cycle_id)
        start = time.monotonic()
        try:
            self.ingest(report)
            report.queued = self.store.queue_new_alerts()
            self.process_pending(report)
            report.promoted = self.store.promote_incoming_to_active()
            report.completed_at = datetime.now(timezone.utc)
            logger.info(
                "Cycle complete: %d fetched, %d queued, %d processed, deliveries %s",
                report.fetched, report.queued, report.processed, report.deliveries,
                extra={"duration_ms": round((time.monotonic() - start) * 1000, 1)},
            )
            return report
        finally:
            clear_cycle_context()

    # ── Steps 1–2 ──

    def ingest(self, report: CycleReport) -> int:
        """Fetch and replace incoming; an empty fetch leaves incoming untouched."""
        features = self.feed.fetch_active()
        report.fetched = len(features)
        if not features:
            logger.info("No feed changes; keeping the existing incoming snapshot")
            return 0

        alerts = normalize_features(features)
        if not alerts:
            logger.warning("Feed returned %d features but none had an id", len(features))
            return 0

        report.ingested = self.store.replace_incoming(alerts)
        return report.ingested

    # ── Step 4 ──

    def process_pending(self, report: CycleReport) -> None:
        pending = self.store.list_pending()
        if not pending:
            return

        subscribers = self.subscribers.list_all()
        matcher = ZoneMatcher()
        executor = ThreadPoolExecutor(max_workers=self.workers) if self.workers > 1 else None
        try:
            for alert in pending:
                try:
                    self.process_alert(alert, subscribers, matcher, report, executor)
                except DuplicateDeliveryError:
                    report.failed_alerts.append(alert.id)
                    raise
                except Exception:
                    report.failed_alerts.append(alert.id)
                    logger.exception(
                        "Failed processing pending alert", extra={"alert_id": alert.id}
                    )
                finally:
                    self.store.remove_pending(alert.id)
                    report.processed += 1
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

    def process_alert(
        self,
        alert: Alert,
        subscribers: Sequence[Subscriber],
        matcher: ZoneMatcher,
        report: CycleReport,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> int:
        """Match and notify one alert. Returns the number of ledger rows written."""
        already: Set[Tuple[int, str]] = self.store.delivered_tuples(alert.id)
        tasks: List[DeliveryTask] = []
        matched = 0

        for subscriber in subscribers:
            codes = matcher.canonicalize(subscriber.zone_subscription)
            if not codes or not matcher.matches(alert, codes):
                continue
            matched += 1
            for notifier in self.notifiers:
                if not notifier.applies_to(subscriber):
                    continue
                if (subscriber.id, notifier.channel.value) in already:
                    logger.info(
                        "Delivery already recorded, not resending",
                        extra={
                            "alert_id": alert.id,
                            "subscriber_id": subscriber.id,
                            "channel": notifier.channel.value,
                        },
                    )
                    continue
                tasks.append((subscriber, notifier))

        if not matched:
            report.unmatched += 1
            logger.info("No subscribers matched alert", extra={"alert_id": alert.id})
            return 0
        if not tasks:
            return 0

        link = self.link_resolver.resolve(alert).url if self.link_resolver else None

        written = 0
        for subscriber, notifier, result in self._dispatch(alert, tasks, link, executor):
            self.store.record_delivery(alert, subscriber.id, notifier.channel, result)
            report.count(result)
            written += 1
        return written

    @staticmethod
    def _dispatch(
        alert: Alert,
        tasks: List[DeliveryTask],
        link: Optional[str],
        executor: Optional[ThreadPoolExecutor],
    ) -> Iterator[Tuple[Subscriber, ChannelNotifier, NotificationResult]]:
        if executor is None:
            for subscriber, notifier in tasks:
                yield subscriber, notifier, notifier.deliver(alert, subscriber, link)
            return

        futures: Dict[Future, DeliveryTask] = {}
        for subscriber, notifier in tasks:
            # each task gets its own context copy so log records keep the cycle id
            ctx = contextvars.copy_context()
            future = executor.submit(ctx.run, notifier.deliver, alert, subscriber, link)
            futures[future] = (subscriber, notifier)
        for future in as_completed(futures):
            subscriber, notifier = futures[future]
            yield subscriber, notifier, future.result()
