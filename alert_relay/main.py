"""
Command-line entry point.

Run with:
    alert-relay run-scheduler

Or from the project root:
    python -m alert_relay.main poll

Commands:
    init-db         create the schema
    poll            run one distribution cycle
    run-scheduler   poll forever, with periodic maintenance
    vacuum          reclaim database space
    cleanup-sent    delete old delivery ledger rows
    health          print the JSON health report (exit 1 when unhealthy)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine

# ── Core infrastructure ──
from alert_relay.core.config import Settings, get_settings
from alert_relay.core.database import close_db, create_db_engine, init_db
from alert_relay.core.health import HealthReport, HealthStatus, run_health_check
from alert_relay.core.logging_config import get_logger, setup_logging

# ── Pipeline ──
from alert_relay.alerts.channels.delivery import ChannelNotifier
from alert_relay.alerts.channels.ntfy import NtfyNotifier
from alert_relay.alerts.channels.pushover import PushoverNotifier
from alert_relay.alerts.distribution import DistributionCycle
from alert_relay.alerts.map_links import MapLinkResolver
from alert_relay.alerts.store import AlertStore
from alert_relay.alerts.subscribers import SubscriberRepository, ZoneRepository
from alert_relay.ingestion.feed_client import FeedClient
from alert_relay.scheduler.loop import SchedulerLoop
from alert_relay.scheduler.maintenance import Maintenance

logger = get_logger(__name__)


@dataclass
class Pipeline:
    """Everything one process needs, wired from one Settings instance."""
    settings: Settings
    engine: Engine
    store: AlertStore
    feed: FeedClient
    notifiers: List[ChannelNotifier]
    cycle: DistributionCycle
    maintenance: Maintenance

    def close(self) -> None:
        self.feed.close()
        for notifier in self.notifiers:
            notifier.close()
        close_db(self.engine)


def build_pipeline(settings: Settings) -> Pipeline:
    engine = create_db_engine(settings)
    store = AlertStore(engine)
    feed = FeedClient(settings)
    notifiers: List[ChannelNotifier] = [PushoverNotifier(settings), NtfyNotifier(settings)]
    cycle = DistributionCycle(
        store,
        feed,
        SubscriberRepository(store),
        notifiers,
        link_resolver=MapLinkResolver(settings.MAP_CLICK_URL, ZoneRepository(store)),
        workers=settings.DELIVERY_WORKERS,
    )
    maintenance = Maintenance(store, retention_days=settings.SENT_RETENTION_DAYS)
    return Pipeline(settings, engine, store, feed, notifiers, cycle, maintenance)


# ── Commands ──

def cmd_init_db(pipeline: Pipeline, args: argparse.Namespace) -> int:
    init_db(pipeline.engine)
    return 0


def cmd_poll(pipeline: Pipeline, args: argparse.Namespace) -> int:
    init_db(pipeline.engine)
    report = pipeline.cycle.run()
    print(json.dumps(report.to_dict(), indent=2))
    return 0


def log_health(pipeline: Pipeline, scheduler_state: Optional[Dict[str, Any]] = None) -> HealthReport:
    report = run_health_check(pipeline.engine, pipeline.settings, scheduler_state)
    level = logging.INFO if report.status == HealthStatus.HEALTHY else logging.WARNING
    logger.log(level, "Health: %s", report.status.value, extra={"health": report.to_dict()})
    return report


def cmd_run_scheduler(pipeline: Pipeline, args: argparse.Namespace) -> int:
    settings = pipeline.settings
    init_db(pipeline.engine)

    def maintenance() -> None:
        pipeline.maintenance.run()
        log_health(pipeline, loop.snapshot())

    loop = SchedulerLoop(
        pipeline.cycle.run,
        poll_interval=settings.poll_interval_seconds,
        maintenance=maintenance,
        maintenance_interval=settings.maintenance_interval_seconds,
    )
    loop.run()
    return 0


def cmd_vacuum(pipeline: Pipeline, args: argparse.Namespace) -> int:
    pipeline.maintenance.vacuum()
    return 0


def cmd_cleanup_sent(pipeline: Pipeline, args: argparse.Namespace) -> int:
    removed = pipeline.maintenance.cleanup_sent(args.days)
    print(f"Removed {removed} ledger rows")
    return 0


def cmd_health(pipeline: Pipeline, args: argparse.Namespace) -> int:
    report = run_health_check(pipeline.engine, pipeline.settings)
    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 1 if report.status == HealthStatus.UNHEALTHY else 0


COMMANDS = {
    "init-db": cmd_init_db,
    "poll": cmd_poll,
    "run-scheduler": cmd_run_scheduler,
    "vacuum": cmd_vacuum,
    "cleanup-sent": cmd_cleanup_sent,
    "health": cmd_health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alert-relay",
        description="Poll weather.gov alerts and notify subscribers over Pushover and ntfy.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Commands:")[1] if __doc__ else None,
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create database tables")
    sub.add_parser("poll", help="Run one distribution cycle")
    sub.add_parser("run-scheduler", help="Poll forever")
    sub.add_parser("vacuum", help="Reclaim database space")
    cleanup = sub.add_parser("cleanup-sent", help="Delete old delivery ledger rows")
    cleanup.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention in days (default: SENT_RETENTION_DAYS)",
    )
    sub.add_parser("health", help="Print the health report")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings)
    logger.info(
        "Starting %s v%s [%s]: %s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT, args.command,
    )

    pipeline = build_pipeline(settings)
    try:
        return COMMANDS[args.command](pipeline, args)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 130
    finally:
        pipeline.close()


if __name__ == "__main__":
    sys.exit(main())
