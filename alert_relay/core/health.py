"""
Health check aggregation — deep health check for all subsystems.

Checks:
    • Database connectivity (SELECT 1) and staging/ledger row counts
    • Channel configuration (which providers are enabled and usable)
    • Scheduler counters, when a running loop is available

Returns a structured health report suitable for:
    - the ``health`` CLI command (exit code 1 when unhealthy)
    - the ``run-scheduler`` log after each maintenance pass, scheduler counters included
    - cron / systemd watchdogs
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from alert_relay.core.config import Settings, is_valid_topic_name

logger = logging.getLogger(__name__)

COUNTED_TABLES = ("incoming_alerts", "active_alerts", "pending_alerts", "sent_alerts", "subscribers")


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = ""
    environment: str = ""
    timestamp: str = ""
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "components": [c.to_dict() for c in self.components],
        }


def check_database(engine: Engine) -> ComponentHealth:
    """Connectivity plus row counts for the pipeline tables."""
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            existing = set(inspect(conn).get_table_names())
            counts: Dict[str, Optional[int]] = {}
            for table in COUNTED_TABLES:
                counts[table] = (
                    conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
                    if table in existing else None
                )
        missing = [name for name, value in counts.items() if value is None]
        if missing:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Missing tables: {', '.join(missing)} (run init-db)"
        else:
            comp.message = "Connected"
        comp.details = {"url": engine.url.render_as_string(hide_password=True), "rows": counts}
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_channels(settings: Settings) -> ComponentHealth:
    """Which providers are enabled; none enabled means nothing can be sent."""
    comp = ComponentHealth(name="channels")
    start = time.monotonic()

    ntfy_topic = settings.NTFY_TOPIC.strip()
    comp.details = {
        "pushover": {"enabled": settings.PUSHOVER_ENABLED},
        "ntfy": {
            "enabled": settings.NTFY_ENABLED,
            "default_topic": ntfy_topic or None,
            "default_topic_valid": is_valid_topic_name(ntfy_topic) if ntfy_topic else None,
        },
    }
    if not (settings.PUSHOVER_ENABLED or settings.NTFY_ENABLED):
        comp.status = HealthStatus.DEGRADED
        comp.message = "No delivery channel enabled"
    else:
        comp.message = "Channels configured"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_scheduler(state: Dict[str, Any]) -> ComponentHealth:
    comp = ComponentHealth(name="scheduler")
    start = time.monotonic()
    comp.details = dict(state)
    runs = state.get("cycles_run") or 0
    failed = state.get("cycles_failed") or 0
    if runs and failed == runs:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"All {runs} cycles failed; last error: {state.get('last_error')}"
    else:
        comp.message = f"{runs} cycles run, {failed} failed"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def run_health_check(
    engine: Engine,
    settings: Settings,
    scheduler_state: Optional[Dict[str, Any]] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )

    report.components.append(check_database(engine))
    report.components.append(check_channels(settings))
    if scheduler_state is not None:
        report.components.append(check_scheduler(scheduler_state))

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
