"""
Periodic maintenance: ledger retention cleanup, then VACUUM.

The delivery ledger is an audit trail and grows without bound; rows older
than SENT_RETENTION_DAYS are deleted before space is reclaimed. Each step
is contained on its own: a failed cleanup is logged and the VACUUM still
runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from alert_relay.alerts.store import AlertStore

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceResult:
    removed: Optional[int] = None
    vacuumed: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class Maintenance:
    def __init__(
        self,
        store: AlertStore,
        *,
        retention_days: int = 30,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.retention_days = max(1, retention_days)
        self._now = now

    def cleanup_sent(self, days: Optional[int] = None) -> int:
        """Delete ledger rows older than ``days`` (default: the retention period)."""
        days = self.retention_days if days is None else max(1, days)
        cutoff = self._now() - timedelta(days=days)
        logger.info("Cleaning ledger rows notified before %s", cutoff.isoformat())
        return self.store.delete_sent_before(cutoff)

    def vacuum(self) -> None:
        self.store.vacuum()

    def run(self) -> MaintenanceResult:
        result = MaintenanceResult()
        try:
            result.removed = self.cleanup_sent()
        except Exception as exc:
            logger.exception("Ledger cleanup failed")
            result.errors.append(f"cleanup: {exc}")

        try:
            self.vacuum()
            result.vacuumed = True
        except Exception as exc:
            logger.exception("VACUUM failed")
            result.errors.append(f"vacuum: {exc}")
        return result
