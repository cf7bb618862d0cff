"""
SchedulerLoop — runs the distribution cycle forever on an interval.

    IDLE ──► RUNNING ──► SLEEPING ──► RUNNING ──► ...
               │
               ├─ cycle raises   → logged, counted, loop continues
               └─ maintenance due → run it, whatever the cycle outcome

The sleep after each iteration is the poll interval minus the time the
iteration took, floored at zero. Only ``Exception`` is contained;
KeyboardInterrupt and SystemExit still end the process.

Clock and sleep are injectable so tests drive the loop on a fake clock.

Usage:
    loop = SchedulerLoop(cycle.run, poll_interval=180,
                         maintenance=maintenance.run, maintenance_interval=86400)
    loop.run()
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from alert_relay.core.config import MIN_POLL_SECONDS

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"


class SchedulerLoop:
    def __init__(
        self,
        run_cycle: Callable[[], Any],
        *,
        poll_interval: float = MIN_POLL_SECONDS,
        maintenance: Optional[Callable[[], Any]] = None,
        maintenance_interval: float = 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        min_poll_interval: float = MIN_POLL_SECONDS,
    ):
        self._run_cycle = run_cycle
        self._maintenance = maintenance
        self.poll_interval = max(min_poll_interval, poll_interval)
        self.maintenance_interval = maintenance_interval
        self._clock = clock
        self._sleep = sleep

        self.state = LoopState.IDLE
        self.cycles_run = 0
        self.cycles_failed = 0
        self.maintenance_runs = 0
        self.last_error: Optional[str] = None
        self.last_cycle_started_at: Optional[datetime] = None
        self._last_maintenance: Optional[float] = None

    # ── One iteration ──

    def tick(self) -> bool:
        """Run one cycle, then maintenance if due. Returns True when the cycle succeeded."""
        if self._last_maintenance is None:
            self._last_maintenance = self._clock()

        self.state = LoopState.RUNNING
        self.last_cycle_started_at = datetime.now(timezone.utc)
        ok = True
        try:
            self._run_cycle()
        except Exception as exc:
            ok = False
            self.cycles_failed += 1
            self.last_error = f"{type(exc).__name__}: {exc}"
            logger.exception("Scheduler cycle failed (cycle %d)", self.cycles_run + 1)
        finally:
            self.cycles_run += 1

        if self._maintenance_due():
            self._run_maintenance()
        return ok

    def _maintenance_due(self) -> bool:
        if self._maintenance is None or self._last_maintenance is None:
            return False
        return self._clock() - self._last_maintenance >= self.maintenance_interval

    def _run_maintenance(self) -> None:
        try:
            self._maintenance()
            logger.info("Scheduled maintenance complete")
        except Exception:
            logger.exception("Scheduled maintenance failed")
        finally:
            self.maintenance_runs += 1
            self._last_maintenance = self._clock()

    # ── Loop ──

    def run(self, max_iterations: Optional[int] = None) -> None:
        """
        Loop until the process is terminated.

        ``max_iterations`` bounds the loop; it returns right after the last
        iteration, without the trailing sleep.
        """
        logger.info(
            "Scheduler started: poll every %.0fs, maintenance every %.0fs",
            self.poll_interval, self.maintenance_interval,
        )
        iterations = 0
        try:
            while True:
                started = self._clock()
                self.tick()
                iterations += 1
                if max_iterations is not None and iterations >= max_iterations:
                    return

                elapsed = self._clock() - started
                remaining = self.poll_interval - elapsed
                if remaining <= 0:
                    logger.warning(
                        "Cycle overran the poll interval by %.1fs", -remaining,
                        extra={"duration_ms": round(elapsed * 1000, 1)},
                    )
                    remaining = 0.0
                self.state = LoopState.SLEEPING
                self._sleep(remaining)
        finally:
            self.state = LoopState.IDLE

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "cycles_run": self.cycles_run,
            "cycles_failed": self.cycles_failed,
            "maintenance_runs": self.maintenance_runs,
            "last_error": self.last_error,
            "last_cycle_started_at": (
                self.last_cycle_started_at.isoformat() if self.last_cycle_started_at else None
            ),
            "poll_interval_seconds": self.poll_interval,
        }
