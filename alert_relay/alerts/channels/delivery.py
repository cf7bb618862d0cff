"""
delivery.py — Bounded retry loop shared by the channel notifiers.

    attempt 1 ─► pace ─► send ─► 2xx ──────────────► success
                           │
                           └─ non-2xx / transport ─► wait retry_delay
    attempt 2 ─► ...                                 (not after the last)
    attempt N ─► ... ──────────────────────────────► failure(last error)

Nothing raised by a send escapes: every error becomes part of the
returned ``NotificationResult``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

import httpx

from alert_relay.alerts.models import Alert, Channel, DeliveryStatus, NotificationResult, Subscriber
from alert_relay.core.errors import DeliveryError

logger = logging.getLogger(__name__)


class Pacer(Protocol):
    def acquire(self) -> None: ...


class ChannelNotifier(Protocol):
    """What the distribution cycle needs from a provider."""

    channel: Channel
    enabled: bool

    def applies_to(self, subscriber: Subscriber) -> bool: ...

    def deliver(
        self, alert: Alert, subscriber: Subscriber, link: Optional[str] = None
    ) -> NotificationResult: ...

    def close(self) -> None: ...


def describe_error(exc: Exception) -> str:
    if isinstance(exc, DeliveryError):
        return exc.message
    if isinstance(exc, httpx.TimeoutException):
        return f"Timeout: {exc}"
    if isinstance(exc, httpx.HTTPError):
        return f"Transport error: {exc}"
    return f"Exception: {exc}"


def deliver_with_retries(
    channel: Channel,
    send_once: Callable[[], Optional[str]],
    *,
    max_attempts: int = 3,
    pacer: Optional[Pacer] = None,
    retry_delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> NotificationResult:
    """
    Run ``send_once`` until it succeeds or ``max_attempts`` is reached.

    ``send_once`` returns the provider request id (or None) on success and
    raises on failure.
    """
    max_attempts = max(1, max_attempts)
    attempts = 0
    last_error: Optional[str] = None

    while attempts < max_attempts:
        attempts += 1
        if pacer is not None:
            pacer.acquire()
        try:
            request_id = send_once()
        except Exception as exc:
            last_error = describe_error(exc)
            logger.debug(
                "%s attempt %d/%d failed: %s",
                channel.value, attempts, max_attempts, last_error,
            )
        else:
            return NotificationResult(
                status=DeliveryStatus.SUCCESS,
                attempts=attempts,
                provider_request_id=request_id,
            )

        if attempts < max_attempts and retry_delay > 0:
            sleep(retry_delay)

    return NotificationResult(
        status=DeliveryStatus.FAILURE,
        attempts=attempts,
        error=last_error,
    )


def log_result(
    channel: Channel, alert: Alert, subscriber: Subscriber, result: NotificationResult
) -> None:
    logger.info(
        "%s delivery %s",
        channel.value,
        result.status.value,
        extra={
            "alert_id": alert.id,
            "subscriber_id": subscriber.id,
            "channel": channel.value,
            **result.to_dict(),
        },
    )
    if result.status == DeliveryStatus.FAILURE:
        logger.warning(
            "%s delivery failed for alert %s: %s",
            channel.value, alert.id, result.error,
        )
