"""
Centralised error handling — exception hierarchy.

Taxonomy:
    UpstreamFeedError      — network / HTTP / parse failure talking to the feed.
                             Caught inside FeedClient; the cycle skips ingestion.
    StoreTransactionError  — any failure inside a transactional store operation.
                             Rolled back, propagated to the scheduler boundary.
    DuplicateDeliveryError — a second ledger row for the same
                             (alert, subscriber, channel). Never swallowed.
    DeliveryError          — one failed provider attempt. Retried in place,
                             then recorded as a ``failure`` result.
    ChannelNotConfigured   — missing credentials / invalid topic. Recorded as
                             ``skipped``; not an error per se.

None of these ever stop the scheduler loop; they surface through logs and
the persisted delivery ledger.

Usage:
    from alert_relay.core.errors import StoreTransactionError

    raise StoreTransactionError("replace_incoming", "disk I/O error")
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AlertRelayError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class UpstreamFeedError(AlertRelayError):
    """Talking to the alert feed failed."""

    def __init__(self, message: str = "", *, status_code: Optional[int] = None, **details: Any):
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            message=f"Alert feed request failed: {message}",
            error_code="UPSTREAM_FEED_ERROR",
            details=details,
        )
        self.status_code = status_code


class StoreTransactionError(AlertRelayError):
    """A transactional store operation failed and was rolled back."""

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Store operation '{operation}' failed: {message}",
            error_code="STORE_TRANSACTION_ERROR",
            details={"operation": operation, **details},
        )
        self.operation = operation


class DuplicateDeliveryError(AlertRelayError):
    """A ledger row already exists for this (alert, subscriber, channel)."""

    def __init__(self, alert_id: str, subscriber_id: int, channel: str):
        super().__init__(
            message=(
                f"Delivery for alert {alert_id} to subscriber {subscriber_id} "
                f"via {channel} is already recorded"
            ),
            error_code="DUPLICATE_DELIVERY",
            details={
                "alert_id": alert_id,
                "subscriber_id": subscriber_id,
                "channel": channel,
            },
        )


class DeliveryError(AlertRelayError):
    """A single provider delivery attempt failed."""

    def __init__(self, channel: str, message: str = "", *, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="DELIVERY_ERROR",
            details={"channel": channel, "status_code": status_code},
        )
        self.channel = channel
        self.status_code = status_code


class ChannelNotConfigured(AlertRelayError):
    """The subscriber lacks what this channel needs to send."""

    def __init__(self, channel: str, reason: str):
        super().__init__(
            message=reason,
            error_code="CHANNEL_NOT_CONFIGURED",
            details={"channel": channel},
        )
        self.channel = channel
        self.reason = reason
