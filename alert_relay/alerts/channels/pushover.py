"""
pushover.py — Pushover delivery channel.

Delivery mechanism:
    • Form-encoded POST to PUSHOVER_API_URL
    • Fields: token, user, title (≤250), message (≤1024), priority=0,
      url + url_title="Details" when a details link exists
    • Response JSON: {"status": 1, "request": "<uuid>"} on success,
      {"status": 0, "errors": [...]} otherwise

Pacing: a minimum gap of PUSHOVER_RATE_SECONDS (at least 1 s) between
sends, shared across all workers.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from alert_relay.alerts.channels.delivery import Pacer, deliver_with_retries, log_result
from alert_relay.alerts.message import MessageComposer
from alert_relay.alerts.models import Alert, Channel, NotificationResult, Subscriber
from alert_relay.alerts.rate_limiter import MinIntervalPacer
from alert_relay.core.config import Settings
from alert_relay.core.errors import ChannelNotConfigured, DeliveryError

logger = logging.getLogger(__name__)

TITLE_LIMIT = 250
MESSAGE_LIMIT = 1024
MIN_GAP_SECONDS = 1.0


def _is_http_url(value: Optional[str]) -> bool:
    return bool(value) and value.lower().startswith(("http://", "https://"))


def error_from_response(response: httpx.Response) -> str:
    """``HTTP <code>`` plus the provider's errors, when it sent any."""
    message = f"HTTP {response.status_code}"
    try:
        errors = response.json().get("errors")
    except (ValueError, AttributeError):
        errors = None
    if errors:
        if not isinstance(errors, (list, tuple)):
            errors = [errors]
        message += " - " + "; ".join(str(e) for e in errors)
    return message


class PushoverNotifier:
    channel = Channel.PUSHOVER

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.Client] = None,
        composer: Optional[MessageComposer] = None,
        pacer: Optional[Pacer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.enabled = settings.PUSHOVER_ENABLED
        self.api_url = settings.PUSHOVER_API_URL
        self.max_attempts = max(1, settings.DELIVERY_MAX_ATTEMPTS)
        self._client = client or httpx.Client(timeout=settings.PUSHOVER_TIMEOUT_SECONDS)
        self._owns_client = client is None
        self._composer = composer or MessageComposer(settings.TIMEZONE)
        self._pacer = pacer or MinIntervalPacer(
            max(MIN_GAP_SECONDS, settings.PUSHOVER_RATE_SECONDS), name="pushover"
        )
        self._sleep = sleep

    def applies_to(self, subscriber: Subscriber) -> bool:
        # credential gaps are recorded as skipped, not silently dropped
        return self.enabled

    def build_form(
        self, alert: Alert, subscriber: Subscriber, link: Optional[str] = None
    ) -> Dict[str, Any]:
        user = (subscriber.pushover_user or "").strip()
        token = (subscriber.pushover_token or "").strip()
        if not user or not token:
            raise ChannelNotConfigured(self.channel.value, "missing credentials")

        message = self._composer.compose(alert, subscriber.timezone).limited(
            TITLE_LIMIT, MESSAGE_LIMIT
        )
        form: Dict[str, Any] = {
            "token": token,
            "user": user,
            "title": message.title,
            "message": message.body,
            "priority": 0,
        }
        if _is_http_url(link):
            form["url"] = link
            form["url_title"] = "Details"
        return form

    def deliver(
        self, alert: Alert, subscriber: Subscriber, link: Optional[str] = None
    ) -> NotificationResult:
        try:
            form = self.build_form(alert, subscriber, link)
        except ChannelNotConfigured as exc:
            logger.info(
                "Pushover skipped: %s", exc.reason,
                extra={"alert_id": alert.id, "subscriber_id": subscriber.id},
            )
            return NotificationResult.skipped(exc.reason)

        def send_once() -> Optional[str]:
            response = self._client.post(self.api_url, data=form)
            if not response.is_success:
                raise DeliveryError(
                    self.channel.value,
                    error_from_response(response),
                    status_code=response.status_code,
                )
            try:
                request_id = response.json().get("request")
            except (ValueError, AttributeError):
                request_id = None
            return str(request_id) if request_id is not None else None

        result = deliver_with_retries(
            self.channel,
            send_once,
            max_attempts=self.max_attempts,
            pacer=self._pacer,
            sleep=self._sleep,
        )
        log_result(self.channel, alert, subscriber, result)
        return result

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
