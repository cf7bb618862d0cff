"""
ntfy.py — ntfy delivery channel.

Delivery mechanism:
    • Raw-body POST to NTFY_BASE_URL/<topic>
    • Headers: X-Title (≤200), X-Priority: 3, X-Tags: warning,
      X-Click (details link), Content-Type: text/plain; charset=utf-8
    • Body ≤4096 bytes of UTF-8, cut on a character boundary
    • Any 2xx is success

Topic: the subscriber's own, else NTFY_TOPIC. Names must match
``^[A-Za-z0-9_-]+$``.

Authorization, first available wins:
    subscriber token         → Bearer
    subscriber user+password → Basic
    NTFY_TOKEN               → Bearer
    NTFY_USER+NTFY_PASSWORD  → Basic

Pacing: sliding window of NTFY_RATE_PER_MINUTE, plus a short fixed delay
between failed attempts.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import quote

import httpx

from alert_relay.alerts.channels.delivery import Pacer, deliver_with_retries, log_result
from alert_relay.alerts.message import MessageComposer, truncate
from alert_relay.alerts.models import Alert, Channel, NotificationResult, Subscriber
from alert_relay.alerts.rate_limiter import RateLimiter
from alert_relay.core.config import Settings, is_valid_topic_name
from alert_relay.core.errors import ChannelNotConfigured, DeliveryError

logger = logging.getLogger(__name__)

TITLE_LIMIT = 200
BODY_LIMIT = 4096
RESPONSE_SNIPPET = 200

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]+")


def encode_header_value(value: str) -> str:
    """
    Header-safe form of ``value``.

    Runs of control characters (CR and LF included) collapse to one space,
    then non-ASCII text becomes an RFC 2047 encoded-word, which ntfy decodes.
    """
    value = _CONTROL_CHARS.sub(" ", value).strip()
    try:
        value.encode("ascii")
        return value
    except UnicodeEncodeError:
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        return f"=?UTF-8?B?{encoded}?="


def truncate_utf8(text: str, limit: int) -> bytes:
    """UTF-8 encoding of ``text`` cut to at most ``limit`` bytes without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return encoded
    return encoded[:limit].decode("utf-8", errors="ignore").encode("utf-8")


def _basic(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


class NtfyNotifier:
    channel = Channel.NTFY

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.Client] = None,
        composer: Optional[MessageComposer] = None,
        pacer: Optional[Pacer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.enabled = settings.NTFY_ENABLED
        self.base_url = settings.NTFY_BASE_URL.rstrip("/")
        self.default_topic = (settings.NTFY_TOPIC or "").strip()
        self.title_prefix = settings.NTFY_TITLE_PREFIX or ""
        self.max_attempts = max(1, settings.DELIVERY_MAX_ATTEMPTS)
        self.retry_delay = settings.NTFY_RETRY_DELAY_SECONDS
        self._global_token = (settings.NTFY_TOKEN or "").strip()
        self._global_user = (settings.NTFY_USER or "").strip()
        self._global_password = settings.NTFY_PASSWORD or ""
        self._client = client or httpx.Client(timeout=settings.NTFY_TIMEOUT_SECONDS)
        self._owns_client = client is None
        self._composer = composer or MessageComposer(settings.TIMEZONE)
        self._pacer = pacer or RateLimiter(
            settings.NTFY_RATE_PER_MINUTE, sleep=sleep, name="ntfy"
        )
        self._sleep = sleep

    def applies_to(self, subscriber: Subscriber) -> bool:
        """Attempted when the default topic is usable or the subscriber has one."""
        if not self.enabled:
            return False
        return is_valid_topic_name(self.default_topic) or bool((subscriber.ntfy_topic or "").strip())

    def topic_for(self, subscriber: Subscriber) -> str:
        topic = (subscriber.ntfy_topic or "").strip() or self.default_topic
        if not topic:
            raise ChannelNotConfigured(self.channel.value, "no topic available")
        if not is_valid_topic_name(topic):
            raise ChannelNotConfigured(self.channel.value, "invalid topic name")
        return topic

    def authorization_for(self, subscriber: Subscriber) -> Optional[str]:
        token = (subscriber.ntfy_token or "").strip()
        if token:
            return f"Bearer {token}"
        user = (subscriber.ntfy_user or "").strip()
        password = (subscriber.ntfy_password or "").strip()
        if user and password:
            return _basic(user, password)
        if self._global_token:
            return f"Bearer {self._global_token}"
        if self._global_user and self._global_password:
            return _basic(self._global_user, self._global_password)
        return None

    def build_request(
        self, alert: Alert, subscriber: Subscriber, link: Optional[str] = None
    ) -> Tuple[str, Dict[str, str], bytes]:
        topic = self.topic_for(subscriber)
        message = self._composer.compose(alert, subscriber.timezone)
        title = f"{self.title_prefix} {message.title}".lstrip()

        headers = {
            "X-Title": encode_header_value(truncate(title, TITLE_LIMIT)),
            "X-Priority": "3",
            "X-Tags": "warning",
            "Content-Type": "text/plain; charset=utf-8",
        }
        if link and link.lower().startswith(("http://", "https://")):
            headers["X-Click"] = link
        authorization = self.authorization_for(subscriber)
        if authorization:
            headers["Authorization"] = authorization

        url = f"{self.base_url}/{quote(topic, safe='')}"
        return url, headers, truncate_utf8(message.body, BODY_LIMIT)

    def deliver(
        self, alert: Alert, subscriber: Subscriber, link: Optional[str] = None
    ) -> NotificationResult:
        try:
            url, headers, body = self.build_request(alert, subscriber, link)
        except ChannelNotConfigured as exc:
            logger.info(
                "ntfy skipped: %s", exc.reason,
                extra={"alert_id": alert.id, "subscriber_id": subscriber.id},
            )
            return NotificationResult.skipped(exc.reason)

        def send_once() -> Optional[str]:
            response = self._client.post(url, headers=headers, content=body)
            if not response.is_success:
                raise DeliveryError(
                    self.channel.value,
                    f"HTTP {response.status_code}: {response.text[:RESPONSE_SNIPPET]}",
                    status_code=response.status_code,
                )
            try:
                message_id = response.json().get("id")
            except (ValueError, AttributeError):
                message_id = None
            return str(message_id) if message_id is not None else None

        result = deliver_with_retries(
            self.channel,
            send_once,
            max_attempts=self.max_attempts,
            pacer=self._pacer,
            retry_delay=self.retry_delay,
            sleep=self._sleep,
        )
        log_result(self.channel, alert, subscriber, result)
        return result

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
