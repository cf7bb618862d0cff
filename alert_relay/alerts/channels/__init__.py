"""
channels — Per-provider delivery backends.

Each notifier exposes:
    deliver(alert, subscriber, link=None) → NotificationResult

Notifiers never raise past deliver(); pacing and retries live in
``delivery.deliver_with_retries``.
"""
