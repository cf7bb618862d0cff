"""
alert_relay — Weather alert distribution pipeline.

Polls the weather.gov active-alert feed, queues alerts not seen before,
matches them against subscriber zone lists and delivers notifications
over Pushover and ntfy while keeping an auditable delivery ledger.
"""

__version__ = "0.1.0"
