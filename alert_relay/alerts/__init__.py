"""
alerts — Alert staging, subscriber matching and notification fan-out.

Sub-modules:
    channels/      — Per-provider delivery backends (Pushover, ntfy)
    distribution   — One pass: ingest → diff → match+notify → promote
    store          — Staging tables and the delivery ledger
    zone_matcher   — Subscriber zone canonicalisation and matching
    rate_limiter   — Sliding-window limiter and minimum-gap pacer
    message        — Title/body composition shared by all channels
    map_links      — Details-link enrichment
    subscribers    — Subscriber and zone reference lookups
    models         — Data structures shared across the system
"""
