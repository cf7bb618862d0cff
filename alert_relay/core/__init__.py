"""
Core package — cross-cutting concerns.

Modules:
    config    — environment variables & settings
    logging   — structured JSON logging
    errors    — exception hierarchy
    health    — health check aggregation
    database  — SQLite engine, sessions and schema
"""
