"""ingestion — Upstream alert feed polling and feature normalisation."""
