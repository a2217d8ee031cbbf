"""Fulfillment order workflow service.

This package tracks orders through a fixed production pipeline, providing:
- A per-stage state machine with sequential gating and supervisor overrides
- PostgreSQL or in-memory persistence with per-order serialization
- Work queue and WIP projections for dashboards
- A FastAPI transport, Prometheus metrics and structured logging
"""
