"""
VoltHome Sync Test Suite.

This package contains:
- unit/: Unit tests (single component, SQLite in temp dirs)
- integration/: Integration tests (coordinator, service, HTTP API, SDK)
"""
