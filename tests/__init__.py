"""
cvdb Test Suite.

This package contains:
- unit/: Unit tests (SQLite files, mocked HTTP transports)
- integration/: Integration tests (local platform backend, FastAPI TestClient)
"""
