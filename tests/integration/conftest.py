"""
Integration test fixtures for cvdb.

Tenant databases are SQLite files created by the local platform backend, so
provisioning, remote stores and migration run end to end without network
access. RecordingPlatform counts every platform call and can be told to fail.
"""

import tempfile
from pathlib import Path

import pytest

from dbaas.cvdb_server.control.platform import DatabaseLocation, LocalPlatformClient
from dbaas.cvdb_server.control.registry import TenantRegistry
from dbaas.cvdb_server.errors import ExternalProvisioningError
from dbaas.cvdb_server.store.connection import SqliteFileConnection
from dbaas.cvdb_server.store.local_store import LocalEntityStore


class RecordingPlatform:
    """LocalPlatformClient that records calls and injects failures.

    Attributes:
        calls: (operation, database name) for every call made
        fail_on: Operations that raise ExternalProvisioningError
    """

    def __init__(self, data_dir: str) -> None:
        self._inner = LocalPlatformClient(data_dir)
        self.calls: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()

    def _record(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        if operation in self.fail_on:
            raise ExternalProvisioningError(f"{operation} failed", operation, 500)

    async def create_database(self, name: str, group: str) -> DatabaseLocation:
        self._record("create_database", name)
        return await self._inner.create_database(name, group)

    async def get_database(self, name: str) -> DatabaseLocation:
        self._record("get_database", name)
        return await self._inner.get_database(name)

    async def create_auth_token(self, database_name: str, read_only: bool = False) -> str:
        self._record("create_auth_token", database_name)
        return await self._inner.create_auth_token(database_name, read_only)

    async def close(self) -> None:
        pass

    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]


class FlakyConnect:
    """Tenant connection factory that can fail statements matching a prefix."""

    def __init__(self) -> None:
        self.fail_prefix: str | None = None

    def __call__(self, url: str, auth_token: str) -> SqliteFileConnection:
        conn = SqliteFileConnection(url, auth_token)
        execute = conn.execute
        factory = self

        async def flaky_execute(sql, params=()):
            if factory.fail_prefix and sql.strip().startswith(factory.fail_prefix):
                raise RuntimeError(f"injected failure: {factory.fail_prefix}")
            return await execute(sql, params)

        conn.execute = flaky_execute
        return conn


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def registry(data_dir):
    """Control-plane registry (call initialize() in the test)."""
    return TenantRegistry(data_dir, wal_mode=False)


@pytest.fixture
def platform(data_dir):
    return RecordingPlatform(data_dir)


@pytest.fixture
def connect():
    return FlakyConnect()


@pytest.fixture
def local_store(data_dir):
    """Anonymous session store (call initialize() in the test)."""
    return LocalEntityStore(str(Path(data_dir) / "local"), "session_1", wal_mode=False)
