"""
Unit tests for the tenant connection cache.

Tests cover:
- Lazy opening from the registry's read-write credential
- Refusing tenants that are missing or not ready
- TTL expiry and explicit invalidation
- Replaced handles staying usable for requests that hold them
- Concurrent lookups opening a single handle
"""

import asyncio
import tempfile
from pathlib import Path

import httpx
import pytest

from dbaas.cvdb_server.control.connections import ConnectionCache
from dbaas.cvdb_server.control.registry import TenantRegistry, TenantStatus
from dbaas.cvdb_server.errors import NotFoundError, NotReadyError
from dbaas.cvdb_server.store.connection import LibsqlHttpConnection, SqliteFileConnection
from dbaas.cvdb_server.store.remote_store import RemoteEntityStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class RecordingConnect:
    """Connection factory that records what it opened."""

    def __init__(self) -> None:
        self.opened: list[tuple[str, str]] = []
        self.closed = 0

    def __call__(self, url: str, auth_token: str):
        self.opened.append((url, auth_token))
        conn = SqliteFileConnection(url, auth_token)
        parent = self

        async def close() -> None:
            parent.closed += 1

        conn.close = close
        return conn


class TestConnectionCache:
    """Tests for ConnectionCache."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def registry(self, data_dir):
        return TenantRegistry(data_dir, wal_mode=False)

    @pytest.fixture
    def connect(self):
        return RecordingConnect()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, registry, connect, clock):
        return ConnectionCache(registry, connect=connect, ttl_seconds=60, clock=clock)

    async def make_ready(self, registry, data_dir, principal_id="p1"):
        await registry.initialize()
        record = await registry.insert_creating(principal_id)
        url = f"file:{Path(data_dir) / f'{principal_id}.db'}"
        await registry.record_location(record.id, principal_id, url, f"rw-{principal_id}", "ro")
        return await registry.set_status(record.id, TenantStatus.READY)

    @pytest.mark.asyncio
    async def test_opens_with_rw_credential(self, cache, registry, connect, data_dir):
        record = await self.make_ready(registry, data_dir)

        store = await cache.get("p1")

        assert isinstance(store, RemoteEntityStore)
        assert store.principal_id == "p1"
        assert connect.opened == [(record.db_url, "rw-p1")]
        assert "p1" in cache

    @pytest.mark.asyncio
    async def test_hit_reuses_handle(self, cache, registry, connect, data_dir):
        await self.make_ready(registry, data_dir)

        first = await cache.get("p1")
        second = await cache.get("p1")

        assert first is second
        assert len(connect.opened) == 1

    @pytest.mark.asyncio
    async def test_unknown_principal(self, cache, registry):
        await registry.initialize()

        with pytest.raises(NotFoundError):
            await cache.get("nobody")

    @pytest.mark.asyncio
    async def test_not_ready(self, cache, registry):
        await registry.initialize()
        await registry.insert_creating("p1")

        with pytest.raises(NotReadyError) as exc_info:
            await cache.get("p1")

        assert exc_info.value.status == "creating"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_ttl_expiry_reopens(self, cache, registry, connect, clock, data_dir):
        """An expired handle is replaced, and closed only after the grace period."""
        await self.make_ready(registry, data_dir)
        first = await cache.get("p1")

        clock.now += 61
        second = await cache.get("p1")

        assert second is not first
        assert len(connect.opened) == 2
        assert connect.closed == 0
        assert cache.retired_count == 1

        clock.now += 61
        assert await cache.get("p1") is not second
        assert connect.closed == 1

    @pytest.mark.asyncio
    async def test_zero_ttl_never_expires(self, registry, connect, clock, data_dir):
        cache = ConnectionCache(registry, connect=connect, ttl_seconds=0, clock=clock)
        await self.make_ready(registry, data_dir)
        first = await cache.get("p1")

        clock.now += 10**6

        assert await cache.get("p1") is first

    @pytest.mark.asyncio
    async def test_invalidate(self, cache, registry, connect, data_dir):
        """Invalidation drops the handle and the next get reopens."""
        await self.make_ready(registry, data_dir)
        first = await cache.get("p1")

        assert await cache.invalidate("p1") is True
        assert await cache.invalidate("p1") is False
        second = await cache.get("p1")

        assert second is not first
        assert connect.closed == 0

        await cache.close()
        assert connect.closed == 2
        assert cache.retired_count == 0

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, cache, registry, connect, data_dir):
        await self.make_ready(registry, data_dir, "p1")
        await self.make_ready(registry, data_dir, "p2")
        await cache.get("p1")
        await cache.get("p2")

        await cache.close()

        assert len(cache) == 0
        assert connect.closed == 2

    @pytest.mark.asyncio
    async def test_concurrent_gets_open_once(self, cache, registry, connect, data_dir):
        await self.make_ready(registry, data_dir)

        stores = await asyncio.gather(*[cache.get("p1") for _ in range(5)])

        assert all(s is stores[0] for s in stores)
        assert len(connect.opened) == 1


class TestHandedOutHandles:
    """Handles held by in-flight requests survive expiry of the cache entry."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.mark.asyncio
    async def test_expired_libsql_handle_keeps_serving(self, data_dir):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            result = {"cols": [], "rows": [], "affected_row_count": 0, "last_insert_rowid": None}
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"type": "ok", "response": {"type": "execute", "result": result}},
                        {"type": "ok", "response": {"type": "close"}},
                    ]
                },
            )

        def connect(url, auth_token):
            return LibsqlHttpConnection(url, auth_token, transport=httpx.MockTransport(handler))

        registry = await TenantRegistry(data_dir, wal_mode=False).initialize()
        record = await registry.insert_creating("p1")
        await registry.record_location(record.id, "p1", "libsql://p1.turso.io", "rw", "ro")
        await registry.set_status(record.id, TenantStatus.READY)
        clock = FakeClock()
        cache = ConnectionCache(
            registry, connect=connect, ttl_seconds=60, clock=clock, retire_grace_seconds=30
        )

        held = await cache.get("p1")
        clock.now += 61
        fresh = await cache.get("p1")

        assert fresh is not held
        assert await held.list_jobs_with_highlight_counts() == []
        assert await fresh.list_jobs_with_highlight_counts() == []
        assert len(requests) == 2

        await cache.close()
