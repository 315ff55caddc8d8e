"""
Connection cache for cvdb.

Maps principal ids to open RemoteEntityStore handles. Handles are opened
lazily from the registry record's URL and read-write credential, and reused
until they expire or are invalidated.

A handle that expires or is invalidated leaves the map at once but is only
retired: requests that already hold it keep working. Retired handles are
closed once they have been retired for the grace period, or on close().

Invariants:
    - Only ready tenants are ever opened
    - At most one live handle per principal at a time
    - A handed-out handle is never closed before its grace period ends,
      except by close()

How to change safely:
    - Call invalidate() whenever a tenant's credential or location changes
    - Keep the cache injected; never hold it in a module-level global
    - Keep the grace period longer than the slowest request
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..errors import NotFoundError, NotReadyError
from ..store.connection import ConnectionFactory, open_tenant_connection
from ..store.remote_store import RemoteEntityStore
from .registry import TenantRegistry

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    store: RemoteEntityStore
    opened_at: float


@dataclass
class _Retired:
    store: RemoteEntityStore
    retired_at: float


class ConnectionCache:
    """Concurrency-safe principal -> RemoteEntityStore map.

    Example:
        >>> cache = ConnectionCache(registry, ttl_seconds=900)
        >>> store = await cache.get("user_42")
        >>> jobs = await store.list_jobs_with_highlight_counts()
    """

    def __init__(
        self,
        registry: TenantRegistry,
        connect: ConnectionFactory = open_tenant_connection,
        ttl_seconds: float = 900,
        clock: Callable[[], float] = time.monotonic,
        retire_grace_seconds: float = 60,
    ) -> None:
        """Initialize the cache.

        Args:
            registry: Control-plane registry
            connect: Opens a TenantConnection from (url, credential)
            ttl_seconds: Handle lifetime; 0 keeps handles until invalidated
            clock: Monotonic time source
            retire_grace_seconds: How long a replaced handle stays open
        """
        self.registry = registry
        self.connect = connect
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.retire_grace_seconds = retire_grace_seconds
        self._entries: dict[str, _Entry] = {}
        self._retired: list[_Retired] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, principal_id: object) -> bool:
        return principal_id in self._entries

    @property
    def retired_count(self) -> int:
        """Handles replaced but not yet closed."""
        return len(self._retired)

    def _expired(self, entry: _Entry) -> bool:
        return self.ttl_seconds > 0 and self.clock() - entry.opened_at >= self.ttl_seconds

    async def get(self, principal_id: str) -> RemoteEntityStore:
        """Return the principal's store, opening it on a miss.

        Raises:
            NotFoundError: If the principal has no tenant record
            NotReadyError: If the tenant database is not ready
        """
        async with self._lock:
            await self._sweep()
            entry = self._entries.get(principal_id)
            if entry is not None and not self._expired(entry):
                return entry.store
            if entry is not None:
                logger.debug(f"Connection for {principal_id} expired")
                self._retire(principal_id)

            record = await self.registry.get(principal_id)
            if record is None:
                raise NotFoundError(
                    f"No tenant database for principal {principal_id}",
                    "tenant_database",
                    principal_id,
                )
            if not record.is_ready:
                raise NotReadyError(principal_id, record.status.value)

            store = RemoteEntityStore(
                principal_id, self.connect(record.db_url, record.rw_credential)
            )
            self._entries[principal_id] = _Entry(store=store, opened_at=self.clock())
            logger.debug(f"Opened connection for {principal_id}", extra={"db_name": record.db_name})
            return store

    async def invalidate(self, principal_id: str) -> bool:
        """Drop the principal's handle so the next get reopens it.

        Returns whether a handle was cached.
        """
        async with self._lock:
            await self._sweep()
            return self._retire(principal_id)

    async def close(self) -> None:
        """Close every cached and retired handle."""
        async with self._lock:
            for principal_id in list(self._entries):
                self._retire(principal_id)
            retired, self._retired = self._retired, []
            for item in retired:
                await item.store.close()
        logger.info("Connection cache closed")

    def _retire(self, principal_id: str) -> bool:
        entry = self._entries.pop(principal_id, None)
        if entry is None:
            return False
        self._retired.append(_Retired(store=entry.store, retired_at=self.clock()))
        return True

    async def _sweep(self) -> None:
        now = self.clock()
        keep: list[_Retired] = []
        for item in self._retired:
            if now - item.retired_at >= self.retire_grace_seconds:
                await item.store.close()
            else:
                keep.append(item)
        self._retired = keep
