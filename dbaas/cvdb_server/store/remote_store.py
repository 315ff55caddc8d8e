"""
Remote tenant store for cvdb.

Authenticated principals keep their data in a dedicated database provisioned
on the database platform. RemoteEntityStore runs the shared entity store
contract over a TenantConnection that carries the principal's read-write
credential.

Invariants:
    - One store per principal; the scope is the principal id
    - Multi-statement writes go through TenantConnection.batch()
    - The store never sees the control-plane registry

How to change safely:
    - Obtain stores from ConnectionCache, not by constructing them directly
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .base import EntityStore, Statement, StoreMode
from .connection import TenantConnection

logger = logging.getLogger(__name__)


class RemoteEntityStore(EntityStore):
    """EntityStore over a principal's remote tenant database.

    Example:
        >>> conn = open_tenant_connection(record.db_url, record.rw_credential)
        >>> store = RemoteEntityStore(record.principal_id, conn)
        >>> jobs = await store.list_jobs_with_highlight_counts()
    """

    mode = StoreMode.AUTHENTICATED

    def __init__(self, principal_id: str, connection: TenantConnection) -> None:
        super().__init__(principal_id)
        self.connection = connection

    @property
    def principal_id(self) -> str:
        return self.scope

    async def _query(self, sql: str, params: Sequence[Any] = ()) -> list[Mapping[str, Any]]:
        result = await self.connection.execute(sql, params)
        return result.rows

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        result = await self.connection.execute(sql, params)
        return result.affected_row_count

    async def _execute_atomic(self, statements: Sequence[Statement]) -> list[int]:
        results = await self.connection.batch(statements)
        return [r.affected_row_count for r in results]

    async def close(self) -> None:
        await self.connection.close()
        logger.debug(f"Closed remote store for principal {self.principal_id}")
