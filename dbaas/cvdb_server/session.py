"""
Store selection for cvdb.

A request is served by exactly one EntityStore, chosen once from the
session's mode: the session's local store while anonymous, the principal's
remote store once authenticated.
"""

from __future__ import annotations

from .control.connections import ConnectionCache
from .errors import NotAuthenticatedError
from .store.base import EntityStore, StoreMode
from .store.local_store import LocalEntityStore


def mode_for(principal_id: str | None) -> StoreMode:
    return StoreMode.AUTHENTICATED if principal_id else StoreMode.ANONYMOUS


async def open_entity_store(
    mode: StoreMode,
    *,
    local_store: LocalEntityStore | None = None,
    connections: ConnectionCache | None = None,
    principal_id: str | None = None,
) -> EntityStore:
    """Return the store backing a session.

    Args:
        mode: ANONYMOUS or AUTHENTICATED
        local_store: The session's local store (anonymous mode)
        connections: Connection cache (authenticated mode)
        principal_id: Authenticated principal (authenticated mode)

    Returns:
        EntityStore for the mode

    Raises:
        NotAuthenticatedError: If authenticated mode has no principal
        NotFoundError: If the principal has no tenant database
        NotReadyError: If the principal's tenant database is not ready
        ValueError: If a required collaborator is missing
    """
    if mode == StoreMode.AUTHENTICATED:
        if not principal_id:
            raise NotAuthenticatedError()
        if connections is None:
            raise ValueError("connections is required in authenticated mode")
        return await connections.get(principal_id)

    if local_store is None:
        raise ValueError("local_store is required in anonymous mode")
    if not await local_store.exists():
        await local_store.initialize()
    return local_store
