"""
Entity stores for cvdb.

This package contains:
- EntityStore: the contract every store satisfies
- LocalEntityStore: anonymous session data in a local SQLite file
- RemoteEntityStore: a principal's data in a dedicated remote database
- TenantConnection backends used by the remote store
- The tenant schema shared by both
"""

from .base import EntityStore, StoreMode
from .connection import (
    LibsqlHttpConnection,
    ResultSet,
    SqliteFileConnection,
    TenantConnection,
    open_tenant_connection,
)
from .local_store import LocalEntityStore, open_local_store
from .remote_store import RemoteEntityStore
from .schema import TENANT_SCHEMA_STATEMENTS

__all__ = [
    "EntityStore",
    "StoreMode",
    "LocalEntityStore",
    "open_local_store",
    "RemoteEntityStore",
    "TenantConnection",
    "LibsqlHttpConnection",
    "SqliteFileConnection",
    "ResultSet",
    "open_tenant_connection",
    "TENANT_SCHEMA_STATEMENTS",
]
