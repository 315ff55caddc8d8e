"""
Control-plane registry for cvdb.

The registry maps each principal to its tenant database: where it lives,
the credentials used to reach it, and how far provisioning has progressed.
It is a single SQLite database owned by the server process.

Table schema:
    tenant_databases:
        - id TEXT PRIMARY KEY (uuid, new on every restart)
        - principal_id TEXT UNIQUE NOT NULL
        - db_name, db_url TEXT NOT NULL ('pending' until located)
        - rw_credential TEXT NOT NULL ('pending' until issued)
        - ro_credential TEXT
        - status TEXT NOT NULL (creating, migrating, ready, error)
        - created_at, updated_at TEXT NOT NULL

Invariants:
    - At most one record per principal (UNIQUE constraint)
    - Status only moves creating -> migrating -> ready, or to error
    - A non-ready record is never resumed in place; it is deleted and
      provisioning restarts from creating with a new record id
    - Credentials are never logged

How to change safely:
    - Add columns with defaults; existing control databases are not migrated
    - Update ALLOWED_TRANSITIONS together with the provisioning steps
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from ..entities.models import utc_now
from ..errors import InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)

PENDING = "pending"


class TenantStatus(str, Enum):
    """Provisioning state of a tenant database."""

    CREATING = "creating"
    MIGRATING = "migrating"
    READY = "ready"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[TenantStatus, frozenset[TenantStatus]] = {
    TenantStatus.CREATING: frozenset({TenantStatus.MIGRATING, TenantStatus.ERROR}),
    TenantStatus.MIGRATING: frozenset({TenantStatus.READY, TenantStatus.ERROR}),
    TenantStatus.READY: frozenset(),
    TenantStatus.ERROR: frozenset(),
}


@dataclass(frozen=True)
class TenantDatabaseRecord:
    """A principal's tenant database as known to the control plane.

    Attributes:
        id: Record identifier (changes when provisioning restarts)
        principal_id: Owning principal
        db_name: Platform database name
        db_url: Connection URL (libsql:// or file:)
        rw_credential: Read-write credential used by the server
        ro_credential: Read-only credential handed to the principal
        status: Provisioning state
        created_at: ISO-8601 creation time
        updated_at: ISO-8601 time of the last change
    """

    id: str
    principal_id: str
    db_name: str
    db_url: str
    rw_credential: str
    ro_credential: str | None
    status: TenantStatus
    created_at: str
    updated_at: str

    @property
    def is_ready(self) -> bool:
        return self.status == TenantStatus.READY

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TenantDatabaseRecord:
        return cls(
            id=row["id"],
            principal_id=row["principal_id"],
            db_name=row["db_name"],
            db_url=row["db_url"],
            rw_credential=row["rw_credential"],
            ro_credential=row["ro_credential"],
            status=TenantStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_info(self) -> dict[str, Any]:
        """Settings view of the record. Never includes the read-write credential."""
        return {
            "dbName": self.db_name,
            "dbUrl": self.db_url,
            "roCredential": self.ro_credential,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def __repr__(self) -> str:
        return (
            f"TenantDatabaseRecord(id={self.id!r}, principal_id={self.principal_id!r}, "
            f"db_name={self.db_name!r}, status={self.status.value!r})"
        )


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS tenant_databases (
        id TEXT PRIMARY KEY NOT NULL,
        principal_id TEXT NOT NULL UNIQUE,
        db_name TEXT NOT NULL,
        db_url TEXT NOT NULL,
        rw_credential TEXT NOT NULL,
        ro_credential TEXT,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""


class TenantRegistry:
    """SQLite-backed control-plane registry.

    Example:
        >>> registry = await TenantRegistry("/var/lib/cvdb").initialize()
        >>> record = await registry.insert_creating("user_42")
        >>> record.status
        <TenantStatus.CREATING: 'creating'>
    """

    def __init__(
        self,
        data_dir: str,
        db_name: str = "control.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the registry.

        Args:
            data_dir: Directory holding the control database
            db_name: Control database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(data_dir) / db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            yield conn
        finally:
            conn.close()

    async def initialize(self) -> TenantRegistry:
        """Create the control table if needed."""
        with self._get_connection() as conn:
            conn.execute(_SCHEMA)
        logger.info(f"Tenant registry ready at {self.db_path}")
        return self

    async def get(self, principal_id: str) -> TenantDatabaseRecord | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM tenant_databases WHERE principal_id = ?", (principal_id,)
            ).fetchone()
        return TenantDatabaseRecord.from_row(row) if row else None

    async def get_status(self, principal_id: str) -> TenantStatus | None:
        record = await self.get(principal_id)
        return record.status if record else None

    async def list_records(self) -> list[TenantDatabaseRecord]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM tenant_databases ORDER BY created_at").fetchall()
        return [TenantDatabaseRecord.from_row(r) for r in rows]

    async def insert_creating(self, principal_id: str) -> TenantDatabaseRecord:
        """Insert a fresh record in the creating state with placeholder location.

        Raises:
            sqlite3.IntegrityError: If the principal already has a record
        """
        now = utc_now()
        record = TenantDatabaseRecord(
            id=str(uuid.uuid4()),
            principal_id=principal_id,
            db_name=PENDING,
            db_url=PENDING,
            rw_credential=PENDING,
            ro_credential=None,
            status=TenantStatus.CREATING,
            created_at=now,
            updated_at=now,
        )
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO tenant_databases
                    (id, principal_id, db_name, db_url, rw_credential, ro_credential,
                     status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.principal_id,
                    record.db_name,
                    record.db_url,
                    record.rw_credential,
                    record.ro_credential,
                    record.status.value,
                    record.created_at,
                    record.updated_at,
                ),
            )
        logger.info(
            f"Inserted tenant record for principal {principal_id}",
            extra={"record_id": record.id, "status": record.status.value},
        )
        return record

    async def record_location(
        self,
        record_id: str,
        db_name: str,
        db_url: str,
        rw_credential: str,
        ro_credential: str | None,
    ) -> TenantDatabaseRecord:
        """Store location and credentials and advance to migrating."""
        async with self._lock:
            current = await self._require(record_id)
            self._check_transition(current, TenantStatus.MIGRATING)
            with self._get_connection() as conn:
                conn.execute(
                    """
                    UPDATE tenant_databases
                    SET db_name = ?, db_url = ?, rw_credential = ?, ro_credential = ?,
                        status = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        db_name,
                        db_url,
                        rw_credential,
                        ro_credential,
                        TenantStatus.MIGRATING.value,
                        utc_now(),
                        record_id,
                    ),
                )
            return await self._require(record_id)

    async def set_status(self, record_id: str, status: TenantStatus) -> TenantDatabaseRecord:
        """Move a record to a new status.

        Raises:
            NotFoundError: If the record doesn't exist
            InvalidTransitionError: If the move is not allowed
        """
        async with self._lock:
            current = await self._require(record_id)
            self._check_transition(current, status)
            with self._get_connection() as conn:
                conn.execute(
                    "UPDATE tenant_databases SET status = ?, updated_at = ? WHERE id = ?",
                    (status.value, utc_now(), record_id),
                )
            logger.info(
                f"Tenant record {record_id} {current.status.value} -> {status.value}",
                extra={"principal_id": current.principal_id},
            )
            return await self._require(record_id)

    async def delete(self, record_id: str) -> bool:
        with self._get_connection() as conn:
            deleted = conn.execute(
                "DELETE FROM tenant_databases WHERE id = ?", (record_id,)
            ).rowcount
        if deleted:
            logger.info(f"Deleted tenant record {record_id}")
        return deleted > 0

    async def _require(self, record_id: str) -> TenantDatabaseRecord:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM tenant_databases WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Tenant record not found: {record_id}", "tenant_record", record_id)
        return TenantDatabaseRecord.from_row(row)

    @staticmethod
    def _check_transition(current: TenantDatabaseRecord, target: TenantStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransitionError(current.id, current.status.value, target.value)
