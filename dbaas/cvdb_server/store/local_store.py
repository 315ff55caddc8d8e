"""
Local session SQLite store for cvdb.

Anonymous users keep their data in a SQLite file on the local device, one
file per session. There is no principal: the session id is the only scope.
When the session signs in, the migration workflow drains this store into the
principal's remote database and clears it.

Invariants:
    - One SQLite file per session
    - Schema is created on initialize() and is identical to tenant databases
    - Multi-statement writes run inside BEGIN IMMEDIATE ... COMMIT
    - SQLite failures surface as LocalStorageError

How to change safely:
    - Keep schema changes in schema.py so local and remote stay identical
    - Test with existing session files before changing pragmas
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import LocalStorageError, NotFoundError
from . import schema
from .base import EntityStore, Statement, StoreMode

logger = logging.getLogger(__name__)


class LocalEntityStore(EntityStore):
    """EntityStore over a session-scoped SQLite file.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = LocalEntityStore("/var/lib/cvdb/local", "s_123")
        >>> await store.initialize()
        >>> job = await store.create_job(JobInput(company="Acme", role="Eng",
        ...                                       start_date="2020-01-01"))
    """

    mode = StoreMode.ANONYMOUS

    def __init__(
        self,
        data_dir: str,
        session_id: str,
        db_pattern: str = "session_{session_id}.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the local store.

        Args:
            data_dir: Directory for session database files
            session_id: Anonymous session identifier
            db_pattern: File name pattern containing {session_id}
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        super().__init__(session_id)
        self.data_dir = Path(data_dir)
        self.db_pattern = db_pattern
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @property
    def session_id(self) -> str:
        return self.scope

    @property
    def db_path(self) -> Path:
        """Database file path for this session."""
        # Sanitize session_id to prevent path traversal
        safe_id = "".join(c for c in self.session_id if c.isalnum() or c in "-_")
        return self.data_dir / self.db_pattern.format(session_id=safe_id)

    @contextmanager
    def _get_connection(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a connection to the session database.

        Args:
            create: Whether to create the database file if missing

        Yields:
            SQLite connection

        Raises:
            NotFoundError: If the database doesn't exist and create=False
        """
        db_path = self.db_path

        if not create and not db_path.exists():
            raise NotFoundError(
                f"Session database not found: {self.session_id}", "session", self.session_id
            )

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    async def initialize(self) -> LocalEntityStore:
        """Create the session database and schema if they don't exist."""
        async with self._lock:
            with self._get_connection(create=True) as conn:
                for statement in schema.TENANT_SCHEMA_STATEMENTS:
                    conn.execute(statement)
        logger.debug(f"Initialized local store for session {self.session_id}")
        return self

    async def exists(self) -> bool:
        return self.db_path.exists()

    async def _query(self, sql: str, params: Sequence[Any] = ()) -> list[Mapping[str, Any]]:
        try:
            with self._get_connection() as conn:
                return conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise LocalStorageError(f"Statement failed: {e}", self.session_id) from e

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        try:
            with self._get_connection() as conn:
                return conn.execute(sql, tuple(params)).rowcount
        except sqlite3.Error as e:
            raise LocalStorageError(f"Statement failed: {e}", self.session_id) from e

    async def _execute_atomic(self, statements: Sequence[Statement]) -> list[int]:
        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    counts = [
                        conn.execute(sql, tuple(params)).rowcount for sql, params in statements
                    ]
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    conn.execute("ROLLBACK")
                    raise
                return counts
        except sqlite3.Error as e:
            raise LocalStorageError(f"Batch failed: {e}", self.session_id) from e


async def open_local_store(
    data_dir: str,
    session_id: str,
    db_pattern: str = "session_{session_id}.db",
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> LocalEntityStore:
    """Create and initialize the local store for a session."""
    store = LocalEntityStore(
        data_dir,
        session_id,
        db_pattern=db_pattern,
        wal_mode=wal_mode,
        busy_timeout_ms=busy_timeout_ms,
    )
    return await store.initialize()
