"""
Connections to remote tenant databases.

A TenantConnection executes SQL against one tenant database. Two backends
exist:
- LibsqlHttpConnection: libSQL/Turso databases over the HTTP pipeline
  protocol (POST /v2/pipeline), addressed as libsql://host or https://host
- SqliteFileConnection: SQLite files addressed as file:path, used by the
  local development platform and by tests

Invariants:
    - Every request carries the database credential as a bearer token
    - batch() is transactional: BEGIN, statements, COMMIT, ROLLBACK on failure
    - Credentials are never logged

How to change safely:
    - New backends must implement the TenantConnection protocol
    - Keep value encoding symmetric with decoding
"""

from __future__ import annotations

import base64
import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx

from ..errors import TenantConnectionError

logger = logging.getLogger(__name__)

Statement = tuple[str, Sequence[Any]]


@dataclass
class ResultSet:
    """Rows and counters returned by one statement.

    Attributes:
        columns: Column names in select order
        rows: Rows as column-name dictionaries
        affected_row_count: Rows changed by a write statement
    """

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    affected_row_count: int = 0


@runtime_checkable
class TenantConnection(Protocol):
    """Protocol for tenant database connections."""

    url: str

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ResultSet:
        """Execute one statement."""
        ...

    async def batch(self, statements: Sequence[Statement]) -> list[ResultSet]:
        """Execute statements in one transaction."""
        ...

    async def close(self) -> None:
        """Release the connection."""
        ...


ConnectionFactory = Callable[[str, str], TenantConnection]


# --- libSQL HTTP pipeline ---


def _encode_value(value: Any) -> dict[str, Any]:
    if value is None:
        return {"type": "null"}
    if isinstance(value, bool):
        return {"type": "integer", "value": str(int(value))}
    if isinstance(value, int):
        return {"type": "integer", "value": str(value)}
    if isinstance(value, float):
        return {"type": "float", "value": value}
    if isinstance(value, bytes):
        return {"type": "blob", "base64": base64.b64encode(value).decode("ascii")}
    return {"type": "text", "value": str(value)}


def _decode_value(cell: dict[str, Any]) -> Any:
    kind = cell.get("type")
    if kind == "null":
        return None
    if kind == "integer":
        return int(cell["value"])
    if kind == "float":
        return float(cell["value"])
    if kind == "blob":
        return base64.b64decode(cell["base64"])
    return cell.get("value")


def _stmt(sql: str, params: Sequence[Any]) -> dict[str, Any]:
    return {"sql": sql, "args": [_encode_value(p) for p in params]}


def _decode_result(result: dict[str, Any]) -> ResultSet:
    columns = [c.get("name") or "" for c in result.get("cols", [])]
    rows = [
        dict(zip(columns, (_decode_value(cell) for cell in row)))
        for row in result.get("rows", [])
    ]
    return ResultSet(
        columns=columns,
        rows=rows,
        affected_row_count=int(result.get("affected_row_count") or 0),
    )


def http_url_for(url: str) -> str:
    """Map a libsql:// database URL to its HTTPS endpoint."""
    if url.startswith("libsql://"):
        return "https://" + url[len("libsql://"):]
    return url


class LibsqlHttpConnection:
    """Tenant connection over the libSQL HTTP pipeline protocol.

    Each call sends one self-contained pipeline (requests plus a trailing
    close), so no server-side stream state is kept between calls.

    Example:
        >>> conn = LibsqlHttpConnection("libsql://buildcv-ab12cd34.turso.io", token)
        >>> result = await conn.execute("SELECT * FROM jobs")
        >>> await conn.close()
    """

    def __init__(
        self,
        url: str,
        auth_token: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the connection.

        Args:
            url: Database URL (libsql:// or https://)
            auth_token: Database credential
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.url = url
        self._client = httpx.AsyncClient(
            base_url=http_url_for(url),
            headers={"Authorization": f"Bearer {auth_token}"},
            transport=transport,
        )

    async def _pipeline(self, requests: list[dict[str, Any]]) -> list[dict[str, Any]]:
        try:
            response = await self._client.post(
                "/v2/pipeline", json={"baton": None, "requests": [*requests, {"type": "close"}]}
            )
        except httpx.HTTPError as e:
            raise TenantConnectionError(f"Pipeline request failed: {e}", url=self.url) from e

        if response.status_code != 200:
            raise TenantConnectionError(
                f"Pipeline request failed: {response.status_code} {response.text}", url=self.url
            )

        results = response.json().get("results", [])
        for result in results:
            if result.get("type") == "error":
                message = result.get("error", {}).get("message", "unknown error")
                raise TenantConnectionError(f"Statement failed: {message}", url=self.url)
        return results[: len(requests)]

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ResultSet:
        results = await self._pipeline([{"type": "execute", "stmt": _stmt(sql, params)}])
        return _decode_result(results[0]["response"]["result"])

    async def batch(self, statements: Sequence[Statement]) -> list[ResultSet]:
        n = len(statements)
        steps: list[dict[str, Any]] = [{"stmt": _stmt("BEGIN", ())}]
        for i, (sql, params) in enumerate(statements):
            steps.append({"stmt": _stmt(sql, params), "condition": {"type": "ok", "step": i}})
        steps.append({"stmt": _stmt("COMMIT", ()), "condition": {"type": "ok", "step": n}})
        steps.append(
            {
                "stmt": _stmt("ROLLBACK", ()),
                "condition": {"type": "not", "cond": {"type": "ok", "step": n + 1}},
            }
        )

        results = await self._pipeline([{"type": "batch", "batch": {"steps": steps}}])
        batch_result = results[0]["response"]["result"]
        step_errors = batch_result.get("step_errors", [])
        for error in step_errors[: n + 2]:
            if error:
                raise TenantConnectionError(
                    f"Batch failed: {error.get('message', 'unknown error')}", url=self.url
                )

        step_results = batch_result.get("step_results", [])
        return [_decode_result(r or {}) for r in step_results[1 : n + 1]]

    async def close(self) -> None:
        await self._client.aclose()


# --- SQLite files ---


class SqliteFileConnection:
    """Tenant connection to a SQLite file (file: URLs).

    The credential is accepted for interface parity and ignored.
    """

    def __init__(self, url: str, auth_token: str = "", busy_timeout_ms: int = 5000) -> None:
        if not url.startswith("file:"):
            raise ValueError(f"Not a file: URL: {url}")
        self.url = url
        self.path = Path(url[len("file:"):])
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            conn.close()

    @staticmethod
    def _result(cursor: sqlite3.Cursor) -> ResultSet:
        columns = [d[0] for d in cursor.description or []]
        rows = [dict(zip(columns, row)) for row in cursor.fetchall()] if columns else []
        return ResultSet(columns=columns, rows=rows, affected_row_count=max(cursor.rowcount, 0))

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ResultSet:
        try:
            with self._get_connection() as conn:
                return self._result(conn.execute(sql, tuple(params)))
        except sqlite3.Error as e:
            raise TenantConnectionError(f"Statement failed: {e}", url=self.url) from e

    async def batch(self, statements: Sequence[Statement]) -> list[ResultSet]:
        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    results = [self._result(conn.execute(sql, tuple(p))) for sql, p in statements]
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    conn.execute("ROLLBACK")
                    raise
                return results
        except sqlite3.Error as e:
            raise TenantConnectionError(f"Batch failed: {e}", url=self.url) from e

    async def close(self) -> None:
        """Nothing to release; connections are per call."""


def open_tenant_connection(url: str, auth_token: str) -> TenantConnection:
    """Open a connection for a tenant database URL.

    Args:
        url: libsql://, https:// or file: URL
        auth_token: Database credential

    Returns:
        TenantConnection for the URL scheme

    Raises:
        ValueError: If the URL scheme is not supported
    """
    if url.startswith("file:"):
        return SqliteFileConnection(url, auth_token)
    if url.startswith(("libsql://", "https://", "http://")):
        return LibsqlHttpConnection(url, auth_token)
    raise ValueError(f"Unsupported tenant database URL: {url}")
