"""
Unit tests for tenant database connections.

Tests cover:
- libSQL HTTP pipeline requests, value encoding and result decoding
- Transactional batches and error reporting
- SQLite file connections
- URL scheme dispatch
"""

import json
import tempfile
from pathlib import Path

import httpx
import pytest

from dbaas.cvdb_server.errors import TenantConnectionError
from dbaas.cvdb_server.store.connection import (
    LibsqlHttpConnection,
    SqliteFileConnection,
    http_url_for,
    open_tenant_connection,
)


def ok_execute(cols=(), rows=(), affected=0):
    """A pipeline execute result."""
    return {
        "type": "ok",
        "response": {
            "type": "execute",
            "result": {
                "cols": [{"name": c, "decltype": None} for c in cols],
                "rows": [list(r) for r in rows],
                "affected_row_count": affected,
                "last_insert_rowid": None,
            },
        },
    }


CLOSE_OK = {"type": "ok", "response": {"type": "close"}}


class TestLibsqlHttpConnection:
    """Tests for LibsqlHttpConnection."""

    def make_connection(self, responses, requests):
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return responses.pop(0)

        return LibsqlHttpConnection(
            "libsql://tenant.turso.io", "db-token", transport=httpx.MockTransport(handler)
        )

    def test_http_url_for(self):
        assert http_url_for("libsql://tenant.turso.io") == "https://tenant.turso.io"
        assert http_url_for("https://tenant.turso.io") == "https://tenant.turso.io"

    @pytest.mark.asyncio
    async def test_execute_encodes_arguments(self):
        requests = []
        conn = self.make_connection(
            [httpx.Response(200, json={"results": [ok_execute(affected=1), CLOSE_OK]})], requests
        )

        result = await conn.execute("INSERT INTO t VALUES (?, ?, ?, ?, ?)", ("a", 1, 2.5, None, True))

        assert result.affected_row_count == 1
        request = requests[0]
        assert request.url == "https://tenant.turso.io/v2/pipeline"
        assert request.headers["Authorization"] == "Bearer db-token"
        body = json.loads(request.content)
        assert body["requests"][-1] == {"type": "close"}
        assert body["requests"][0]["stmt"]["args"] == [
            {"type": "text", "value": "a"},
            {"type": "integer", "value": "1"},
            {"type": "float", "value": 2.5},
            {"type": "null"},
            {"type": "integer", "value": "1"},
        ]

    @pytest.mark.asyncio
    async def test_execute_decodes_rows(self):
        conn = self.make_connection(
            [
                httpx.Response(
                    200,
                    json={
                        "results": [
                            ok_execute(
                                cols=("id", "n", "end_date"),
                                rows=[
                                    (
                                        {"type": "text", "value": "j1"},
                                        {"type": "integer", "value": "3"},
                                        {"type": "null"},
                                    )
                                ],
                            ),
                            CLOSE_OK,
                        ]
                    },
                )
            ],
            [],
        )

        result = await conn.execute("SELECT id, n, end_date FROM jobs")

        assert result.columns == ["id", "n", "end_date"]
        assert result.rows == [{"id": "j1", "n": 3, "end_date": None}]

    @pytest.mark.asyncio
    async def test_statement_error(self):
        conn = self.make_connection(
            [
                httpx.Response(
                    200,
                    json={"results": [{"type": "error", "error": {"message": "no such table"}}]},
                )
            ],
            [],
        )

        with pytest.raises(TenantConnectionError, match="no such table"):
            await conn.execute("SELECT * FROM nope")

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        conn = self.make_connection([httpx.Response(401, text="unauthorized")], [])

        with pytest.raises(TenantConnectionError) as exc_info:
            await conn.execute("SELECT 1")

        assert exc_info.value.url == "libsql://tenant.turso.io"
        assert "db-token" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_batch_wraps_statements_in_transaction(self):
        requests = []
        batch_result = {
            "type": "ok",
            "response": {
                "type": "batch",
                "result": {
                    "step_results": [
                        {"cols": [], "rows": [], "affected_row_count": 0},
                        {"cols": [], "rows": [], "affected_row_count": 2},
                        {"cols": [], "rows": [], "affected_row_count": 1},
                        {"cols": [], "rows": [], "affected_row_count": 0},
                        None,
                    ],
                    "step_errors": [None, None, None, None, None],
                },
            },
        }
        conn = self.make_connection(
            [httpx.Response(200, json={"results": [batch_result, CLOSE_OK]})], requests
        )

        results = await conn.batch(
            [
                ("UPDATE highlights SET job_id = NULL WHERE job_id = ?", ("j1",)),
                ("DELETE FROM jobs WHERE id = ?", ("j1",)),
            ]
        )

        assert [r.affected_row_count for r in results] == [2, 1]
        steps = json.loads(requests[0].content)["requests"][0]["batch"]["steps"]
        assert [s["stmt"]["sql"] for s in steps] == [
            "BEGIN",
            "UPDATE highlights SET job_id = NULL WHERE job_id = ?",
            "DELETE FROM jobs WHERE id = ?",
            "COMMIT",
            "ROLLBACK",
        ]
        assert steps[3]["condition"] == {"type": "ok", "step": 2}
        assert steps[4]["condition"]["type"] == "not"

    @pytest.mark.asyncio
    async def test_batch_step_error(self):
        batch_result = {
            "type": "ok",
            "response": {
                "type": "batch",
                "result": {
                    "step_results": [{}, None, None, {}],
                    "step_errors": [None, {"message": "constraint failed"}, None, None],
                },
            },
        }
        conn = self.make_connection(
            [httpx.Response(200, json={"results": [batch_result, CLOSE_OK]})], []
        )

        with pytest.raises(TenantConnectionError, match="constraint failed"):
            await conn.batch([("DELETE FROM jobs", ())])


class TestSqliteFileConnection:
    """Tests for SqliteFileConnection."""

    @pytest.fixture
    def url(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield f"file:{Path(tmpdir) / 'tenant.db'}"

    @pytest.mark.asyncio
    async def test_execute_and_query(self, url):
        conn = SqliteFileConnection(url)
        await conn.execute("CREATE TABLE t (id TEXT PRIMARY KEY, n INTEGER)")

        written = await conn.execute("INSERT INTO t VALUES (?, ?)", ("a", 1))
        result = await conn.execute("SELECT * FROM t")

        assert written.affected_row_count == 1
        assert result.rows == [{"id": "a", "n": 1}]

    @pytest.mark.asyncio
    async def test_batch_rolls_back(self, url):
        conn = SqliteFileConnection(url)
        await conn.execute("CREATE TABLE t (id TEXT PRIMARY KEY)")

        with pytest.raises(TenantConnectionError):
            await conn.batch(
                [
                    ("INSERT INTO t VALUES (?)", ("a",)),
                    ("INSERT INTO t VALUES (?)", ("a",)),
                ]
            )

        assert (await conn.execute("SELECT COUNT(*) AS n FROM t")).rows == [{"n": 0}]

    @pytest.mark.asyncio
    async def test_errors_are_wrapped(self, url):
        with pytest.raises(TenantConnectionError):
            await SqliteFileConnection(url).execute("SELECT * FROM missing")

    def test_rejects_other_schemes(self):
        with pytest.raises(ValueError):
            SqliteFileConnection("libsql://x")


class TestOpenTenantConnection:
    """Tests for URL dispatch."""

    def test_file(self):
        assert isinstance(open_tenant_connection("file:/tmp/x.db", "t"), SqliteFileConnection)

    def test_libsql(self):
        assert isinstance(open_tenant_connection("libsql://x.turso.io", "t"), LibsqlHttpConnection)

    def test_unsupported(self):
        with pytest.raises(ValueError):
            open_tenant_connection("postgres://x", "t")
