"""
Unit tests for database platform clients.

Tests cover:
- Deterministic tenant database names
- Turso Platform API requests and error mapping
- Local SQLite platform backend
- Backend selection from configuration
"""

import json
import tempfile

import httpx
import pytest

from dbaas.cvdb_server.config import PlatformBackend, PlatformConfig, ServerConfig, StorageConfig
from dbaas.cvdb_server.control.platform import (
    LocalPlatformClient,
    TursoPlatformClient,
    create_platform_client,
    database_name_for,
)
from dbaas.cvdb_server.errors import DatabaseConflictError, ExternalProvisioningError

PLATFORM = PlatformConfig(api_token="platform-token", org_name="acme", group_name="eu")


class TestDatabaseName:
    """Tests for database_name_for."""

    def test_uses_first_eight_characters(self):
        assert database_name_for("abcdef1234567") == "buildcv-abcdef12"

    def test_lowercases_and_strips(self):
        assert database_name_for("User_42ab-XYZ") == "buildcv-user42a"

    def test_custom_prefix(self):
        assert database_name_for("p1", prefix="cv") == "cv-p1"

    def test_is_deterministic(self):
        assert database_name_for("user_2abc") == database_name_for("user_2abc")


class TestTursoPlatformClient:
    """Tests for TursoPlatformClient."""

    def make_client(self, handler, requests):
        def record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        return TursoPlatformClient(PLATFORM, transport=httpx.MockTransport(record))

    def test_requires_token_and_org(self):
        with pytest.raises(ValueError):
            TursoPlatformClient(PlatformConfig(org_name="acme"))
        with pytest.raises(ValueError):
            TursoPlatformClient(PlatformConfig(api_token="t"))

    @pytest.mark.asyncio
    async def test_create_database(self):
        requests = []
        client = self.make_client(
            lambda r: httpx.Response(200, json={"database": {"hostname": "buildcv-p1-acme.turso.io"}}),
            requests,
        )

        location = await client.create_database("buildcv-p1", "eu")

        assert location.name == "buildcv-p1"
        assert location.url == "libsql://buildcv-p1-acme.turso.io"
        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/organizations/acme/databases"
        assert request.headers["Authorization"] == "Bearer platform-token"
        assert json.loads(request.content) == {"name": "buildcv-p1", "group": "eu"}
        await client.close()

    @pytest.mark.asyncio
    async def test_create_database_conflict(self):
        client = self.make_client(lambda r: httpx.Response(409, json={"error": "exists"}), [])

        with pytest.raises(DatabaseConflictError) as exc_info:
            await client.create_database("buildcv-p1", "eu")

        assert exc_info.value.database_name == "buildcv-p1"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_create_database_failure(self):
        client = self.make_client(lambda r: httpx.Response(500, text="boom"), [])

        with pytest.raises(ExternalProvisioningError) as exc_info:
            await client.create_database("buildcv-p1", "eu")

        assert not isinstance(exc_info.value, DatabaseConflictError)
        assert exc_info.value.operation == "create_database"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_missing_hostname(self):
        client = self.make_client(lambda r: httpx.Response(200, json={"database": {}}), [])

        with pytest.raises(ExternalProvisioningError):
            await client.create_database("buildcv-p1", "eu")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def fail(request):
            raise httpx.ConnectError("unreachable")

        client = self.make_client(fail, [])

        with pytest.raises(ExternalProvisioningError):
            await client.create_database("buildcv-p1", "eu")

    @pytest.mark.asyncio
    async def test_get_database(self):
        requests = []
        client = self.make_client(
            lambda r: httpx.Response(200, json={"database": {"hostname": "h.turso.io"}}), requests
        )

        location = await client.get_database("buildcv-p1")

        assert location.url == "libsql://h.turso.io"
        assert requests[0].method == "GET"
        assert requests[0].url.path == "/v1/organizations/acme/databases/buildcv-p1"

    @pytest.mark.asyncio
    async def test_create_auth_tokens(self):
        requests = []
        tokens = iter(["rw-jwt", "ro-jwt"])
        client = self.make_client(
            lambda r: httpx.Response(200, json={"jwt": next(tokens)}), requests
        )

        rw = await client.create_auth_token("buildcv-p1")
        ro = await client.create_auth_token("buildcv-p1", read_only=True)

        assert (rw, ro) == ("rw-jwt", "ro-jwt")
        assert requests[0].url.path == "/v1/organizations/acme/databases/buildcv-p1/auth/tokens"
        assert "authorization" not in json.loads(requests[0].content)
        assert json.loads(requests[1].content)["authorization"] == "read-only"

    @pytest.mark.asyncio
    async def test_create_auth_token_without_jwt(self):
        client = self.make_client(lambda r: httpx.Response(200, json={}), [])

        with pytest.raises(ExternalProvisioningError) as exc_info:
            await client.create_auth_token("buildcv-p1")

        assert exc_info.value.operation == "create_auth_token"


class TestLocalPlatformClient:
    """Tests for LocalPlatformClient."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.mark.asyncio
    async def test_create_and_get(self, data_dir):
        client = LocalPlatformClient(data_dir)

        created = await client.create_database("buildcv-p1", "default")
        found = await client.get_database("buildcv-p1")

        assert created == found
        assert created.url.startswith("file:")
        assert created.url.endswith("buildcv-p1.db")

    @pytest.mark.asyncio
    async def test_conflict(self, data_dir):
        client = LocalPlatformClient(data_dir)
        await client.create_database("buildcv-p1", "default")

        with pytest.raises(DatabaseConflictError):
            await client.create_database("buildcv-p1", "default")

    @pytest.mark.asyncio
    async def test_get_missing(self, data_dir):
        with pytest.raises(ExternalProvisioningError):
            await LocalPlatformClient(data_dir).get_database("nope")

    @pytest.mark.asyncio
    async def test_tokens_are_distinct(self, data_dir):
        client = LocalPlatformClient(data_dir)

        rw = await client.create_auth_token("db")
        ro = await client.create_auth_token("db", read_only=True)

        assert rw != ro
        assert ro.startswith("ro_")


class TestCreatePlatformClient:
    """Tests for backend selection."""

    def test_local(self):
        config = ServerConfig(storage=StorageConfig(data_dir="/tmp/cvdb"))

        assert isinstance(create_platform_client(config), LocalPlatformClient)

    def test_turso(self):
        config = ServerConfig(platform_backend=PlatformBackend.TURSO, platform=PLATFORM)

        assert isinstance(create_platform_client(config), TursoPlatformClient)
