"""
Database platform clients for cvdb.

A PlatformClient creates tenant databases and issues their credentials.
Backends:
- TursoPlatformClient: Turso Platform API over HTTPS
- LocalPlatformClient: SQLite files under the data directory (development, tests)

Invariants:
    - Database names are deterministic per principal (database_name_for)
    - create_database raises DatabaseConflictError when the name is taken
    - Every other platform failure raises ExternalProvisioningError
    - Tokens are never logged

How to change safely:
    - New backends must implement the PlatformClient protocol
    - Register them in create_platform_client()
"""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx

from ..config import PlatformBackend, PlatformConfig, ServerConfig
from ..errors import DatabaseConflictError, ExternalProvisioningError

logger = logging.getLogger(__name__)


def database_name_for(principal_id: str, prefix: str = "buildcv") -> str:
    """Deterministic tenant database name for a principal.

    Uses the first 8 characters of the principal id, lower-cased, with
    anything outside [a-z0-9] removed.

    Example:
        >>> database_name_for("User_42ab-XYZ")
        'buildcv-user42a'
    """
    slug = re.sub(r"[^a-z0-9]", "", principal_id[:8].lower())
    return f"{prefix}-{slug}"


@dataclass(frozen=True)
class DatabaseLocation:
    """Where a tenant database can be reached.

    Attributes:
        name: Platform database name
        url: Connection URL (libsql:// or file:)
    """

    name: str
    url: str

    @classmethod
    def from_hostname(cls, name: str, hostname: str) -> DatabaseLocation:
        return cls(name=name, url=f"libsql://{hostname}")


@runtime_checkable
class PlatformClient(Protocol):
    """Protocol for database platform backends."""

    async def create_database(self, name: str, group: str) -> DatabaseLocation:
        """Create a database.

        Raises:
            DatabaseConflictError: If a database with this name exists
            ExternalProvisioningError: On any other failure
        """
        ...

    async def get_database(self, name: str) -> DatabaseLocation:
        """Look up an existing database."""
        ...

    async def create_auth_token(self, database_name: str, read_only: bool = False) -> str:
        """Issue a credential for a database."""
        ...

    async def close(self) -> None:
        ...


class TursoPlatformClient:
    """Turso Platform API client.

    Example:
        >>> client = TursoPlatformClient(config.platform)
        >>> location = await client.create_database("buildcv-ab12cd34", "default")
        >>> token = await client.create_auth_token(location.name)
    """

    def __init__(
        self,
        config: PlatformConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Platform configuration (token and organization required)
            transport: Optional httpx transport (tests use httpx.MockTransport)

        Raises:
            ValueError: If the API token or organization is missing
        """
        if not config.api_token:
            raise ValueError("TURSO_PLATFORM_API_TOKEN is not set")
        if not config.org_name:
            raise ValueError("TURSO_ORG_NAME is not set")

        self.org_name = config.org_name
        self._client = httpx.AsyncClient(
            base_url=config.api_base.rstrip("/"),
            headers={
                "Authorization": f"Bearer {config.api_token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def _databases_path(self, *parts: str) -> str:
        return "/".join([f"/organizations/{self.org_name}/databases", *parts])

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalProvisioningError(f"Platform request failed: {e}", operation) from e

    @staticmethod
    def _hostname(response: httpx.Response, operation: str) -> str:
        hostname = (response.json().get("database") or {}).get("hostname")
        if not hostname:
            raise ExternalProvisioningError(
                "No hostname returned by the platform", operation, response.status_code
            )
        return hostname

    async def create_database(self, name: str, group: str) -> DatabaseLocation:
        response = await self._request(
            "create_database", "POST", self._databases_path(), json={"name": name, "group": group}
        )
        if response.status_code == 409:
            raise DatabaseConflictError(name)
        if not response.is_success:
            raise ExternalProvisioningError(
                f"Failed to create database: {response.status_code} {response.text}",
                "create_database",
                response.status_code,
            )
        logger.info(f"Created platform database {name}", extra={"group": group})
        return DatabaseLocation.from_hostname(name, self._hostname(response, "create_database"))

    async def get_database(self, name: str) -> DatabaseLocation:
        response = await self._request("get_database", "GET", self._databases_path(name))
        if not response.is_success:
            raise ExternalProvisioningError(
                f"Failed to get existing database: {response.status_code} {response.text}",
                "get_database",
                response.status_code,
            )
        return DatabaseLocation.from_hostname(name, self._hostname(response, "get_database"))

    async def create_auth_token(self, database_name: str, read_only: bool = False) -> str:
        body: dict[str, Any] = {"permissions": {"read_attach": {"databases": ["*"]}}}
        if read_only:
            body["authorization"] = "read-only"

        response = await self._request(
            "create_auth_token",
            "POST",
            self._databases_path(database_name, "auth", "tokens"),
            json=body,
        )
        kind = "read-only" if read_only else "RW"
        if not response.is_success:
            raise ExternalProvisioningError(
                f"Failed to create {kind} token: {response.status_code} {response.text}",
                "create_auth_token",
                response.status_code,
            )
        token = response.json().get("jwt")
        if not token:
            raise ExternalProvisioningError(
                f"No {kind} token returned by the platform", "create_auth_token", response.status_code
            )
        return token

    async def close(self) -> None:
        await self._client.aclose()


class LocalPlatformClient:
    """Platform backend that creates SQLite files under a directory.

    The group is ignored. Tokens are random strings; SQLite files do not
    check them.
    """

    def __init__(self, data_dir: str) -> None:
        self.tenants_dir = Path(data_dir) / "tenants"

    def _location(self, name: str) -> DatabaseLocation:
        return DatabaseLocation(name=name, url=f"file:{self.tenants_dir / f'{name}.db'}")

    async def create_database(self, name: str, group: str) -> DatabaseLocation:
        path = self.tenants_dir / f"{name}.db"
        if path.exists():
            raise DatabaseConflictError(name)
        self.tenants_dir.mkdir(parents=True, exist_ok=True)
        path.touch()
        logger.info(f"Created local tenant database {name}")
        return self._location(name)

    async def get_database(self, name: str) -> DatabaseLocation:
        if not (self.tenants_dir / f"{name}.db").exists():
            raise ExternalProvisioningError(
                f"Failed to get existing database: {name} not found", "get_database", 404
            )
        return self._location(name)

    async def create_auth_token(self, database_name: str, read_only: bool = False) -> str:
        prefix = "ro" if read_only else "rw"
        return f"{prefix}_{secrets.token_urlsafe(24)}"

    async def close(self) -> None:
        """Nothing to release."""


def create_platform_client(config: ServerConfig) -> PlatformClient:
    """Create the platform client selected by configuration.

    Args:
        config: Server configuration

    Returns:
        PlatformClient for the configured backend

    Raises:
        ValueError: If the backend is not supported
    """
    backend = config.platform_backend

    if backend == PlatformBackend.TURSO:
        logger.info(f"Using Turso platform for organization {config.platform.org_name}")
        return TursoPlatformClient(config.platform)

    elif backend == PlatformBackend.LOCAL:
        logger.info(f"Using local platform under {config.storage.data_dir}")
        return LocalPlatformClient(config.storage.data_dir)

    else:
        raise ValueError(f"Unsupported platform backend: {backend}")
