"""
Provisioning orchestrator for cvdb.

Creates, schema-initialises and activates a dedicated tenant database for a
principal. Provisioning spans an external platform, the control-plane
registry and the new database, so it cannot be one transaction. It runs as
a saga of named steps:

    LOOKUP            ready record -> return it, no platform calls
    DISCARD_STALE     any other record -> delete it
    CREATE_RECORD     insert a creating record with placeholders
    CREATE_DATABASE   platform create; conflict -> look up existing
    ISSUE_CREDENTIALS read-write and read-only tokens
    RECORD_LOCATION   store location and tokens, status -> migrating
    APPLY_SCHEMA      run the tenant DDL in order
    ACTIVATE          status -> ready

Invariants:
    - A ready record is returned unchanged with zero platform calls
    - A non-ready record is never resumed; it is discarded and restarted
    - Any failure from CREATE_DATABASE to APPLY_SCHEMA marks the record
      error and re-raises
    - CREATE_DATABASE tolerates "already exists", so restarts are safe

How to change safely:
    - Append DDL in store/schema.py; never edit statements already applied
    - Keep registry ALLOWED_TRANSITIONS in step with the saga
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from ..errors import CvDbError, DatabaseConflictError, NotFoundError, SchemaMigrationError
from ..store.connection import ConnectionFactory, open_tenant_connection
from ..store.schema import TENANT_SCHEMA_STATEMENTS
from .platform import PlatformClient, database_name_for
from .registry import TenantDatabaseRecord, TenantRegistry, TenantStatus

logger = logging.getLogger(__name__)


class ProvisioningStep(str, Enum):
    """Named steps of the provisioning saga."""

    LOOKUP = "lookup"
    DISCARD_STALE = "discard_stale"
    CREATE_RECORD = "create_record"
    CREATE_DATABASE = "create_database"
    ISSUE_CREDENTIALS = "issue_credentials"
    RECORD_LOCATION = "record_location"
    APPLY_SCHEMA = "apply_schema"
    ACTIVATE = "activate"


class ProvisioningOrchestrator:
    """Runs the provisioning saga for principals.

    Example:
        >>> orchestrator = ProvisioningOrchestrator(registry, LocalPlatformClient(data_dir))
        >>> record = await orchestrator.provision("user_42")
        >>> record.status
        <TenantStatus.READY: 'ready'>
    """

    def __init__(
        self,
        registry: TenantRegistry,
        platform: PlatformClient,
        connect: ConnectionFactory = open_tenant_connection,
        group_name: str = "default",
        db_name_prefix: str = "buildcv",
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Control-plane registry
            platform: Platform client that creates databases and tokens
            connect: Opens a connection to a new database for DDL
            group_name: Platform placement group
            db_name_prefix: Prefix of tenant database names
        """
        self.registry = registry
        self.platform = platform
        self.connect = connect
        self.group_name = group_name
        self.db_name_prefix = db_name_prefix

    @asynccontextmanager
    async def _step(self, step: ProvisioningStep, principal_id: str) -> AsyncIterator[None]:
        started = time.monotonic()
        logger.debug(f"Provisioning {principal_id}: {step.value} started")
        try:
            yield
        except Exception as e:
            logger.error(
                f"Provisioning {principal_id}: {step.value} failed: {e}",
                extra={"principal_id": principal_id, "step": step.value},
            )
            raise
        logger.debug(
            f"Provisioning {principal_id}: {step.value} done",
            extra={"step": step.value, "duration_ms": int((time.monotonic() - started) * 1000)},
        )

    async def provision(self, principal_id: str) -> TenantDatabaseRecord:
        """Ensure the principal has a ready tenant database.

        Args:
            principal_id: Authenticated principal

        Returns:
            The ready registry record

        Raises:
            ExternalProvisioningError: If a platform call fails
            SchemaMigrationError: If a DDL statement fails
        """
        async with self._step(ProvisioningStep.LOOKUP, principal_id):
            existing = await self.registry.get(principal_id)
        if existing is not None and existing.is_ready:
            return existing

        if existing is not None:
            async with self._step(ProvisioningStep.DISCARD_STALE, principal_id):
                logger.warning(
                    f"Discarding {existing.status.value} tenant record for {principal_id}",
                    extra={"record_id": existing.id},
                )
                await self.registry.delete(existing.id)

        async with self._step(ProvisioningStep.CREATE_RECORD, principal_id):
            record = await self.registry.insert_creating(principal_id)

        try:
            db_name = database_name_for(principal_id, self.db_name_prefix)

            async with self._step(ProvisioningStep.CREATE_DATABASE, principal_id):
                try:
                    location = await self.platform.create_database(db_name, self.group_name)
                except DatabaseConflictError:
                    logger.info(f"Database {db_name} already exists, reusing it")
                    location = await self.platform.get_database(db_name)

            async with self._step(ProvisioningStep.ISSUE_CREDENTIALS, principal_id):
                rw_credential = await self.platform.create_auth_token(location.name)
                ro_credential = await self.platform.create_auth_token(location.name, read_only=True)

            async with self._step(ProvisioningStep.RECORD_LOCATION, principal_id):
                record = await self.registry.record_location(
                    record.id, location.name, location.url, rw_credential, ro_credential
                )

            async with self._step(ProvisioningStep.APPLY_SCHEMA, principal_id):
                await self._apply_schema(record)

            async with self._step(ProvisioningStep.ACTIVATE, principal_id):
                record = await self.registry.set_status(record.id, TenantStatus.READY)

        except Exception:
            await self._mark_error(record)
            raise

        logger.info(
            f"Provisioned tenant database for {principal_id}",
            extra={"record_id": record.id, "db_name": record.db_name},
        )
        return record

    async def _apply_schema(self, record: TenantDatabaseRecord) -> None:
        connection = self.connect(record.db_url, record.rw_credential)
        try:
            for index, statement in enumerate(TENANT_SCHEMA_STATEMENTS):
                try:
                    await connection.execute(statement)
                except Exception as e:
                    raise SchemaMigrationError(
                        f"Schema statement {index} failed on {record.db_name}: {e}", index
                    ) from e
        finally:
            await connection.close()

    async def _mark_error(self, record: TenantDatabaseRecord) -> None:
        try:
            await self.registry.set_status(record.id, TenantStatus.ERROR)
        except CvDbError as e:
            logger.error(f"Could not mark tenant record {record.id} as error: {e}")

    async def status(self, principal_id: str) -> TenantStatus | None:
        """Current provisioning status, or None if never provisioned."""
        return await self.registry.get_status(principal_id)

    async def database_info(self, principal_id: str) -> dict[str, Any]:
        """Location, read-only credential and status for the settings surface.

        Raises:
            NotFoundError: If the principal has no tenant record
        """
        record = await self.registry.get(principal_id)
        if record is None:
            raise NotFoundError(
                f"No tenant database for principal {principal_id}", "tenant_database", principal_id
            )
        return record.to_info()
