"""
cvdb Server - component wiring.

Server owns every long-lived component:
- TenantRegistry (control-plane SQLite)
- PlatformClient (Turso or local)
- ProvisioningOrchestrator
- ConnectionCache
- one LocalEntityStore and one MigrationWorkflow per anonymous session

The HTTP gateway holds a Server in its app state and resolves stores and
workflows through it.

Invariants:
    - Components are built in start() and released in stop()
    - Per-session stores and workflows live in LRU maps bounded by
      StorageConfig.max_sessions
    - A session whose migration is done is released and remembered by id only
      (in a map with the same bound), so it does not migrate twice

How to change safely:
    - Inject fakes (platform, connect) through the constructor in tests
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any

from .config import ServerConfig
from .control.connections import ConnectionCache
from .control.platform import PlatformClient, create_platform_client
from .control.provisioning import ProvisioningOrchestrator
from .control.registry import TenantRegistry
from .errors import NotAuthenticatedError
from .migration.workflow import MigrationResult, MigrationStep, MigrationWorkflow
from .session import mode_for, open_entity_store
from .store.base import EntityStore
from .store.connection import ConnectionFactory, open_tenant_connection
from .store.local_store import LocalEntityStore

logger = logging.getLogger(__name__)


class Server:
    """cvdb component container.

    Attributes:
        config: Server configuration
        registry: Control-plane registry
        platform: Platform client
        orchestrator: Provisioning orchestrator
        connections: Remote store cache

    Example:
        >>> server = Server(ServerConfig.from_env())
        >>> await server.start()
        >>> store = await server.store_for(session_id="s_1", principal_id=None)
        >>> await server.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        platform: PlatformClient | None = None,
        connect: ConnectionFactory = open_tenant_connection,
    ) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            platform: Optional platform client (built from config if not provided)
            connect: Tenant connection factory
        """
        self.config = config or ServerConfig.from_env()
        self.connect = connect
        self._platform_override = platform

        self.registry: TenantRegistry | None = None
        self.platform: PlatformClient | None = None
        self.orchestrator: ProvisioningOrchestrator | None = None
        self.connections: ConnectionCache | None = None

        self._local_stores: OrderedDict[str, LocalEntityStore] = OrderedDict()
        self._workflows: OrderedDict[str, MigrationWorkflow] = OrderedDict()
        self._migrated: OrderedDict[str, None] = OrderedDict()
        self._running = False

    @property
    def local_dir(self) -> Path:
        return Path(self.config.storage.data_dir) / "local"

    async def start(self) -> None:
        """Build every component."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting cvdb server")
        self.config.log_config()

        try:
            data_dir = Path(self.config.storage.data_dir)
            data_dir.mkdir(parents=True, exist_ok=True)
            self.local_dir.mkdir(parents=True, exist_ok=True)

            self.registry = await TenantRegistry(
                data_dir=str(data_dir),
                db_name=self.config.storage.control_db_name,
                wal_mode=self.config.storage.wal_mode,
                busy_timeout_ms=self.config.storage.busy_timeout_ms,
            ).initialize()

            self.platform = self._platform_override or create_platform_client(self.config)

            self.orchestrator = ProvisioningOrchestrator(
                registry=self.registry,
                platform=self.platform,
                connect=self.connect,
                group_name=self.config.platform.group_name,
                db_name_prefix=self.config.platform.db_name_prefix,
            )

            self.connections = ConnectionCache(
                registry=self.registry,
                connect=self.connect,
                ttl_seconds=self.config.connections.ttl_seconds,
                retire_grace_seconds=self.config.connections.retire_grace_seconds,
            )

            self._running = True
            logger.info("cvdb server started successfully")

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Release every component."""
        if self.connections:
            await self.connections.close()

        if self.platform:
            await self.platform.close()

        self._local_stores.clear()
        self._workflows.clear()
        self._migrated.clear()
        self._running = False
        logger.info("cvdb server stopped")

    def _remember(self, entries: OrderedDict[str, Any], session_id: str, value: Any) -> None:
        entries[session_id] = value
        entries.move_to_end(session_id)
        while len(entries) > self.config.storage.max_sessions:
            evicted, _ = entries.popitem(last=False)
            logger.debug(f"Evicted idle session {evicted}")

    def _new_local_store(self, session_id: str) -> LocalEntityStore:
        return LocalEntityStore(
            data_dir=str(self.local_dir),
            session_id=session_id,
            db_pattern=self.config.storage.local_db_pattern,
            wal_mode=self.config.storage.wal_mode,
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
        )

    @property
    def sessions(self) -> list[str]:
        """Session ids held in memory, least recently used first."""
        return list(self._local_stores)

    def local_store(self, session_id: str) -> LocalEntityStore:
        """The local store of an anonymous session."""
        store = self._local_stores.get(session_id)
        if store is None:
            store = self._new_local_store(session_id)
        self._remember(self._local_stores, session_id, store)
        return store

    def workflow(self, session_id: str) -> MigrationWorkflow:
        """The migration workflow of a session.

        A session that already finished migrating gets a workflow in DONE that
        is not kept.
        """
        if session_id in self._migrated:
            return MigrationWorkflow(
                orchestrator=self.orchestrator,
                connections=self.connections,
                local_store=self._new_local_store(session_id),
                completed=True,
            )
        workflow = self._workflows.get(session_id)
        if workflow is None:
            workflow = MigrationWorkflow(
                orchestrator=self.orchestrator,
                connections=self.connections,
                local_store=self.local_store(session_id),
            )
        self._remember(self._workflows, session_id, workflow)
        return workflow

    async def migrate(
        self, session_id: str, principal_id: str
    ) -> tuple[MigrationWorkflow, MigrationResult | None]:
        """Run the session's migration, releasing the session once it is done."""
        workflow = self.workflow(session_id)
        result = await workflow.run(principal_id)
        if workflow.step == MigrationStep.DONE:
            self._local_stores.pop(session_id, None)
            self._workflows.pop(session_id, None)
            self._remember(self._migrated, session_id, None)
        return workflow, result

    async def store_for(self, session_id: str | None, principal_id: str | None) -> EntityStore:
        """The store serving a request.

        Raises:
            NotAuthenticatedError: If there is neither a principal nor a session
        """
        if not principal_id and not session_id:
            raise NotAuthenticatedError("Request has neither a principal nor a session")
        mode = mode_for(principal_id)
        return await open_entity_store(
            mode,
            local_store=self.local_store(session_id) if session_id else None,
            connections=self.connections,
            principal_id=principal_id,
        )
