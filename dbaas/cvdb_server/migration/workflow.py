"""
Local-to-remote migration workflow for cvdb.

When an anonymous session signs in, the data it collected in its local store
moves into the principal's remote tenant database:

    1. CHECKING      read the principal's provisioning status
    2. PROVISIONING  provision the tenant database unless it is ready
    3. MIGRATING     dump the local store and upsert jobs, then highlights,
                     then the profile into the remote store; then clear the
                     local store
    4. DONE

Any failure aborts the run, leaves the step at ERROR with its message, and
propagates. The local store is cleared only after every upsert succeeded, so
a failed run never loses local data; the partially written remote data is
upsert-safe and a later run overwrites it.

Invariants:
    - One run per workflow instance until dismiss() re-arms it
    - Jobs are written before highlights so job references resolve
    - Local data is cleared iff the remote writes all succeeded

How to change safely:
    - Keep one workflow per client session; it is not shared across sessions
    - Two sessions of the same principal may race; upserts keep that safe
      but the local stores are cleared independently
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..control.connections import ConnectionCache
from ..control.provisioning import ProvisioningOrchestrator
from ..control.registry import TenantStatus
from ..entities.models import LocalDump
from ..store.local_store import LocalEntityStore

logger = logging.getLogger(__name__)


class MigrationStep(str, Enum):
    """Progress of a migration run."""

    CHECKING = "checking"
    PROVISIONING = "provisioning"
    MIGRATING = "migrating"
    DONE = "done"
    ERROR = "error"


@dataclass
class MigrationResult:
    """Outcome of a successful migration run.

    Attributes:
        principal_id: Principal the data moved to
        provisioned: Whether this run provisioned the tenant database
        jobs_migrated: Jobs written to the remote store
        highlights_migrated: Highlights written to the remote store
        profile_migrated: Whether a profile was written
    """

    principal_id: str
    provisioned: bool = False
    jobs_migrated: int = 0
    highlights_migrated: int = 0
    profile_migrated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "principalId": self.principal_id,
            "provisioned": self.provisioned,
            "jobsMigrated": self.jobs_migrated,
            "highlightsMigrated": self.highlights_migrated,
            "profileMigrated": self.profile_migrated,
        }


class MigrationWorkflow:
    """One-shot migration of a session's local data to its principal.

    Example:
        >>> workflow = MigrationWorkflow(orchestrator, connections, local_store)
        >>> result = await workflow.observe("user_42")
        >>> workflow.step
        <MigrationStep.DONE: 'done'>
    """

    def __init__(
        self,
        orchestrator: ProvisioningOrchestrator,
        connections: ConnectionCache,
        local_store: LocalEntityStore,
        completed: bool = False,
    ) -> None:
        """Initialize the workflow.

        Args:
            orchestrator: Provisioning orchestrator
            connections: Remote store cache
            local_store: The session's local store
            completed: Start in DONE, for a session that already migrated
        """
        self.orchestrator = orchestrator
        self.connections = connections
        self.local_store = local_store
        self._has_run = completed
        self._principal_id: str | None = None
        self._step: MigrationStep | None = MigrationStep.DONE if completed else None
        self._error: str | None = None

    @property
    def step(self) -> MigrationStep | None:
        """Current step, or None when idle."""
        return self._step

    @property
    def error(self) -> str | None:
        """Message of the failure that put the workflow in ERROR."""
        return self._error

    @property
    def has_run(self) -> bool:
        return self._has_run

    async def observe(self, principal_id: str | None) -> MigrationResult | None:
        """Track the session identity and run on the anonymous -> authenticated edge.

        Args:
            principal_id: Current principal, or None while anonymous

        Returns:
            MigrationResult when this call triggered a run, else None
        """
        previous, self._principal_id = self._principal_id, principal_id
        if previous is None and principal_id is not None:
            return await self.run(principal_id)
        return None

    async def run(self, principal_id: str) -> MigrationResult | None:
        """Provision if needed and move local data into the remote store.

        Returns:
            MigrationResult, or None if this workflow already ran

        Raises:
            Exception: Whatever aborted the run; the step is left at ERROR
        """
        if self._has_run:
            logger.debug(f"Migration for {principal_id} already ran in this session")
            return None
        self._has_run = True
        self._error = None

        result = MigrationResult(principal_id=principal_id)
        try:
            self._step = MigrationStep.CHECKING
            status = await self.orchestrator.status(principal_id)

            if status != TenantStatus.READY:
                self._step = MigrationStep.PROVISIONING
                await self.orchestrator.provision(principal_id)
                result.provisioned = True

            self._step = MigrationStep.MIGRATING
            dump = await self._local_dump()
            if not dump.is_empty:
                await self._copy(principal_id, dump, result)
                await self.local_store.clear_all()

            self._step = MigrationStep.DONE
        except Exception as e:
            self._step = MigrationStep.ERROR
            self._error = str(e) or type(e).__name__
            logger.error(
                f"Migration for {principal_id} failed: {self._error}",
                extra={"principal_id": principal_id, "session_id": self.local_store.session_id},
            )
            raise

        logger.info(
            f"Migrated local session {self.local_store.session_id} to {principal_id}",
            extra=result.to_dict(),
        )
        return result

    def dismiss(self) -> None:
        """Clear the error state and allow another run.

        The observed identity is forgotten too, so the next observe() of a
        signed-in principal triggers the retry.
        """
        self._step = None
        self._error = None
        self._has_run = False
        self._principal_id = None

    async def _local_dump(self) -> LocalDump:
        if not await self.local_store.exists():
            return LocalDump()
        return await self.local_store.dump()

    async def _copy(self, principal_id: str, dump: LocalDump, result: MigrationResult) -> None:
        remote = await self.connections.get(principal_id)

        for job in dump.jobs:
            await remote.upsert_job(job)
            result.jobs_migrated += 1

        for highlight in dump.highlights:
            await remote.upsert_highlight(highlight)
            result.highlights_migrated += 1

        if dump.profile is not None:
            await remote.upsert_profile(dump.profile)
            result.profile_migrated = True
