"""
Entity store contract for cvdb.

EntityStore defines every read and write the application performs on
career-history data. Two implementations exist:
- LocalEntityStore: a SQLite file scoped to one anonymous session
- RemoteEntityStore: a dedicated remote database owned by one principal

Both speak the same SQL dialect against the same tenant schema, so the
contract is implemented once here on top of three storage primitives
(_query, _execute, _execute_atomic). Subclasses only decide how statements
reach the storage medium.

Invariants:
    - Deleting a job detaches its highlights in the same atomic unit
    - Bulk import never aborts on a single bad record
    - upsert_* keeps the record id and advances updated_at on overwrite
    - Search only covers highlights that are not hidden

How to change safely:
    - New operations go here, not in the subclasses
    - Keep SQL in schema.py so both stores stay in step
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from ..entities.filters import apply_filters
from ..entities.inputs import (
    HighlightInput,
    HighlightPatch,
    JobInput,
    JobPatch,
    check_date_order,
)
from ..entities.models import (
    BACKUP_VERSION,
    PROFILE_ID,
    BackupData,
    ClearResult,
    Highlight,
    HighlightWithJob,
    ImportResult,
    Job,
    JobWithFilteredHighlights,
    JobWithHighlightCount,
    JobWithHighlights,
    LocalDump,
    Profile,
    SearchFilters,
    utc_now,
)
from ..errors import ImportFailure, NotFoundError
from . import schema

logger = logging.getLogger(__name__)

Statement = tuple[str, Sequence[Any]]


class StoreMode(Enum):
    """Which kind of store backs a session."""

    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class EntityStore(ABC):
    """Career-history store for a single scope (session or principal).

    Attributes:
        mode: ANONYMOUS for local stores, AUTHENTICATED for remote ones
        scope: Session id or principal id the data belongs to
    """

    mode: StoreMode

    def __init__(self, scope: str) -> None:
        self.scope = scope

    # --- Storage primitives ---

    @abstractmethod
    async def _query(self, sql: str, params: Sequence[Any] = ()) -> list[Mapping[str, Any]]:
        """Run a read statement and return its rows."""

    @abstractmethod
    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""

    @abstractmethod
    async def _execute_atomic(self, statements: Sequence[Statement]) -> list[int]:
        """Run several write statements as one unit; all or nothing."""

    async def close(self) -> None:
        """Release storage resources."""

    # --- Jobs ---

    async def get_job(self, job_id: str) -> Job | None:
        rows = await self._query(schema.SELECT_JOB, (job_id,))
        return Job.from_row(rows[0]) if rows else None

    async def _require_job(self, job_id: str) -> Job:
        job = await self.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}", "job", job_id)
        return job

    async def create_job(self, data: JobInput) -> Job:
        job = data.to_job(str(uuid.uuid4()), utc_now())
        await self._execute(schema.INSERT_JOB, schema.job_params(job))
        logger.debug(f"Created job {job.id} in {self.mode.value} store")
        return job

    async def update_job(self, job_id: str, patch: JobPatch) -> Job:
        existing = await self._require_job(job_id)
        updated = dataclasses.replace(existing, **patch.changes(), updated_at=utc_now())
        check_date_order(updated.start_date, updated.end_date)
        await self._execute(schema.UPDATE_JOB, schema.job_update_params(updated))
        return updated

    async def delete_job(self, job_id: str) -> Job:
        """Delete a job, keeping its highlights as orphans."""
        existing = await self._require_job(job_id)
        await self._execute_atomic(
            [
                (schema.DETACH_HIGHLIGHTS, (job_id,)),
                (schema.DELETE_JOB, (job_id,)),
            ]
        )
        return existing

    async def list_jobs_with_highlight_counts(self) -> list[JobWithHighlightCount]:
        rows = await self._query(schema.SELECT_JOBS_WITH_COUNTS)
        return [
            JobWithHighlightCount(job=Job.from_row(row), highlight_count=int(row["highlight_count"]))
            for row in rows
        ]

    async def list_jobs_with_visible_highlights(self) -> list[JobWithHighlights]:
        jobs = await self._fetch_jobs()
        by_job: dict[str, list[Highlight]] = {}
        for h in await self._fetch_highlights():
            if h.job_id and not h.is_hidden:
                by_job.setdefault(h.job_id, []).append(h)
        return [JobWithHighlights(job=j, highlights=by_job.get(j.id, [])) for j in jobs]

    # --- Highlights ---

    async def get_highlight(self, highlight_id: str) -> Highlight | None:
        rows = await self._query(schema.SELECT_HIGHLIGHT, (highlight_id,))
        return Highlight.from_row(rows[0]) if rows else None

    async def _require_highlight(self, highlight_id: str) -> Highlight:
        highlight = await self.get_highlight(highlight_id)
        if highlight is None:
            raise NotFoundError(f"Highlight not found: {highlight_id}", "highlight", highlight_id)
        return highlight

    async def list_highlights(
        self,
        job_id: str | None = None,
        type: str | None = None,
        is_hidden: bool | None = None,
    ) -> list[Highlight]:
        """List highlights newest first, optionally narrowed."""
        result = await self._fetch_highlights()
        if job_id:
            result = [h for h in result if h.job_id == job_id]
        if type:
            result = [h for h in result if h.type == type]
        if is_hidden is not None:
            result = [h for h in result if h.is_hidden == is_hidden]
        return result

    async def create_highlight(self, data: HighlightInput) -> Highlight:
        highlight = data.to_highlight(str(uuid.uuid4()), utc_now())
        await self._execute(schema.INSERT_HIGHLIGHT, schema.highlight_params(highlight))
        return highlight

    async def update_highlight(self, highlight_id: str, patch: HighlightPatch) -> Highlight:
        existing = await self._require_highlight(highlight_id)
        updated = dataclasses.replace(existing, **patch.changes(), updated_at=utc_now())
        check_date_order(updated.start_date, updated.end_date)
        await self._execute(schema.UPDATE_HIGHLIGHT, schema.highlight_update_params(updated))
        return updated

    async def delete_highlight(self, highlight_id: str) -> Highlight:
        existing = await self._require_highlight(highlight_id)
        await self._execute(schema.DELETE_HIGHLIGHT, (highlight_id,))
        return existing

    async def toggle_visibility(self, highlight_id: str) -> Highlight:
        existing = await self._require_highlight(highlight_id)
        updated = dataclasses.replace(
            existing, is_hidden=not existing.is_hidden, updated_at=utc_now()
        )
        await self._execute(schema.UPDATE_HIGHLIGHT, schema.highlight_update_params(updated))
        return updated

    async def bulk_delete_highlights(self, highlight_ids: Sequence[str]) -> int:
        if not highlight_ids:
            return 0
        placeholders = ", ".join("?" for _ in highlight_ids)
        return await self._execute(
            f"DELETE FROM highlights WHERE id IN ({placeholders})", tuple(highlight_ids)
        )

    async def list_highlights_with_jobs(self) -> list[HighlightWithJob]:
        """Visible highlights, newest first, each joined with its job."""
        jobs = {j.id: j for j in await self._fetch_jobs()}
        return [
            HighlightWithJob(highlight=h, job=jobs.get(h.job_id) if h.job_id else None)
            for h in await self._fetch_highlights()
            if not h.is_hidden
        ]

    # --- Search ---

    async def search(self, filters: SearchFilters | None = None) -> list[HighlightWithJob]:
        """Visible highlights accepted by every active filter."""
        items = await self.list_highlights_with_jobs()
        accepted = {h.id for h in apply_filters((i.highlight for i in items), filters or SearchFilters())}
        return [i for i in items if i.highlight.id in accepted]

    async def search_jobs_with_highlights(
        self, filters: SearchFilters | None = None
    ) -> list[JobWithFilteredHighlights]:
        """Every job with its matching highlights and its visible highlight total."""
        jobs = await self._fetch_jobs()
        visible = [h for h in await self._fetch_highlights() if not h.is_hidden]

        counts: dict[str, int] = {}
        for h in visible:
            if h.job_id:
                counts[h.job_id] = counts.get(h.job_id, 0) + 1

        matched: dict[str, list[Highlight]] = {}
        for h in apply_filters(visible, filters or SearchFilters()):
            if h.job_id:
                matched.setdefault(h.job_id, []).append(h)

        return [
            JobWithFilteredHighlights(
                job=j,
                highlights=matched.get(j.id, []),
                all_highlights_count=counts.get(j.id, 0),
            )
            for j in jobs
        ]

    async def all_domains(self) -> list[str]:
        tags = {d for h in await self._fetch_highlights() if not h.is_hidden for d in h.domains}
        return sorted(tags)

    async def all_skills(self) -> list[str]:
        tags = {s for h in await self._fetch_highlights() if not h.is_hidden for s in h.skills}
        return sorted(tags)

    # --- Profile ---

    async def get_profile(self) -> Profile | None:
        rows = await self._query(schema.SELECT_PROFILE, (PROFILE_ID,))
        if not rows:
            return None
        return Profile(full_name=rows[0]["full_name"], updated_at=rows[0]["updated_at"])

    async def update_profile(self, full_name: str) -> Profile:
        return await self.upsert_profile(Profile(full_name=full_name))

    # --- Upserts ---

    async def upsert_job(self, job: Job) -> None:
        """Insert a job or overwrite the stored one with the same id."""
        await self._execute(schema.UPSERT_JOB, (*schema.job_params(job), utc_now()))

    async def upsert_highlight(self, highlight: Highlight) -> None:
        """Insert a highlight or overwrite the stored one with the same id."""
        await self._execute(
            schema.UPSERT_HIGHLIGHT, (*schema.highlight_params(highlight), utc_now())
        )

    async def upsert_profile(self, profile: Profile) -> Profile:
        stored = Profile(full_name=profile.full_name, updated_at=utc_now())
        await self._execute(
            schema.UPSERT_PROFILE, schema.profile_params(stored.full_name, stored.updated_at)
        )
        return stored

    # --- Snapshots ---

    async def dump(self) -> LocalDump:
        """Everything in the store, unordered and unfiltered."""
        return LocalDump(
            jobs=[Job.from_row(r) for r in await self._query("SELECT * FROM jobs")],
            highlights=[Highlight.from_row(r) for r in await self._query("SELECT * FROM highlights")],
            profile=await self._nonempty_profile(),
        )

    async def export_all(self) -> BackupData:
        jobs = [Job.from_row(r) for r in await self._query("SELECT * FROM jobs ORDER BY start_date")]
        highlights = [
            Highlight.from_row(r)
            for r in await self._query("SELECT * FROM highlights ORDER BY start_date")
        ]
        return BackupData(
            version=BACKUP_VERSION,
            exported_at=utc_now(),
            jobs=jobs,
            highlights=highlights,
            profile=await self._nonempty_profile(),
        )

    async def import_all(self, snapshot: BackupData) -> ImportResult:
        """Upsert every record of a snapshot, collecting per-record failures.

        Records the snapshot could not parse are reported first.
        """
        result = ImportResult(errors=list(snapshot.rejected))

        for job in snapshot.jobs:
            try:
                await self.upsert_job(job)
                result.jobs_imported += 1
            except Exception as e:
                result.errors.append(str(ImportFailure("job", job.id, str(e))))

        for highlight in snapshot.highlights:
            try:
                await self.upsert_highlight(highlight)
                result.highlights_imported += 1
            except Exception as e:
                result.errors.append(str(ImportFailure("highlight", highlight.id, str(e))))

        if snapshot.profile is not None:
            try:
                await self.upsert_profile(snapshot.profile)
            except Exception as e:
                result.errors.append(str(ImportFailure("profile", PROFILE_ID, str(e))))

        result.success = not result.errors
        if result.errors:
            logger.warning(
                f"Import into {self.mode.value} store finished with {len(result.errors)} errors"
            )
        return result

    async def clear_all(self) -> ClearResult:
        """Delete every job, highlight and profile in this scope."""
        jobs = (await self._query(schema.COUNT_JOBS))[0]["n"]
        highlights = (await self._query(schema.COUNT_HIGHLIGHTS))[0]["n"]
        profiles = (await self._query(schema.COUNT_PROFILES))[0]["n"]
        await self._execute_atomic(
            [
                (schema.CLEAR_HIGHLIGHTS, ()),
                (schema.CLEAR_JOBS, ()),
                (schema.CLEAR_PROFILE, ()),
            ]
        )
        logger.info(
            f"Cleared {self.mode.value} store {self.scope}",
            extra={"jobs_deleted": jobs, "highlights_deleted": highlights},
        )
        return ClearResult(
            jobs_deleted=int(jobs),
            highlights_deleted=int(highlights),
            profiles_deleted=int(profiles),
        )

    # --- Helpers ---

    async def _fetch_jobs(self) -> list[Job]:
        return [Job.from_row(r) for r in await self._query(schema.SELECT_JOBS)]

    async def _fetch_highlights(self) -> list[Highlight]:
        return [Highlight.from_row(r) for r in await self._query(schema.SELECT_HIGHLIGHTS)]

    async def _nonempty_profile(self) -> Profile | None:
        profile = await self.get_profile()
        return profile if profile and profile.full_name else None
