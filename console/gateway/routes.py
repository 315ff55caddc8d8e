"""
API routes for the cvdb gateway.

Every entity route is served by exactly one EntityStore: the session's local
store for anonymous requests, the principal's remote store once signed in.
Session routes drive the one-time local -> remote migration, and tenant
routes expose provisioning status and the settings database info.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dbaas.cvdb_server.entities import (
    BackupData,
    HighlightInput,
    HighlightPatch,
    JobInput,
    JobPatch,
    ProfileInput,
    SearchFilters,
)
from dbaas.cvdb_server.errors import NotAuthenticatedError, NotFoundError
from dbaas.cvdb_server.server import Server
from dbaas.cvdb_server.store import EntityStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cvdb"])


# --- Request/Response Models ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchRequest(_CamelModel):
    """Highlight search filters."""

    query: str | None = Field(None, description="Substring of title or content")
    types: list[str] | None = Field(None, description="Highlight types, any of")
    domains: list[str] | None = Field(None, description="Domains, any of")
    skills: list[str] | None = Field(None, description="Skills, any of")
    only_with_metrics: bool = Field(False, description="Only highlights with metrics")

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            query=self.query,
            types=self.types,
            domains=self.domains,
            skills=self.skills,
            only_with_metrics=self.only_with_metrics,
        )


class BulkDeleteRequest(BaseModel):
    """Highlights to delete."""

    ids: list[str] = Field(..., description="Highlight IDs")


# --- Dependencies ---


def get_server(request: Request) -> Server:
    """Get the server from app state."""
    return request.app.state.server


def get_principal_id(request: Request) -> str | None:
    """Authenticated principal from the identity header, if any."""
    return request.headers.get(request.app.state.settings.principal_header) or None


def get_session_id(request: Request) -> str | None:
    """Anonymous session from the session header, if any."""
    return request.headers.get(request.app.state.settings.session_header) or None


def require_principal_id(principal_id: str | None = Depends(get_principal_id)) -> str:
    if not principal_id:
        raise NotAuthenticatedError()
    return principal_id


async def get_store(
    server: Server = Depends(get_server),
    principal_id: str | None = Depends(get_principal_id),
    session_id: str | None = Depends(get_session_id),
) -> EntityStore:
    """The store serving this request."""
    return await server.store_for(session_id=session_id, principal_id=principal_id)


def _not_found(kind: str, resource_id: str) -> NotFoundError:
    return NotFoundError(f"{kind.capitalize()} not found: {resource_id}", kind, resource_id)


# --- Job Routes ---


@router.get("/jobs")
async def list_jobs(store: EntityStore = Depends(get_store)):
    """
    List jobs with highlight counts.

    Jobs are ordered by start date, newest first.
    """
    return [j.to_dict() for j in await store.list_jobs_with_highlight_counts()]


@router.get("/jobs/with-highlights")
async def list_jobs_with_highlights(store: EntityStore = Depends(get_store)):
    """List jobs with their visible highlights."""
    return [j.to_dict() for j in await store.list_jobs_with_visible_highlights()]


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, store: EntityStore = Depends(get_store)):
    job = await store.get_job(job_id)
    if job is None:
        raise _not_found("job", job_id)
    return job.to_dict()


@router.post("/jobs", status_code=201)
async def create_job(request: JobInput, store: EntityStore = Depends(get_store)):
    job = await store.create_job(request)
    return job.to_dict()


@router.patch("/jobs/{job_id}")
async def update_job(job_id: str, request: JobPatch, store: EntityStore = Depends(get_store)):
    """
    Update a job.

    Only the fields present in the body change. An empty string clears a
    nullable field.
    """
    job = await store.update_job(job_id, request)
    return job.to_dict()


@router.delete("/jobs/{job_id}", status_code=204)
async def delete_job(job_id: str, store: EntityStore = Depends(get_store)):
    """
    Delete a job.

    Its highlights are kept and detached from the job.
    """
    await store.delete_job(job_id)


# --- Highlight Routes ---


@router.get("/highlights")
async def list_highlights(
    job_id: str | None = Query(None, alias="jobId", description="Filter by job"),
    type: str | None = Query(None, description="Filter by highlight type"),
    is_hidden: bool | None = Query(None, alias="isHidden", description="Filter by visibility"),
    store: EntityStore = Depends(get_store),
):
    highlights = await store.list_highlights(job_id=job_id, type=type, is_hidden=is_hidden)
    return [h.to_dict() for h in highlights]


@router.get("/highlights/with-jobs")
async def list_highlights_with_jobs(store: EntityStore = Depends(get_store)):
    """Visible highlights, each with its job."""
    return [h.to_dict() for h in await store.list_highlights_with_jobs()]


@router.post("/highlights/bulk-delete")
async def bulk_delete_highlights(
    request: BulkDeleteRequest, store: EntityStore = Depends(get_store)
):
    deleted = await store.bulk_delete_highlights(request.ids)
    return {"deleted": deleted}


@router.get("/highlights/{highlight_id}")
async def get_highlight(highlight_id: str, store: EntityStore = Depends(get_store)):
    highlight = await store.get_highlight(highlight_id)
    if highlight is None:
        raise _not_found("highlight", highlight_id)
    return highlight.to_dict()


@router.post("/highlights", status_code=201)
async def create_highlight(request: HighlightInput, store: EntityStore = Depends(get_store)):
    highlight = await store.create_highlight(request)
    return highlight.to_dict()


@router.patch("/highlights/{highlight_id}")
async def update_highlight(
    highlight_id: str, request: HighlightPatch, store: EntityStore = Depends(get_store)
):
    highlight = await store.update_highlight(highlight_id, request)
    return highlight.to_dict()


@router.delete("/highlights/{highlight_id}", status_code=204)
async def delete_highlight(highlight_id: str, store: EntityStore = Depends(get_store)):
    await store.delete_highlight(highlight_id)


@router.post("/highlights/{highlight_id}/toggle-visibility")
async def toggle_visibility(highlight_id: str, store: EntityStore = Depends(get_store)):
    highlight = await store.toggle_visibility(highlight_id)
    return highlight.to_dict()


# --- Search Routes ---


@router.post("/search")
async def search(request: SearchRequest, store: EntityStore = Depends(get_store)):
    """
    Search visible highlights.

    All filters combine with AND; list filters match on any shared value.
    """
    return [h.to_dict() for h in await store.search(request.to_filters())]


@router.post("/search/jobs")
async def search_jobs(request: SearchRequest, store: EntityStore = Depends(get_store)):
    """Every job with its matching highlights (unified feed)."""
    return [j.to_dict() for j in await store.search_jobs_with_highlights(request.to_filters())]


@router.get("/domains")
async def list_domains(store: EntityStore = Depends(get_store)):
    return await store.all_domains()


@router.get("/skills")
async def list_skills(store: EntityStore = Depends(get_store)):
    return await store.all_skills()


# --- Profile Routes ---


@router.get("/profile")
async def get_profile(store: EntityStore = Depends(get_store)):
    profile = await store.get_profile()
    return {"fullName": profile.full_name if profile else ""}


@router.put("/profile")
async def update_profile(request: ProfileInput, store: EntityStore = Depends(get_store)):
    profile = await store.update_profile(request.full_name)
    return profile.to_dict()


# --- Backup Routes ---


@router.get("/export")
async def export_all(store: EntityStore = Depends(get_store)):
    """Full snapshot of jobs, highlights and profile."""
    return (await store.export_all()).to_dict()


@router.post("/import")
async def import_all(request: dict[str, Any], store: EntityStore = Depends(get_store)):
    """
    Import a snapshot.

    Records are upserted by id. Records that fail are reported in the error
    list; the rest are still imported.
    """
    snapshot = BackupData.from_dict(request)
    result = await store.import_all(snapshot)
    return result.to_dict()


@router.post("/clear")
async def clear_all(store: EntityStore = Depends(get_store)):
    """Delete everything in the current scope. Irreversible."""
    return (await store.clear_all()).to_dict()


# --- Session Routes ---


@router.post("/session/migrate")
async def migrate_session(
    server: Server = Depends(get_server),
    principal_id: str = Depends(require_principal_id),
    session_id: str | None = Depends(get_session_id),
):
    """
    Move the session's local data into the principal's tenant database.

    Runs once per session. Provisions the tenant database first if needed.
    """
    if not session_id:
        raise ValueError("X-Session-ID is required to migrate a session")

    workflow, result = await server.migrate(session_id, principal_id)
    return {
        "step": workflow.step.value if workflow.step else None,
        "result": result.to_dict() if result else None,
    }


@router.get("/session/migration")
async def migration_state(
    server: Server = Depends(get_server),
    session_id: str | None = Depends(get_session_id),
):
    if not session_id:
        raise ValueError("X-Session-ID is required")
    workflow = server.workflow(session_id)
    return {
        "step": workflow.step.value if workflow.step else None,
        "error": workflow.error,
        "hasRun": workflow.has_run,
    }


@router.post("/session/migration/dismiss")
async def dismiss_migration(
    server: Server = Depends(get_server),
    session_id: str | None = Depends(get_session_id),
):
    """Clear a failed migration so it can run again."""
    if not session_id:
        raise ValueError("X-Session-ID is required")
    server.workflow(session_id).dismiss()
    return {"dismissed": True}


# --- Tenant Routes ---


@router.post("/tenant/provision")
async def provision_tenant(
    server: Server = Depends(get_server),
    principal_id: str = Depends(require_principal_id),
):
    """
    Provision the principal's tenant database.

    Returns immediately when it is already ready; restarts failed or
    interrupted provisioning from scratch.
    """
    record = await server.orchestrator.provision(principal_id)
    return record.to_info()


@router.get("/tenant/status")
async def tenant_status(
    server: Server = Depends(get_server),
    principal_id: str = Depends(require_principal_id),
):
    status = await server.orchestrator.status(principal_id)
    return {"status": status.value if status else None}


@router.get("/tenant/database")
async def tenant_database(
    server: Server = Depends(get_server),
    principal_id: str = Depends(require_principal_id),
):
    """Database URL and read-only credential for external tools."""
    return await server.orchestrator.database_info(principal_id)
