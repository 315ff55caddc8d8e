"""
Entity types for career-history data.

Jobs are employment contexts, Highlights are atomic experience units that
optionally point at a Job, and the Profile holds the owner's display name.
The same shapes are stored by the local and the remote store.

Invariants:
    - Timestamps are ISO-8601 UTC strings with millisecond precision
    - Highlight.job_id is a soft reference; it may name no existing job
    - Wire dictionaries use camelCase keys so existing backups import unchanged

How to change safely:
    - New fields need a default so older backups still parse
    - Keep to_dict/from_dict symmetric
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import ImportFailure

PROFILE_ID = "default"
BACKUP_VERSION = "1.0"


class HighlightType(str, Enum):
    """Kinds of highlight."""

    ACHIEVEMENT = "achievement"
    PROJECT = "project"
    RESPONSIBILITY = "responsibility"
    EDUCATION = "education"


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _require(data: Mapping[str, Any], keys: list[str], kind: str) -> None:
    missing = [k for k in keys if k not in data]
    if missing:
        raise ValueError(f"{kind} is missing required fields: {missing}")


@dataclass
class Metric:
    """A quantified outcome attached to a highlight."""

    label: str
    value: float
    unit: str = ""
    prefix: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"label": self.label, "value": self.value, "unit": self.unit}
        if self.prefix is not None:
            data["prefix"] = self.prefix
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Metric:
        _require(data, ["label", "value"], "metric")
        return cls(
            label=data["label"],
            value=data["value"],
            unit=data.get("unit", ""),
            prefix=data.get("prefix"),
            description=data.get("description"),
        )


@dataclass
class Job:
    """An employment context.

    Attributes:
        id: Job identifier (UUID)
        company: Employer name
        role: Position held
        start_date: ISO date the job started
        end_date: ISO date the job ended, None if current
        logo_url: Optional company logo
        website: Optional company website
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    id: str
    company: str
    role: str
    start_date: str
    end_date: str | None = None
    logo_url: str | None = None
    website: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "company": self.company,
            "role": self.role,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "logoUrl": self.logo_url,
            "website": self.website,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Job:
        _require(data, ["id", "company", "role", "startDate"], "job")
        now = utc_now()
        return cls(
            id=data["id"],
            company=data["company"],
            role=data["role"],
            start_date=data["startDate"],
            end_date=data.get("endDate"),
            logo_url=data.get("logoUrl"),
            website=data.get("website"),
            created_at=data.get("createdAt") or now,
            updated_at=data.get("updatedAt") or now,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Job:
        return cls(
            id=row["id"],
            company=row["company"],
            role=row["role"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            logo_url=row["logo_url"],
            website=row["website"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Highlight:
    """An atomic experience unit.

    Attributes:
        id: Highlight identifier (UUID)
        job_id: Owning job, None for orphaned or standalone highlights
        type: One of HighlightType values
        title: Short headline
        content: Body text
        start_date: ISO date
        end_date: Optional ISO date
        domains: Industry/domain tags
        skills: Skill tags
        keywords: Free keywords
        metrics: Quantified outcomes
        is_hidden: Whether the highlight is hidden from feeds and search
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    id: str
    type: str
    title: str
    content: str
    start_date: str
    job_id: str | None = None
    end_date: str | None = None
    domains: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    metrics: list[Metric] = field(default_factory=list)
    is_hidden: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "jobId": self.job_id,
            "type": self.type,
            "title": self.title,
            "content": self.content,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "domains": list(self.domains),
            "skills": list(self.skills),
            "keywords": list(self.keywords),
            "metrics": [m.to_dict() for m in self.metrics],
            "isHidden": self.is_hidden,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Highlight:
        _require(data, ["id", "type", "title", "content", "startDate"], "highlight")
        if data["type"] not in {t.value for t in HighlightType}:
            raise ValueError(f"Invalid highlight type: {data['type']}")
        now = utc_now()
        return cls(
            id=data["id"],
            job_id=data.get("jobId"),
            type=data["type"],
            title=data["title"],
            content=data["content"],
            start_date=data["startDate"],
            end_date=data.get("endDate"),
            domains=list(data.get("domains") or []),
            skills=list(data.get("skills") or []),
            keywords=list(data.get("keywords") or []),
            metrics=[Metric.from_dict(m) for m in data.get("metrics") or []],
            is_hidden=bool(data.get("isHidden", False)),
            created_at=data.get("createdAt") or now,
            updated_at=data.get("updatedAt") or now,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Highlight:
        return cls(
            id=row["id"],
            job_id=row["job_id"],
            type=row["type"],
            title=row["title"],
            content=row["content"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            domains=json.loads(row["domains"] or "[]"),
            skills=json.loads(row["skills"] or "[]"),
            keywords=json.loads(row["keywords"] or "[]"),
            metrics=[Metric.from_dict(m) for m in json.loads(row["metrics"] or "[]")],
            is_hidden=bool(row["is_hidden"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Profile:
    """Owner profile (single row)."""

    full_name: str
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"fullName": self.full_name}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Profile:
        _require(data, ["fullName"], "profile")
        return cls(full_name=data["fullName"], updated_at=data.get("updatedAt") or utc_now())


@dataclass
class JobWithHighlightCount:
    """A job plus the number of highlights attached to it."""

    job: Job
    highlight_count: int

    def to_dict(self) -> dict[str, Any]:
        return {**self.job.to_dict(), "highlightCount": self.highlight_count}


@dataclass
class JobWithHighlights:
    """A job plus its highlights."""

    job: Job
    highlights: list[Highlight]

    def to_dict(self) -> dict[str, Any]:
        return {**self.job.to_dict(), "highlights": [h.to_dict() for h in self.highlights]}


@dataclass
class JobWithFilteredHighlights:
    """A job with the highlights matching a search, plus its visible total."""

    job: Job
    highlights: list[Highlight]
    all_highlights_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.job.to_dict(),
            "highlights": [h.to_dict() for h in self.highlights],
            "allHighlightsCount": self.all_highlights_count,
        }


@dataclass
class HighlightWithJob:
    """A highlight joined with its job, if any."""

    highlight: Highlight
    job: Job | None

    def to_dict(self) -> dict[str, Any]:
        return {**self.highlight.to_dict(), "job": self.job.to_dict() if self.job else None}


@dataclass
class SearchFilters:
    """Highlight search criteria. Empty or missing fields impose no constraint."""

    query: str | None = None
    types: list[str] | None = None
    domains: list[str] | None = None
    skills: list[str] | None = None
    only_with_metrics: bool = False


@dataclass
class LocalDump:
    """Raw contents of a store, used by migration."""

    jobs: list[Job] = field(default_factory=list)
    highlights: list[Highlight] = field(default_factory=list)
    profile: Profile | None = None

    @property
    def is_empty(self) -> bool:
        return not self.jobs and not self.highlights and self.profile is None


@dataclass
class BackupData:
    """Full snapshot of a store.

    Attributes:
        version: Backup format version
        exported_at: When the snapshot was taken
        jobs: All jobs
        highlights: All highlights
        profile: Profile, if one has been set
        rejected: Import failures for records that did not parse
    """

    version: str
    exported_at: str
    jobs: list[Job] = field(default_factory=list)
    highlights: list[Highlight] = field(default_factory=list)
    profile: Profile | None = None
    rejected: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "exportedAt": self.exported_at,
            "jobs": [j.to_dict() for j in self.jobs],
            "highlights": [h.to_dict() for h in self.highlights],
        }
        if self.profile is not None:
            data["profile"] = self.profile.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BackupData:
        """Parse a backup document.

        Records that fail to parse are left out and described in ``rejected``,
        so the rest of the document can still be imported.

        Raises:
            ValueError: If the document itself is malformed
        """
        _require(data, ["version", "jobs", "highlights"], "backup")
        if not isinstance(data["jobs"], list) or not isinstance(data["highlights"], list):
            raise ValueError("backup jobs and highlights must be lists")
        rejected: list[str] = []
        jobs = _parse_records(data["jobs"], Job.from_dict, "job", rejected)
        highlights = _parse_records(data["highlights"], Highlight.from_dict, "highlight", rejected)
        profile = None
        raw_profile = data.get("profile")
        if isinstance(raw_profile, Mapping) and raw_profile.get("fullName"):
            profile = Profile.from_dict(raw_profile)
        return cls(
            version=data["version"],
            exported_at=data.get("exportedAt") or utc_now(),
            jobs=jobs,
            highlights=highlights,
            profile=profile,
            rejected=rejected,
        )


def _parse_records(
    items: list[Any], parse: Callable[[Mapping[str, Any]], Any], kind: str, rejected: list[str]
) -> list[Any]:
    parsed = []
    for index, item in enumerate(items):
        try:
            if not isinstance(item, Mapping):
                raise ValueError(f"{kind} must be an object")
            parsed.append(parse(item))
        except (ValueError, TypeError, KeyError) as e:
            record_id = item.get("id") if isinstance(item, Mapping) else None
            rejected.append(str(ImportFailure(kind, str(record_id or f"#{index}"), str(e))))
    return parsed


@dataclass
class ImportResult:
    """Outcome of a bulk import."""

    success: bool = False
    jobs_imported: int = 0
    highlights_imported: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "jobsImported": self.jobs_imported,
            "highlightsImported": self.highlights_imported,
            "errors": list(self.errors),
        }


@dataclass
class ClearResult:
    """Counts removed by clear_all."""

    jobs_deleted: int
    highlights_deleted: int
    profiles_deleted: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobsDeleted": self.jobs_deleted,
            "highlightsDeleted": self.highlights_deleted,
            "profilesDeleted": self.profiles_deleted,
        }
