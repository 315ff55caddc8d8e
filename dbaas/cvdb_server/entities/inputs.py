"""
Input models for entity writes.

Every create/update payload is parsed here before it reaches a store. This is
the single place where form-style input is normalised: empty strings on
nullable fields become None, tags default to empty lists, and dates are
checked for shape and order. Stores repeat only the date-order check,
after a patch has been merged into the stored record.

Invariants:
    - Patch models only report fields the caller actually sent
    - An explicit empty string on a nullable field clears it
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import Highlight, HighlightType, Job, Metric

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def check_date_order(start_date: str | None, end_date: str | None) -> None:
    """Reject an end date earlier than the start date.

    Raises:
        ValueError: If both dates are set and out of order
    """
    if start_date and end_date and start_date > end_date:
        raise ValueError("End date must be after start date")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


class _InputModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MetricInput(_InputModel):
    """A metric as submitted by a client."""

    label: str = Field(..., min_length=1)
    value: float
    unit: str = ""
    prefix: str | None = None
    description: str | None = None

    def to_metric(self) -> Metric:
        return Metric(
            label=self.label,
            value=self.value,
            unit=self.unit,
            prefix=self.prefix,
            description=self.description,
        )


class JobPatch(_InputModel):
    """Partial update of a job."""

    company: str | None = Field(None, min_length=1)
    role: str | None = Field(None, min_length=1)
    start_date: str | None = Field(None, pattern=DATE_PATTERN)
    end_date: str | None = Field(None, pattern=DATE_PATTERN)
    logo_url: str | None = None
    website: str | None = None

    @field_validator("end_date", "logo_url", "website", mode="before")
    @classmethod
    def _normalize_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @model_validator(mode="after")
    def _check_dates(self) -> JobPatch:
        check_date_order(self.start_date, self.end_date)
        return self

    def changes(self) -> dict[str, Any]:
        """Fields the caller sent, keyed by Job attribute name.

        Required fields sent as null keep their stored value.
        """
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None or name not in ("company", "role", "start_date")
        }


class JobInput(JobPatch):
    """A new job."""

    company: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    start_date: str = Field(..., pattern=DATE_PATTERN)

    def to_job(self, job_id: str, now: str) -> Job:
        return Job(
            id=job_id,
            company=self.company,
            role=self.role,
            start_date=self.start_date,
            end_date=self.end_date,
            logo_url=self.logo_url,
            website=self.website,
            created_at=now,
            updated_at=now,
        )


class HighlightPatch(_InputModel):
    """Partial update of a highlight."""

    job_id: str | None = None
    type: HighlightType | None = None
    title: str | None = Field(None, min_length=1)
    content: str | None = Field(None, min_length=1)
    start_date: str | None = Field(None, pattern=DATE_PATTERN)
    end_date: str | None = Field(None, pattern=DATE_PATTERN)
    domains: list[str] | None = None
    skills: list[str] | None = None
    keywords: list[str] | None = None
    metrics: list[MetricInput] | None = None
    is_hidden: bool | None = None

    @field_validator("job_id", "end_date", mode="before")
    @classmethod
    def _normalize_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @model_validator(mode="after")
    def _check_dates(self) -> HighlightPatch:
        check_date_order(self.start_date, self.end_date)
        return self

    def changes(self) -> dict[str, Any]:
        """Fields the caller sent, keyed by Highlight attribute name.

        Only job_id and end_date can be cleared; any other field sent as
        null keeps its stored value.
        """
        changes: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name not in ("job_id", "end_date"):
                continue
            if name == "type":
                value = value.value
            elif name == "metrics":
                value = [m.to_metric() for m in value]
            changes[name] = value
        return changes


class HighlightInput(HighlightPatch):
    """A new highlight."""

    type: HighlightType
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    start_date: str = Field(..., pattern=DATE_PATTERN)
    domains: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    metrics: list[MetricInput] = Field(default_factory=list)
    is_hidden: bool = False

    def to_highlight(self, highlight_id: str, now: str) -> Highlight:
        return Highlight(
            id=highlight_id,
            job_id=self.job_id,
            type=self.type.value,
            title=self.title,
            content=self.content,
            start_date=self.start_date,
            end_date=self.end_date,
            domains=list(self.domains),
            skills=list(self.skills),
            keywords=list(self.keywords),
            metrics=[m.to_metric() for m in self.metrics],
            is_hidden=self.is_hidden,
            created_at=now,
            updated_at=now,
        )


class ProfileInput(_InputModel):
    """Profile update."""

    full_name: str
