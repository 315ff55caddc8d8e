"""
Entity model for cvdb.

This module defines the career-history records shared by every store:
- Job, Highlight, Metric and Profile records
- Composite read models (jobs with highlights, highlights with jobs)
- Search filters and the predicates that implement them
- Input models that normalise client payloads before they reach a store

Invariants:
    - Records are plain dataclasses, independent of the storage medium
    - Input normalisation happens once, in inputs.py
"""

from .filters import apply_filters, build_predicates
from .inputs import HighlightInput, HighlightPatch, JobInput, JobPatch, MetricInput, ProfileInput
from .models import (
    BACKUP_VERSION,
    PROFILE_ID,
    BackupData,
    ClearResult,
    Highlight,
    HighlightType,
    HighlightWithJob,
    ImportResult,
    Job,
    JobWithFilteredHighlights,
    JobWithHighlightCount,
    JobWithHighlights,
    LocalDump,
    Metric,
    Profile,
    SearchFilters,
    utc_now,
)

__all__ = [
    # Records
    "Job",
    "Highlight",
    "HighlightType",
    "Metric",
    "Profile",
    # Read models
    "JobWithHighlightCount",
    "JobWithHighlights",
    "JobWithFilteredHighlights",
    "HighlightWithJob",
    # Snapshots
    "BackupData",
    "LocalDump",
    "ImportResult",
    "ClearResult",
    "BACKUP_VERSION",
    "PROFILE_ID",
    # Search
    "SearchFilters",
    "apply_filters",
    "build_predicates",
    # Inputs
    "JobInput",
    "JobPatch",
    "HighlightInput",
    "HighlightPatch",
    "MetricInput",
    "ProfileInput",
    "utc_now",
]
