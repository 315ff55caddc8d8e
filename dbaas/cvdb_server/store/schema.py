"""
Tenant schema and shared SQL for entity stores.

Both the local session database and every provisioned tenant database carry
the same three tables. The DDL below is applied statement by statement, in
order, by the provisioning orchestrator and by the local store on first use.

Table schema:
    jobs:
        - id TEXT PRIMARY KEY
        - company, role, start_date TEXT NOT NULL
        - end_date, logo_url, website TEXT
        - created_at, updated_at TEXT NOT NULL (ISO-8601)

    highlights:
        - id TEXT PRIMARY KEY
        - job_id TEXT REFERENCES jobs(id) ON DELETE SET NULL
        - type, title, content, start_date TEXT NOT NULL
        - end_date TEXT
        - domains, skills, keywords, metrics TEXT (JSON arrays)
        - is_hidden INTEGER (0/1)
        - created_at, updated_at TEXT NOT NULL

    profile:
        - id TEXT PRIMARY KEY DEFAULT 'default'
        - full_name TEXT
        - updated_at TEXT NOT NULL

How to change safely:
    - Only append statements; provisioned databases never re-run old ones
    - Every statement must be idempotent (IF NOT EXISTS)
"""

from __future__ import annotations

import json
from typing import Any

from ..entities.models import PROFILE_ID, Highlight, Job

TENANT_SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY NOT NULL,
        company TEXT NOT NULL,
        role TEXT NOT NULL,
        start_date TEXT NOT NULL,
        end_date TEXT,
        logo_url TEXT,
        website TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS highlights (
        id TEXT PRIMARY KEY NOT NULL,
        job_id TEXT,
        type TEXT NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        start_date TEXT NOT NULL,
        end_date TEXT,
        domains TEXT DEFAULT '[]' NOT NULL,
        skills TEXT DEFAULT '[]' NOT NULL,
        keywords TEXT DEFAULT '[]' NOT NULL,
        metrics TEXT DEFAULT '[]' NOT NULL,
        is_hidden INTEGER DEFAULT 0 NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (job_id) REFERENCES jobs(id) ON UPDATE NO ACTION ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS profile (
        id TEXT PRIMARY KEY NOT NULL DEFAULT 'default',
        full_name TEXT DEFAULT '' NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_highlights_job ON highlights(job_id)",
    "CREATE INDEX IF NOT EXISTS idx_highlights_start ON highlights(start_date DESC)",
)

# --- Reads ---

SELECT_JOBS = "SELECT * FROM jobs ORDER BY start_date DESC"
SELECT_JOB = "SELECT * FROM jobs WHERE id = ?"
SELECT_JOBS_WITH_COUNTS = """
    SELECT jobs.*, COUNT(highlights.id) AS highlight_count
    FROM jobs LEFT JOIN highlights ON jobs.id = highlights.job_id
    GROUP BY jobs.id
    ORDER BY jobs.start_date DESC
"""
SELECT_HIGHLIGHTS = "SELECT * FROM highlights ORDER BY start_date DESC"
SELECT_HIGHLIGHT = "SELECT * FROM highlights WHERE id = ?"
SELECT_PROFILE = "SELECT * FROM profile WHERE id = ?"
COUNT_JOBS = "SELECT COUNT(*) AS n FROM jobs"
COUNT_HIGHLIGHTS = "SELECT COUNT(*) AS n FROM highlights"
COUNT_PROFILES = "SELECT COUNT(*) AS n FROM profile"

# --- Writes ---

INSERT_JOB = """
    INSERT INTO jobs (id, company, role, start_date, end_date, logo_url, website,
                      created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""
UPDATE_JOB = """
    UPDATE jobs SET company = ?, role = ?, start_date = ?, end_date = ?, logo_url = ?,
                    website = ?, updated_at = ?
    WHERE id = ?
"""
UPSERT_JOB = INSERT_JOB + """
    ON CONFLICT(id) DO UPDATE SET
        company = excluded.company,
        role = excluded.role,
        start_date = excluded.start_date,
        end_date = excluded.end_date,
        logo_url = excluded.logo_url,
        website = excluded.website,
        updated_at = ?
"""
DETACH_HIGHLIGHTS = "UPDATE highlights SET job_id = NULL WHERE job_id = ?"
DELETE_JOB = "DELETE FROM jobs WHERE id = ?"

INSERT_HIGHLIGHT = """
    INSERT INTO highlights (id, job_id, type, title, content, start_date, end_date,
                            domains, skills, keywords, metrics, is_hidden,
                            created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""
UPDATE_HIGHLIGHT = """
    UPDATE highlights SET job_id = ?, type = ?, title = ?, content = ?, start_date = ?,
                          end_date = ?, domains = ?, skills = ?, keywords = ?, metrics = ?,
                          is_hidden = ?, updated_at = ?
    WHERE id = ?
"""
UPSERT_HIGHLIGHT = INSERT_HIGHLIGHT + """
    ON CONFLICT(id) DO UPDATE SET
        job_id = excluded.job_id,
        type = excluded.type,
        title = excluded.title,
        content = excluded.content,
        start_date = excluded.start_date,
        end_date = excluded.end_date,
        domains = excluded.domains,
        skills = excluded.skills,
        keywords = excluded.keywords,
        metrics = excluded.metrics,
        is_hidden = excluded.is_hidden,
        updated_at = ?
"""
DELETE_HIGHLIGHT = "DELETE FROM highlights WHERE id = ?"

UPSERT_PROFILE = """
    INSERT INTO profile (id, full_name, updated_at) VALUES (?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET full_name = excluded.full_name, updated_at = excluded.updated_at
"""

CLEAR_HIGHLIGHTS = "DELETE FROM highlights"
CLEAR_JOBS = "DELETE FROM jobs"
CLEAR_PROFILE = "DELETE FROM profile"


def job_params(job: Job) -> tuple[Any, ...]:
    """Positional parameters for INSERT_JOB / UPSERT_JOB."""
    return (
        job.id,
        job.company,
        job.role,
        job.start_date,
        job.end_date,
        job.logo_url,
        job.website,
        job.created_at,
        job.updated_at,
    )


def job_update_params(job: Job) -> tuple[Any, ...]:
    return (
        job.company,
        job.role,
        job.start_date,
        job.end_date,
        job.logo_url,
        job.website,
        job.updated_at,
        job.id,
    )


def _encode_tags(highlight: Highlight) -> tuple[str, str, str, str]:
    return (
        json.dumps(highlight.domains),
        json.dumps(highlight.skills),
        json.dumps(highlight.keywords),
        json.dumps([m.to_dict() for m in highlight.metrics]),
    )


def highlight_params(highlight: Highlight) -> tuple[Any, ...]:
    """Positional parameters for INSERT_HIGHLIGHT / UPSERT_HIGHLIGHT."""
    return (
        highlight.id,
        highlight.job_id,
        highlight.type,
        highlight.title,
        highlight.content,
        highlight.start_date,
        highlight.end_date,
        *_encode_tags(highlight),
        int(highlight.is_hidden),
        highlight.created_at,
        highlight.updated_at,
    )


def highlight_update_params(highlight: Highlight) -> tuple[Any, ...]:
    return (
        highlight.job_id,
        highlight.type,
        highlight.title,
        highlight.content,
        highlight.start_date,
        highlight.end_date,
        *_encode_tags(highlight),
        int(highlight.is_hidden),
        highlight.updated_at,
        highlight.id,
    )


def profile_params(full_name: str, updated_at: str) -> tuple[Any, ...]:
    return (PROFILE_ID, full_name, updated_at)
