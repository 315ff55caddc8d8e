"""
cvdb Server - per-principal storage for career-history data.

This package implements the data-access and provisioning core of a
career-history application:
- Jobs, Highlights and a Profile as the core data model
- A local SQLite store scoped to one anonymous session
- A dedicated remote libSQL database per authenticated principal
- A control-plane registry tracking each tenant database

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌───────────────────┐
    │  Anonymous  │────▶│  LocalEntityStore │     │  Platform API     │
    │   session   │     │  (session SQLite) │     │ (Turso / local)   │
    └──────┬──────┘     └─────────┬────────┘     └─────────▲─────────┘
           │ sign-in              │ dump + clear           │
           ▼                      ▼                        │
    ┌─────────────────────────────────────┐     ┌──────────┴─────────┐
    │         MigrationWorkflow           │────▶│    Provisioning    │
    └──────────────────┬──────────────────┘     │    Orchestrator    │
                       │ upsert                 └──────────┬─────────┘
                       ▼                                   ▼
    ┌─────────────────────────────────────┐     ┌────────────────────┐
    │ ConnectionCache -> RemoteEntityStore│◀────│  TenantRegistry    │
    └─────────────────────────────────────┘     │  (control plane)   │
                                                └────────────────────┘

Invariants:
    - At most one tenant database record per principal
    - Registry status only moves forward; failed records are restarted
    - Local data is cleared only after a fully successful migration
    - Both stores expose the same EntityStore contract

How to change safely:
    - Schema changes must be additive; provisioned databases are never rebuilt
    - New store operations must be added to EntityStore and both implementations
    - Provisioning steps must stay idempotent under restart

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
