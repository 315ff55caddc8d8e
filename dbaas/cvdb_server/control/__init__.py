"""
Control plane for cvdb.

This package contains:
- TenantRegistry: principal -> tenant database records and their status
- PlatformClient backends that create databases and issue credentials
- ProvisioningOrchestrator: the provisioning saga
- ConnectionCache: open remote stores per principal
"""

from .connections import ConnectionCache
from .platform import (
    DatabaseLocation,
    LocalPlatformClient,
    PlatformClient,
    TursoPlatformClient,
    create_platform_client,
    database_name_for,
)
from .provisioning import ProvisioningOrchestrator, ProvisioningStep
from .registry import ALLOWED_TRANSITIONS, TenantDatabaseRecord, TenantRegistry, TenantStatus

__all__ = [
    "TenantRegistry",
    "TenantDatabaseRecord",
    "TenantStatus",
    "ALLOWED_TRANSITIONS",
    "PlatformClient",
    "TursoPlatformClient",
    "LocalPlatformClient",
    "DatabaseLocation",
    "create_platform_client",
    "database_name_for",
    "ProvisioningOrchestrator",
    "ProvisioningStep",
    "ConnectionCache",
]
