"""
Error types for cvdb.

This module defines all exception types raised by the server:
- CvDbError: Base exception
- NotAuthenticatedError: No principal available
- NotFoundError: Missing job, highlight or tenant record
- NotReadyError: Tenant database not yet provisioned
- ExternalProvisioningError: Platform API failure
- DatabaseConflictError: Platform reports the database already exists
- SchemaMigrationError: Tenant DDL failed
- ImportFailure: A single record could not be imported
- InvalidTransitionError: Illegal registry status change
- StorageError: A store statement failed, in either storage mode
- TenantConnectionError: Remote database transport or protocol failure
- LocalStorageError: Local session database failure

Invariants:
    - All errors inherit from CvDbError
    - Errors include context for debugging
    - Credentials never appear in messages or details
"""

from __future__ import annotations

from typing import Any


class CvDbError(Exception):
    """Base exception for all cvdb errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CVDB_ERROR"
        self.details = details or {}


class NotAuthenticatedError(CvDbError):
    """Operation requires a principal but the session is anonymous."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message, code="NOT_AUTHENTICATED")


class NotFoundError(CvDbError):
    """Resource not found.

    Raised when:
    - Job doesn't exist
    - Highlight doesn't exist
    - Principal has no tenant database record
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class NotReadyError(CvDbError):
    """Tenant database exists but is not in the ready state."""

    def __init__(self, principal_id: str, status: str | None) -> None:
        super().__init__(
            f"Tenant database for principal {principal_id} is not ready (status={status})",
            code="NOT_READY",
            details={"principal_id": principal_id, "status": status},
        )
        self.principal_id = principal_id
        self.status = status


class ExternalProvisioningError(CvDbError):
    """Platform API call failed.

    Raised when:
    - Database creation fails with anything other than a conflict
    - Looking up an existing database fails
    - Issuing an auth token fails
    """

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            message,
            code="PROVISIONING_FAILED",
            details={"operation": operation, "status_code": status_code},
        )
        self.operation = operation
        self.status_code = status_code


class DatabaseConflictError(ExternalProvisioningError):
    """Platform reports that the database name is already taken."""

    def __init__(self, database_name: str) -> None:
        super().__init__(
            f"Database already exists: {database_name}",
            operation="create_database",
            status_code=409,
        )
        self.code = "DATABASE_EXISTS"
        self.database_name = database_name


class SchemaMigrationError(CvDbError):
    """Applying the tenant schema failed."""

    def __init__(self, message: str, statement_index: int) -> None:
        super().__init__(
            message,
            code="SCHEMA_MIGRATION_FAILED",
            details={"statement_index": statement_index},
        )
        self.statement_index = statement_index


class ImportFailure(CvDbError):
    """A single record failed to import.

    Bulk import collects these as strings instead of raising them.
    """

    def __init__(self, record_type: str, record_id: str, reason: str) -> None:
        super().__init__(
            f"Failed to import {record_type} {record_id}: {reason}",
            code="IMPORT_FAILED",
            details={"record_type": record_type, "record_id": record_id},
        )
        self.record_type = record_type
        self.record_id = record_id


class InvalidTransitionError(CvDbError):
    """Registry status change is not allowed by the state machine."""

    def __init__(self, record_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move tenant record {record_id} from {current} to {target}",
            code="INVALID_TRANSITION",
            details={"record_id": record_id, "current": current, "target": target},
        )


class StorageError(CvDbError):
    """A statement against an entity store failed.

    Both storage modes raise a subclass, so callers handle one type.
    """


class TenantConnectionError(StorageError):
    """Remote tenant database request failed."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(
            message,
            code="TENANT_CONNECTION_ERROR",
            details={"url": url},
        )
        self.url = url


class LocalStorageError(StorageError):
    """Local session database statement failed."""

    def __init__(self, message: str, session_id: str) -> None:
        super().__init__(
            message,
            code="LOCAL_STORAGE_ERROR",
            details={"session_id": session_id},
        )
        self.session_id = session_id
