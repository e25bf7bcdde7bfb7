# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain errors of the metahub migration engine.

Every domain error carries a stable code and an HTTP-style status so a
route handler can surface it verbatim. ``retryable`` tells the caller
whether repeating the same request later can succeed.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from src.infrastructure.database.connection import is_pool_timeout_error


class MetahubDomainError(Exception):
    """Base exception for domain errors.

    Attributes:
        message: Human-readable error description.
        code: Stable machine-readable error code.
        status_code: HTTP-style status.
        retryable: Whether the same call may succeed later.
        details: Extra structured context.
    """

    code = "METAHUB_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serializable error body."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class MigrationRequiredError(MetahubDomainError):
    """The branch schema is behind and must be migrated before use."""

    code = "MIGRATION_REQUIRED"
    status_code = 428


class PoolExhaustedError(MetahubDomainError):
    """No database connection became available in time."""

    code = "CONNECTION_POOL_EXHAUSTED"
    status_code = 503
    retryable = True


class SchemaLockTimeoutError(MetahubDomainError):
    """Another process is initializing the same schema."""

    code = "SCHEMA_LOCK_TIMEOUT"
    status_code = 409
    retryable = True


class MigrationApplyLockTimeoutError(MetahubDomainError):
    """Another apply call holds the branch lock."""

    code = "MIGRATION_APPLY_LOCK_TIMEOUT"
    status_code = 409
    retryable = True


class MigrationBlockedError(MetahubDomainError):
    """Apply refused because the fresh plan has blockers."""

    code = "MIGRATION_BLOCKED"
    status_code = 422


class TemplateSyncNotConfirmedError(MetahubDomainError):
    """The branch does not show the expected template version after apply."""

    code = "TEMPLATE_SYNC_NOT_CONFIRMED"
    status_code = 409
    retryable = True


class MetahubNotFoundError(MetahubDomainError):
    code = "METAHUB_NOT_FOUND"
    status_code = 404


class BranchNotFoundError(MetahubDomainError):
    code = "BRANCH_NOT_FOUND"
    status_code = 404


class TemplateVersionInvalidError(MetahubDomainError):
    """The requested template version does not belong to the metahub's template."""

    code = "TEMPLATE_VERSION_INVALID"
    status_code = 422


class StructureMigrationFailedError(MetahubDomainError):
    """A structure version step failed and was rolled back."""

    code = "STRUCTURE_MIGRATION_FAILED"
    status_code = 500


@asynccontextmanager
async def translate_pool_errors(action: str) -> AsyncIterator[None]:
    """Re-raise connection-pool timeouts as PoolExhaustedError.

    Args:
        action: What was being attempted, for the error message.
    """
    try:
        yield
    except MetahubDomainError:
        raise
    except Exception as e:
        if is_pool_timeout_error(e):
            raise PoolExhaustedError(
                f"{action} failed: database connection pool exhausted",
                details={"action": action},
            ) from e
        raise
