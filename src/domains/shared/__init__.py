# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared domain building blocks."""

from src.domains.shared.errors import (
    BranchNotFoundError,
    MetahubDomainError,
    MetahubNotFoundError,
    MigrationApplyLockTimeoutError,
    MigrationBlockedError,
    MigrationRequiredError,
    PoolExhaustedError,
    SchemaLockTimeoutError,
    StructureMigrationFailedError,
    TemplateSyncNotConfirmedError,
    TemplateVersionInvalidError,
    translate_pool_errors,
)

__all__ = [
    "MetahubDomainError",
    "MigrationRequiredError",
    "PoolExhaustedError",
    "SchemaLockTimeoutError",
    "MigrationApplyLockTimeoutError",
    "MigrationBlockedError",
    "TemplateSyncNotConfirmedError",
    "MetahubNotFoundError",
    "BranchNotFoundError",
    "TemplateVersionInvalidError",
    "StructureMigrationFailedError",
    "translate_pool_errors",
]
