# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Metahub migrations domain package.

This package ties structure and template migrations to platform records:
- Platform state store (metahubs, branches, template versions)
- Branch schema lifecycle (initialize, migrate, seed sync)
- Plan/status/apply orchestration with per-branch locking
"""

from src.domains.migrations.orchestrator import MetahubMigrationService, apply_lock_name
from src.domains.migrations.schema_service import (
    EnsureSchemaMode,
    MetahubSchemaService,
    SchemaInitResult,
    SeedSyncResult,
    schema_lock_name,
)
from src.domains.migrations.state_store import (
    BranchRecord,
    MetahubRecord,
    PlatformStateStore,
    SqlAlchemyPlatformStateStore,
    TemplateVersionRecord,
)

__all__ = [
    # Orchestration
    "MetahubMigrationService",
    "apply_lock_name",
    # Schema lifecycle
    "EnsureSchemaMode",
    "MetahubSchemaService",
    "SchemaInitResult",
    "SeedSyncResult",
    "schema_lock_name",
    # Platform state
    "BranchRecord",
    "MetahubRecord",
    "PlatformStateStore",
    "SqlAlchemyPlatformStateStore",
    "TemplateVersionRecord",
]
