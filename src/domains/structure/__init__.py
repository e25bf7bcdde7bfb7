# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structure domain package.

This package owns the shape of every branch schema:
- Versioned system table definitions (catalog)
- Additive/destructive diff between versions
- Idempotent DDL application
- Version-by-version structure migration
"""

from src.domains.structure.catalog import (
    CURRENT_STRUCTURE_VERSION,
    StructureCatalog,
    StructureConfigurationError,
    get_structure_catalog,
    override_structure_catalog,
)
from src.domains.structure.ddl import DDLApplyError, DestructiveChangeError, SystemTableDDL
from src.domains.structure.diff import (
    ChangeType,
    StructureChange,
    StructureDiff,
    calculate_structure_diff,
)
from src.domains.structure.migrator import StructureMigrationResult, StructureMigrator

__all__ = [
    # Catalog
    "CURRENT_STRUCTURE_VERSION",
    "StructureCatalog",
    "StructureConfigurationError",
    "get_structure_catalog",
    "override_structure_catalog",
    # Diff
    "ChangeType",
    "StructureChange",
    "StructureDiff",
    "calculate_structure_diff",
    # DDL
    "SystemTableDDL",
    "DDLApplyError",
    "DestructiveChangeError",
    # Migrator
    "StructureMigrator",
    "StructureMigrationResult",
]
