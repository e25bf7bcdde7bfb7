# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Migration history domain package.

This package describes the rows written to each branch's migration
history table and parses them back for listing.
"""

from src.domains.history.meta import (
    BaselineMeta,
    ManualDestructiveMeta,
    MigrationMeta,
    StructureMeta,
    TemplateSeedMeta,
    baseline_record,
    manual_destructive_record,
    parse_migration_meta,
    structure_record,
    template_seed_record,
    unique_migration_name,
)

__all__ = [
    "MigrationMeta",
    "BaselineMeta",
    "StructureMeta",
    "TemplateSeedMeta",
    "ManualDestructiveMeta",
    "parse_migration_meta",
    "baseline_record",
    "structure_record",
    "template_seed_record",
    "manual_destructive_record",
    "unique_migration_name",
]
