# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Templates domain package.

This package owns the bootstrap content of branch schemas:
- Template manifest models and validation
- Built-in templates
- First-time seeding of empty schemas
- Additive seed merge into populated schemas
- Safe cleanup of seed content a newer template drops
"""

from src.domains.templates.builtin import BUILTIN_TEMPLATES, get_builtin_manifest
from src.domains.templates.layout_config import build_dashboard_layout_config
from src.domains.templates.manifest import (
    TemplateManifest,
    TemplateManifestError,
    TemplateSeed,
    validate_template_manifest,
)
from src.domains.templates.seed_cleanup import (
    CleanupMode,
    CleanupSummary,
    TemplateCleanupResult,
    TemplateSeedCleanupService,
)
from src.domains.templates.seed_executor import TemplateSeedExecutor, schema_has_seed_data
from src.domains.templates.seed_migrator import (
    SeedHistoryContext,
    SeedMigrationResult,
    TemplateSeedMigrator,
)
from src.domains.templates.seed_rows import SeedCounts

__all__ = [
    # Manifests
    "TemplateManifest",
    "TemplateManifestError",
    "TemplateSeed",
    "validate_template_manifest",
    "BUILTIN_TEMPLATES",
    "get_builtin_manifest",
    "build_dashboard_layout_config",
    # Seeding
    "SeedCounts",
    "TemplateSeedExecutor",
    "schema_has_seed_data",
    "SeedHistoryContext",
    "SeedMigrationResult",
    "TemplateSeedMigrator",
    # Cleanup
    "CleanupMode",
    "CleanupSummary",
    "TemplateCleanupResult",
    "TemplateSeedCleanupService",
]
