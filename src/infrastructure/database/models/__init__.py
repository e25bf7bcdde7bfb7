# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Platform ORM models."""

from src.infrastructure.database.models.base import PLATFORM_SCHEMA, Base
from src.infrastructure.database.models.platform import (
    Metahub,
    MetahubBranch,
    MetahubUser,
    Template,
    TemplateVersion,
)

__all__ = [
    "PLATFORM_SCHEMA",
    "Base",
    "Metahub",
    "MetahubBranch",
    "MetahubUser",
    "Template",
    "TemplateVersion",
]
