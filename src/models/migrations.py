# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Metahub migration request/response schemas.

Plan, status, apply and history payloads. Field names serialize in
camelCase (``migrationRequired``, ``structureVersion``); constructing by
snake_case name is allowed.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from src.domains.history.meta import MigrationMeta
from src.domains.templates.seed_cleanup import CleanupMode


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class MigrationState(str, Enum):
    UP_TO_DATE = "up_to_date"
    REQUIRES_MIGRATION = "requires_migration"
    BLOCKED = "blocked"


class MigrationStatusCode(str, Enum):
    UP_TO_DATE = "UP_TO_DATE"
    MIGRATION_REQUIRED = "MIGRATION_REQUIRED"
    MIGRATION_BLOCKED = "MIGRATION_BLOCKED"


STATUS_CODES: dict[MigrationState, MigrationStatusCode] = {
    MigrationState.UP_TO_DATE: MigrationStatusCode.UP_TO_DATE,
    MigrationState.REQUIRES_MIGRATION: MigrationStatusCode.MIGRATION_REQUIRED,
    MigrationState.BLOCKED: MigrationStatusCode.MIGRATION_BLOCKED,
}


# =============================================================================
# Requests
# =============================================================================


class MigrationPlanRequest(_CamelModel):
    branch_id: str | None = Field(
        default=None,
        description="Branch to plan for; defaults to the caller's active branch.",
    )
    target_template_version_id: str | None = Field(
        default=None,
        description="Template version to upgrade to; defaults to the metahub's template version.",
    )
    cleanup_mode: CleanupMode = Field(default=CleanupMode.KEEP)


class MigrationApplyRequest(MigrationPlanRequest):
    dry_run: bool = Field(default=False, description="Return the plan without writing.")


class MigrationHistoryQuery(_CamelModel):
    branch_id: str | None = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


# =============================================================================
# Plan
# =============================================================================


class StructureStep(_CamelModel):
    """Diff of one consecutive structure version pair."""

    from_version: int
    to_version: int
    additive: list[str] = Field(default_factory=list)
    destructive: list[str] = Field(default_factory=list)
    summary: str


class StructurePlan(_CamelModel):
    current_version: int
    target_version: int
    upgrade_required: bool
    steps: list[StructureStep] = Field(default_factory=list)
    additive: list[str] = Field(default_factory=list)
    destructive: list[str] = Field(default_factory=list)


class TemplatePlan(_CamelModel):
    current_version_id: str | None = None
    current_version_label: str | None = None
    target_version_id: str | None = None
    target_version_label: str | None = None
    upgrade_required: bool = False
    min_structure_version: int = 1
    structure_compatible: bool = True


class SeedDryRun(_CamelModel):
    counts: dict[str, int] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)
    has_changes: bool = False


class CleanupReport(_CamelModel):
    mode: CleanupMode
    has_changes: bool = False
    applied: bool = False
    blockers: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    summary: dict[str, int] = Field(default_factory=dict)


class MigrationPlan(_CamelModel):
    """Everything apply would do to a branch, and what prevents it."""

    metahub_id: str
    branch_id: str
    schema_name: str
    schema_initialized: bool
    status: MigrationState
    structure: StructurePlan
    template: TemplatePlan
    seed: SeedDryRun | None = None
    cleanup: CleanupReport | None = None
    blockers: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def migration_required(self) -> bool:
        return self.structure.upgrade_required or self.template.upgrade_required


class MigrationStatusResponse(_CamelModel):
    branch_id: str
    status: MigrationState
    code: MigrationStatusCode
    blockers: list[str] = Field(default_factory=list)
    migration_required: bool
    structure_upgrade_required: bool
    template_upgrade_required: bool
    current_structure_version: int
    target_structure_version: int

    @classmethod
    def from_plan(cls, plan: MigrationPlan) -> "MigrationStatusResponse":
        return cls(
            branch_id=plan.branch_id,
            status=plan.status,
            code=STATUS_CODES[plan.status],
            blockers=plan.blockers,
            migration_required=plan.migration_required,
            structure_upgrade_required=plan.structure.upgrade_required,
            template_upgrade_required=plan.template.upgrade_required,
            current_structure_version=plan.structure.current_version,
            target_structure_version=plan.structure.target_version,
        )


# =============================================================================
# History and apply
# =============================================================================


class MigrationHistoryItem(_CamelModel):
    id: str
    name: str
    applied_at: datetime | None = None
    from_version: int
    to_version: int
    meta: MigrationMeta | None = None


class MigrationHistoryPage(_CamelModel):
    items: list[MigrationHistoryItem] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int


class MigrationApplyResult(_CamelModel):
    status: Literal["applied", "dry_run"]
    plan: MigrationPlan
    structure_version: int
    template_version_id: str | None = None
    seed: SeedDryRun | None = None
    cleanup: CleanupReport | None = None
    latest_migrations: list[MigrationHistoryItem] = Field(default_factory=list)
    post_apply_read_warning: str | None = None
