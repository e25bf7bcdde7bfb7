# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for migration request and response schemas."""

import pytest
from pydantic import ValidationError

from src.domains.history.meta import StructureMeta
from src.domains.templates.seed_cleanup import CleanupMode
from src.models.migrations import (
    MigrationApplyRequest,
    MigrationHistoryItem,
    MigrationHistoryQuery,
    MigrationPlan,
    MigrationState,
    MigrationStatusCode,
    MigrationStatusResponse,
    StructurePlan,
    TemplatePlan,
)


def _plan(status=MigrationState.REQUIRES_MIGRATION, *, structure=True, template=False):
    return MigrationPlan(
        metahub_id="m1",
        branch_id="b1",
        schema_name="mhb_b1",
        schema_initialized=True,
        status=status,
        structure=StructurePlan(current_version=2, target_version=3, upgrade_required=structure),
        template=TemplatePlan(upgrade_required=template),
    )


class TestMigrationPlan:
    """Tests for MigrationPlan serialization."""

    def test_camel_case_dump(self):
        data = _plan().model_dump(mode="json")

        assert data["branchId"] == "b1"
        assert data["schemaInitialized"] is True
        assert data["migrationRequired"] is True
        assert data["structure"]["upgradeRequired"] is True
        assert data["status"] == "requires_migration"

    @pytest.mark.parametrize(
        "structure, template, expected",
        [(False, False, False), (True, False, True), (False, True, True)],
    )
    def test_migration_required(self, structure, template, expected):
        assert _plan(structure=structure, template=template).migration_required is expected


class TestStatusResponse:
    """Tests for MigrationStatusResponse.from_plan."""

    @pytest.mark.parametrize(
        "state, code",
        [
            (MigrationState.UP_TO_DATE, MigrationStatusCode.UP_TO_DATE),
            (MigrationState.REQUIRES_MIGRATION, MigrationStatusCode.MIGRATION_REQUIRED),
            (MigrationState.BLOCKED, MigrationStatusCode.MIGRATION_BLOCKED),
        ],
    )
    def test_codes(self, state, code):
        assert MigrationStatusResponse.from_plan(_plan(state)).code is code

    def test_fields(self):
        status = MigrationStatusResponse.from_plan(_plan(template=True))
        data = status.model_dump(mode="json")

        assert data["structureUpgradeRequired"] is True
        assert data["templateUpgradeRequired"] is True
        assert data["currentStructureVersion"] == 2
        assert data["targetStructureVersion"] == 3


class TestRequests:
    """Tests for request schemas."""

    def test_apply_request_accepts_camel_case(self):
        request = MigrationApplyRequest.model_validate(
            {"branchId": "b1", "cleanupMode": "confirm", "dryRun": True}
        )

        assert request.branch_id == "b1"
        assert request.cleanup_mode is CleanupMode.CONFIRM
        assert request.dry_run is True

    def test_apply_request_defaults(self):
        request = MigrationApplyRequest()

        assert request.cleanup_mode is CleanupMode.KEEP
        assert request.dry_run is False

    @pytest.mark.parametrize("payload", [{"limit": 0}, {"limit": 101}, {"offset": -1}])
    def test_history_query_bounds(self, payload):
        with pytest.raises(ValidationError):
            MigrationHistoryQuery.model_validate(payload)


class TestHistoryItem:
    """Tests for MigrationHistoryItem."""

    def test_meta_parsed_from_dict(self):
        item = MigrationHistoryItem(
            id="r1",
            name="structure_v1_to_v2",
            from_version=1,
            to_version=2,
            meta={"kind": "structure", "applied": ["Add table"]},
        )

        assert isinstance(item.meta, StructureMeta)
        assert item.model_dump(mode="json")["fromVersion"] == 1

    def test_missing_meta(self):
        item = MigrationHistoryItem(id="r1", name="legacy", from_version=0, to_version=1)
        assert item.meta is None
