# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the incremental template seed migrator."""

import pytest

from src.domains.history.meta import TemplateSeedMeta, parse_migration_meta
from src.domains.structure.catalog import (
    ATTRIBUTES_TABLE,
    ELEMENTS_TABLE,
    LAYOUTS_TABLE,
    MIGRATIONS_TABLE,
    OBJECTS_TABLE,
    SETTINGS_TABLE,
    WIDGETS_TABLE,
)
from src.domains.templates.builtin import get_builtin_manifest
from src.domains.templates.manifest import validate_template_manifest
from src.domains.templates.seed_executor import TemplateSeedExecutor
from src.domains.templates.seed_migrator import (
    DRY_RUN_PREFIX,
    SeedHistoryContext,
    TemplateSeedMigrator,
)


@pytest.fixture
async def seeded_db(branch_db):
    branch_db.create_version(3)
    await TemplateSeedExecutor(branch_db).execute(get_builtin_manifest("basic").seed)
    return branch_db


@pytest.fixture
def migrator(seeded_db):
    return TemplateSeedMigrator(seeded_db)


def _seed(build, **seed):
    return validate_template_manifest(build(**seed)).seed


class TestMergeIdempotence:
    """Tests that an applied seed merges to nothing."""

    @pytest.mark.asyncio
    async def test_same_seed_adds_nothing(self, migrator, seeded_db):
        before = {name: len(rows) for name, rows in seeded_db.tables.items()}

        result = await migrator.migrate_seed(
            get_builtin_manifest("basic").seed,
            history=SeedHistoryContext(structure_version=3),
        )

        assert result.has_changes is False
        assert result.counts.total == 0
        assert "layout:dashboard already exists" in result.skipped
        assert {name: len(rows) for name, rows in seeded_db.tables.items()} == before

    @pytest.mark.asyncio
    async def test_second_merge_is_noop(self, migrator, seed_manifest):
        seed = _seed(
            seed_manifest,
            settings=[{"key": "general.currency", "value": "EUR"}],
            entities=[{"kind": "catalog", "codename": "tags"}],
        )

        first = await migrator.migrate_seed(seed)
        second = await migrator.migrate_seed(seed)

        assert first.counts.settings_added == 1
        assert first.counts.entities_added == 1
        assert second.has_changes is False


class TestMergeAdditions:
    """Tests for rows added by a newer seed."""

    @pytest.mark.asyncio
    async def test_history_row_written_with_counts(self, migrator, seeded_db, seed_manifest):
        seed = _seed(seed_manifest, settings=[{"key": "general.currency", "value": "EUR"}])

        await migrator.migrate_seed(
            seed,
            history=SeedHistoryContext(
                structure_version=3,
                template_version_id="tv-2",
                template_version_label="1.1.0",
            ),
        )

        row = seeded_db.rows(MIGRATIONS_TABLE)[-1]
        meta = parse_migration_meta(row["meta"])
        assert isinstance(meta, TemplateSeedMeta)
        assert meta.counts["settings_added"] == 1
        assert meta.template_version_label == "1.1.0"
        assert row["from_version"] == row["to_version"] == 3
        assert row["name"].startswith("template_seed_")

    @pytest.mark.asyncio
    async def test_no_history_row_without_changes(self, migrator, seeded_db):
        rows_before = len(seeded_db.rows(MIGRATIONS_TABLE))

        await migrator.migrate_seed(
            get_builtin_manifest("basic").seed,
            history=SeedHistoryContext(structure_version=3),
        )

        assert len(seeded_db.rows(MIGRATIONS_TABLE)) == rows_before

    @pytest.mark.asyncio
    async def test_second_default_layout_inserted_as_non_default(
        self, migrator, seeded_db, seed_manifest
    ):
        seed = _seed(
            seed_manifest,
            layouts=[{"codename": "reports", "templateKey": "reports", "isDefault": True}],
        )

        result = await migrator.migrate_seed(seed)

        assert result.counts.layouts_added == 1
        defaults = [row for row in seeded_db.rows(LAYOUTS_TABLE) if row["is_default"]]
        assert len(defaults) == 1
        assert defaults[0]["template_key"] == "dashboard"

    @pytest.mark.asyncio
    async def test_existing_rows_never_updated(self, migrator, seeded_db, seed_manifest):
        setting = next(
            row for row in seeded_db.rows(SETTINGS_TABLE) if row["key"] == "general.language"
        )
        setting["value"] = {"_value": "de"}

        await migrator.migrate_seed(
            _seed(seed_manifest, settings=[{"key": "general.language", "value": "en"}])
        )

        assert setting["value"] == {"_value": "de"}

    @pytest.mark.asyncio
    async def test_new_widget_inherits_sibling_is_active(self, migrator, seeded_db, seed_manifest):
        footer = next(row for row in seeded_db.rows(WIDGETS_TABLE) if row["widget_key"] == "footer")
        footer["is_active"] = False

        result = await migrator.migrate_seed(
            _seed(
                seed_manifest,
                layouts=[{"codename": "dashboard", "templateKey": "dashboard"}],
                layoutZoneWidgets={
                    "dashboard": [{"zone": "bottom", "widgetKey": "footer", "sortOrder": 2}]
                },
            )
        )

        assert result.counts.zone_widgets_added == 1
        added = [
            row
            for row in seeded_db.rows(WIDGETS_TABLE)
            if row["widget_key"] == "footer" and row["sort_order"] == 2
        ]
        assert added[0]["is_active"] is False

    @pytest.mark.asyncio
    async def test_empty_layout_config_recomputed(self, migrator, seeded_db, seed_manifest):
        layout = seeded_db.rows(LAYOUTS_TABLE)[0]
        layout["config"] = {}

        await migrator.migrate_seed(
            _seed(
                seed_manifest,
                layouts=[{"codename": "dashboard", "templateKey": "dashboard"}],
                layoutZoneWidgets={"dashboard": [{"zone": "right", "widgetKey": "infoCard"}]},
            )
        )

        assert layout["config"]["showInfoCard"] is True
        assert layout["config"]["showRightDrawer"] is True
        assert layout["config"]["showFooter"] is True

    @pytest.mark.asyncio
    async def test_attribute_added_to_existing_entity(self, migrator, seeded_db, seed_manifest):
        entity = {"kind": "catalog", "codename": "tags"}
        await migrator.migrate_seed(
            _seed(
                seed_manifest,
                entities=[{**entity, "attributes": [{"codename": "label", "dataType": "STRING"}]}],
            )
        )

        result = await migrator.migrate_seed(
            _seed(
                seed_manifest,
                entities=[
                    {
                        **entity,
                        "attributes": [
                            {"codename": "label", "dataType": "STRING"},
                            {"codename": "color", "dataType": "STRING"},
                        ],
                    }
                ],
            )
        )

        assert result.counts.entities_added == 0
        assert result.counts.attributes_added == 1
        assert sorted(row["codename"] for row in seeded_db.rows(ATTRIBUTES_TABLE)) == [
            "color",
            "label",
        ]

    @pytest.mark.asyncio
    async def test_target_resolved_from_existing_objects(self, migrator, seeded_db, seed_manifest):
        await migrator.migrate_seed(
            _seed(seed_manifest, entities=[{"kind": "hub", "codename": "regions"}])
        )
        hub_id = seeded_db.rows(OBJECTS_TABLE)[0]["id"]

        await migrator.migrate_seed(
            _seed(
                seed_manifest,
                entities=[
                    {
                        "kind": "catalog",
                        "codename": "stores",
                        "attributes": [
                            {
                                "codename": "region",
                                "dataType": "REF",
                                "targetEntityCodename": "regions",
                            }
                        ],
                    }
                ],
            )
        )

        attribute = seeded_db.rows(ATTRIBUTES_TABLE)[0]
        assert attribute["target_object_id"] == hub_id
        assert attribute["target_object_kind"] == "hub"

    @pytest.mark.asyncio
    async def test_elements_skipped_when_entity_has_any(self, migrator, seeded_db, seed_manifest):
        entity = {"kind": "catalog", "codename": "tags"}
        await migrator.migrate_seed(
            _seed(seed_manifest, entities=[entity], elements={"tags": [{"data": {"n": 1}}]})
        )

        result = await migrator.migrate_seed(
            _seed(
                seed_manifest,
                entities=[entity],
                elements={"tags": [{"data": {"n": 1}}, {"data": {"n": 2}}]},
            )
        )

        assert result.counts.elements_added == 0
        assert "elements:tags entity already has elements" in result.skipped
        assert len(seeded_db.rows(ELEMENTS_TABLE)) == 1


class TestDryRun:
    """Tests for previewing a merge."""

    @pytest.mark.asyncio
    async def test_dry_run_counts_without_writing(self, migrator, seeded_db, seed_manifest):
        seed = _seed(
            seed_manifest,
            layouts=[{"codename": "reports", "templateKey": "reports"}],
            layoutZoneWidgets={"reports": [{"zone": "center", "widgetKey": "detailsTable"}]},
            entities=[
                {
                    "kind": "enumeration",
                    "codename": "status",
                    "attributes": [{"codename": "label", "dataType": "STRING"}],
                }
            ],
            enumerationValues={"status": [{"codename": "open"}]},
            elements={"status": [{"data": {}}]},
        )
        before = {name: list(rows) for name, rows in seeded_db.tables.items()}
        transactions = seeded_db.transactions

        result = await migrator.migrate_seed(seed, dry_run=True)

        assert result.dry_run is True
        assert result.counts.layouts_added == 1
        assert result.counts.zone_widgets_added == 1
        assert result.counts.entities_added == 1
        assert result.counts.attributes_added == 1
        assert result.counts.enumeration_values_added == 1
        assert result.counts.elements_added == 1
        assert seeded_db.tables == before
        assert seeded_db.transactions == transactions

    def test_placeholder_prefix(self):
        assert DRY_RUN_PREFIX == "dry-run:"
