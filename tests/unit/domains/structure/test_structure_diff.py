# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the structure diff engine."""

from src.domains.structure.catalog import get_structure_catalog
from src.domains.structure.definitions import (
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
)
from src.domains.structure.diff import (
    AddColumn,
    AddIndex,
    AddTable,
    AlterColumn,
    ChangeType,
    DropColumn,
    DropIndex,
    DropTable,
    RenameIndex,
    RenameTable,
    calculate_structure_diff,
)

ID = ColumnDefinition("id", "uuid", primary=True)


def _table(name, *columns, **kwargs) -> TableDefinition:
    return TableDefinition(name=name, description=name, columns=(ID, *columns), **kwargs)


def _kinds(changes) -> list[ChangeType]:
    return [change.change_type for change in changes]


class TestAdditiveChanges:
    """Tests for changes that are applied automatically."""

    def test_new_table_and_column(self):
        """A new table and a new column are both additive, tables first."""
        old = [_table("_objects", ColumnDefinition("codename", "string", length=100))]
        new = [
            _table(
                "_objects",
                ColumnDefinition("codename", "string", length=100),
                ColumnDefinition("sort_order", "integer"),
            ),
            _table("_values", ColumnDefinition("codename", "string", length=100)),
        ]

        diff = calculate_structure_diff(old, new, 1, 2)

        assert diff.destructive == ()
        assert len(diff.additive) == 2
        assert isinstance(diff.additive[0], AddTable)
        assert diff.additive[0].table.name == "_values"
        assert isinstance(diff.additive[1], AddColumn)
        assert diff.additive[1].table_name == "_objects"
        assert diff.additive[1].column.name == "sort_order"
        assert diff.summary == "V1→V2: 2 additive change(s), no destructive changes"

    def test_nullable_relaxation_is_additive(self):
        old = [_table("t", ColumnDefinition("a", "text", nullable=False))]
        new = [_table("t", ColumnDefinition("a", "text", nullable=True))]

        diff = calculate_structure_diff(old, new, 1, 2)

        assert len(diff.additive) == 1
        change = diff.additive[0]
        assert isinstance(change, AlterColumn)
        assert change.is_destructive is False
        assert "drop NOT NULL" in change.description

    def test_identical_versions_have_no_changes(self):
        tables = get_structure_catalog().get(3)
        diff = calculate_structure_diff(tables, tables, 3, 3)
        assert not diff.has_changes
        assert diff.summary == "V3→V3: no changes"


class TestDestructiveChanges:
    """Tests for changes reported for manual handling."""

    def test_dropped_table(self):
        diff = calculate_structure_diff([_table("a"), _table("b")], [_table("a")], 1, 2)
        assert _kinds(diff.destructive) == [ChangeType.DROP_TABLE]
        assert isinstance(diff.destructive[0], DropTable)
        assert diff.destructive[0].table_name == "b"

    def test_dropped_column(self):
        old = [_table("t", ColumnDefinition("a", "text"))]
        diff = calculate_structure_diff(old, [_table("t")], 1, 2)
        assert isinstance(diff.destructive[0], DropColumn)
        assert diff.destructive[0].column_name == "a"

    def test_nullable_tightening(self):
        old = [_table("t", ColumnDefinition("a", "text"))]
        new = [_table("t", ColumnDefinition("a", "text", nullable=False))]
        diff = calculate_structure_diff(old, new, 1, 2)
        assert diff.additive == ()
        assert "set NOT NULL" in diff.destructive[0].description

    def test_type_change(self):
        old = [_table("t", ColumnDefinition("a", "integer"))]
        new = [_table("t", ColumnDefinition("a", "text"))]
        diff = calculate_structure_diff(old, new, 1, 2)
        assert _kinds(diff.destructive) == [ChangeType.ALTER_COLUMN]
        assert "type integer -> text" in diff.destructive[0].description

    def test_length_change(self):
        old = [_table("t", ColumnDefinition("a", "string", length=100))]
        new = [_table("t", ColumnDefinition("a", "string", length=200))]
        diff = calculate_structure_diff(old, new, 1, 2)
        assert _kinds(diff.destructive) == [ChangeType.ALTER_COLUMN]

    def test_dropped_index_and_fk(self):
        old = [
            _table("parent"),
            _table(
                "child",
                ColumnDefinition("parent_id", "uuid"),
                foreign_keys=(ForeignKeyDefinition("parent_id", "parent"),),
                indexes=(IndexDefinition("idx_child_parent", ("parent_id",)),),
            ),
        ]
        new = [_table("parent"), _table("child", ColumnDefinition("parent_id", "uuid"))]

        diff = calculate_structure_diff(old, new, 1, 2)

        assert _kinds(diff.destructive) == [ChangeType.DROP_INDEX, ChangeType.DROP_FK]
        assert isinstance(diff.destructive[0], DropIndex)
        assert "DESTRUCTIVE" in diff.summary


class TestRenames:
    """Tests for rename-aware matching."""

    def test_published_v1_to_v2_renames_widgets_in_place(self):
        catalog = get_structure_catalog()
        diff = calculate_structure_diff(catalog.get(1), catalog.get(2), 1, 2)

        assert diff.destructive == ()
        assert _kinds(diff.additive).count(ChangeType.RENAME_TABLE) == 1
        assert ChangeType.ADD_TABLE not in _kinds(diff.additive)
        rename = diff.additive[0]
        assert isinstance(rename, RenameTable)
        assert rename.old_name == "_mhb_layout_zone_widgets"
        assert rename.table.name == "_mhb_widgets"
        assert _kinds(diff.additive).count(ChangeType.RENAME_INDEX) == 2

    def test_published_v2_to_v3(self):
        catalog = get_structure_catalog()
        diff = calculate_structure_diff(catalog.get(2), catalog.get(3), 2, 3)

        assert diff.destructive == ()
        assert _kinds(diff.additive) == [ChangeType.ADD_TABLE, ChangeType.ADD_COLUMN]
        assert diff.additive[1].column.name == "is_active"

    def test_direct_match_wins_over_rename(self):
        old = [_table("a"), _table("b")]
        new = [_table("a"), _table("c", renamed_from=("a", "b"))]

        diff = calculate_structure_diff(old, new, 1, 2)

        assert len(diff.additive) == 1
        assert diff.additive[0].old_name == "b"
        assert diff.destructive == ()

    def test_first_claim_wins_for_index_renames(self):
        old = [_table("t", indexes=(IndexDefinition("idx_old", ("id",)),))]
        new = [
            _table(
                "t",
                indexes=(
                    IndexDefinition("idx_first", ("id",), renamed_from=("idx_old",)),
                    IndexDefinition("idx_second", ("id",), renamed_from=("idx_old",)),
                ),
            )
        ]

        diff = calculate_structure_diff(old, new, 1, 2)

        assert isinstance(diff.additive[0], RenameIndex)
        assert diff.additive[0].index.name == "idx_first"
        assert isinstance(diff.additive[1], AddIndex)
        assert diff.additive[1].index.name == "idx_second"
        assert diff.destructive == ()

    def test_foreign_key_follows_renamed_table(self):
        old = [
            _table("parent"),
            _table(
                "child",
                ColumnDefinition("parent_id", "uuid"),
                foreign_keys=(ForeignKeyDefinition("parent_id", "parent"),),
            ),
        ]
        new = [
            _table("parents", renamed_from=("parent",)),
            _table(
                "child",
                ColumnDefinition("parent_id", "uuid"),
                foreign_keys=(ForeignKeyDefinition("parent_id", "parents"),),
            ),
        ]

        diff = calculate_structure_diff(old, new, 1, 2)

        assert _kinds(diff.additive) == [ChangeType.RENAME_TABLE]
        assert diff.destructive == ()


class TestDeterminism:
    """Tests for stable output."""

    def test_same_inputs_same_output(self):
        catalog = get_structure_catalog()
        first = calculate_structure_diff(catalog.get(1), catalog.get(3), 1, 3)
        second = calculate_structure_diff(catalog.get(1), catalog.get(3), 1, 3)

        assert [c.description for c in first.additive] == [c.description for c in second.additive]
        assert [c.description for c in first.destructive] == [
            c.description for c in second.destructive
        ]
        assert first.summary == second.summary
