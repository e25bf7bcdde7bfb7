# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the system table DDL applier."""

from unittest.mock import MagicMock

import pytest
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from src.domains.structure.catalog import WIDGETS_TABLE, get_structure_catalog
from src.domains.structure.ddl import (
    DDLApplyError,
    DestructiveChangeError,
    SystemTableDDL,
    build_column,
    build_index_sql,
    build_query_tables,
    column_type,
    foreign_key_name,
    server_default,
)
from src.domains.structure.definitions import (
    NOW_DEFAULT,
    UUID_DEFAULT,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
)
from src.domains.structure.diff import AddColumn, AlterColumn, DropTable, RenameTable

SCHEMA = "mhb_test_branch"


@pytest.fixture
def operations():
    return MagicMock()


@pytest.fixture
def inspector():
    inspector = MagicMock()
    inspector.has_schema.return_value = False
    inspector.has_table.return_value = False
    inspector.has_column.return_value = False
    inspector.has_index.return_value = False
    inspector.has_constraint.return_value = False
    return inspector


@pytest.fixture
def ddl(operations, inspector):
    return SystemTableDDL(operations, inspector, SCHEMA)


def _table(**kwargs) -> TableDefinition:
    return TableDefinition(
        name="_mhb_things",
        description="things",
        columns=(
            ColumnDefinition("id", "uuid", primary=True, default=UUID_DEFAULT),
            ColumnDefinition("owner_id", "uuid", nullable=False, indexed=True),
        ),
        **kwargs,
    )


class TestColumnBuilders:
    """Tests for type and default resolution."""

    def test_column_types(self):
        assert isinstance(column_type(ColumnDefinition("a", "json")), postgresql.JSONB)
        assert isinstance(column_type(ColumnDefinition("a", "uuid")), postgresql.UUID)
        string = column_type(ColumnDefinition("a", "string", length=20))
        assert isinstance(string, sa.String)
        assert string.length == 20
        assert column_type(ColumnDefinition("a", "timestamp")).timezone is True

    def test_symbolic_defaults(self):
        uuid_default = server_default(ColumnDefinition("id", "uuid", default=UUID_DEFAULT))
        assert str(uuid_default) == "gen_random_uuid()"
        now_default = server_default(ColumnDefinition("at", "timestamp", default=NOW_DEFAULT))
        assert "now" in str(now_default)

    def test_literal_defaults(self):
        assert str(server_default(ColumnDefinition("a", "boolean", default=False))) == "false"
        assert str(server_default(ColumnDefinition("a", "integer", default=1))) == "1"
        json_default = server_default(ColumnDefinition("a", "json", default={}))
        assert str(json_default) == "'{}'::jsonb"
        assert server_default(ColumnDefinition("a", "text")) is None

    def test_added_column_is_forced_nullable(self):
        column = ColumnDefinition("a", "integer", nullable=False, default=0)
        assert build_column(column).nullable is False
        assert build_column(column, force_nullable=True).nullable is True


class TestIndexSql:
    """Tests for named index statements."""

    def test_partial_unique_index(self):
        index = IndexDefinition("idx_a", ("kind", "codename"), unique=True, where="x = 1")
        sql = build_index_sql(SCHEMA, "_mhb_objects", index)
        assert sql == (
            'CREATE UNIQUE INDEX IF NOT EXISTS "idx_a" ON "mhb_test_branch"."_mhb_objects" '
            '("kind", "codename") WHERE x = 1'
        )

    def test_gin_index(self):
        sql = build_index_sql(SCHEMA, "_mhb_elements", IndexDefinition("idx_g", ("data",), method="gin"))
        assert 'USING GIN ("data")' in sql

    def test_foreign_key_name_is_truncated(self):
        fk = ForeignKeyDefinition("x" * 40, "y" * 40)
        assert len(foreign_key_name("t" * 10, fk)) == 63


class TestCreateTable:
    """Tests for SystemTableDDL.create_table."""

    def test_creates_table_and_named_indexes(self, ddl, operations):
        table = _table(indexes=(IndexDefinition("idx_things_owner", ("owner_id",)),))

        assert ddl.create_table(table) is True

        args, kwargs = operations.create_table.call_args
        assert args[0] == "_mhb_things"
        assert kwargs["schema"] == SCHEMA
        column_names = {item.name for item in args[1:] if isinstance(item, sa.Column)}
        assert {"id", "owner_id", "_upl_created_by", "_mhb_deleted"} <= column_names
        operations.execute.assert_called_once()
        assert "idx_things_owner" in operations.execute.call_args[0][0]

    def test_existing_table_is_left_alone(self, ddl, operations, inspector):
        inspector.has_table.return_value = True
        assert ddl.create_table(_table()) is False
        operations.create_table.assert_not_called()

    def test_create_tables_counts_created(self, ddl, inspector):
        inspector.has_table.side_effect = lambda name: name == "_mhb_objects"
        created = ddl.create_tables(get_structure_catalog().get(3))
        assert created == len(get_structure_catalog().get(3)) - 1


class TestAlterOperations:
    """Tests for idempotent rename and add operations."""

    def test_rename_table(self, ddl, operations, inspector):
        inspector.has_table.side_effect = lambda name: name == "old"
        assert ddl.rename_table("old", "new") is True
        operations.rename_table.assert_called_once_with("old", "new", schema=SCHEMA)

    def test_rename_table_already_done(self, ddl, operations, inspector):
        inspector.has_table.side_effect = lambda name: name == "new"
        assert ddl.rename_table("old", "new") is False
        operations.rename_table.assert_not_called()

    def test_rename_table_with_both_present_fails(self, ddl, inspector):
        inspector.has_table.return_value = True
        with pytest.raises(DDLApplyError, match="both tables exist"):
            ddl.rename_table("old", "new")

    def test_rename_index(self, ddl, operations, inspector):
        inspector.has_index.side_effect = lambda name: name == "idx_old"
        assert ddl.rename_index("idx_old", "idx_new") is True
        assert "RENAME TO" in operations.execute.call_args[0][0]

    def test_add_column_once(self, ddl, operations, inspector):
        column = ColumnDefinition("is_active", "boolean", nullable=False, default=True)
        assert ddl.add_column(WIDGETS_TABLE, column) is True
        added = operations.add_column.call_args[0][1]
        assert added.nullable is True

        inspector.has_column.return_value = True
        assert ddl.add_column(WIDGETS_TABLE, column) is False

    def test_relax_nullability(self, ddl, operations, inspector):
        inspector.is_column_nullable.return_value = False
        column = ColumnDefinition("a", "text", nullable=True)
        assert ddl.relax_column_nullability("t", column) is True
        operations.alter_column.assert_called_once_with("t", "a", nullable=True, schema=SCHEMA)

    def test_add_foreign_key_skips_existing(self, ddl, operations, inspector):
        inspector.has_constraint.return_value = True
        assert ddl.add_foreign_key("t", ForeignKeyDefinition("parent_id", "p")) is False
        operations.create_foreign_key.assert_not_called()


class TestApplyChange:
    """Tests for dispatch over change variants."""

    def test_dispatches_rename(self, ddl, operations, inspector):
        inspector.has_table.side_effect = lambda name: name == "old"
        assert ddl.apply_change(RenameTable("old", _table())) is True
        operations.rename_table.assert_called_once()

    def test_dispatches_add_column(self, ddl, operations):
        assert ddl.apply_change(AddColumn("t", ColumnDefinition("a", "text"))) is True
        operations.add_column.assert_called_once()

    def test_refuses_destructive(self, ddl, operations):
        with pytest.raises(DestructiveChangeError):
            ddl.apply_change(DropTable("t"))
        old = ColumnDefinition("a", "integer")
        with pytest.raises(DestructiveChangeError):
            ddl.apply_change(AlterColumn("t", old, ColumnDefinition("a", "text"), is_destructive=True))
        operations.execute.assert_not_called()


class TestQueryTables:
    """Tests for build_query_tables."""

    def test_latest_definition_wins(self):
        tables = build_query_tables(SCHEMA, get_structure_catalog())
        widgets = tables[WIDGETS_TABLE]
        assert widgets.schema == SCHEMA
        assert "is_active" in widgets.c
        assert "_mhb_deleted" in widgets.c
        assert "_mhb_layout_zone_widgets" in tables
