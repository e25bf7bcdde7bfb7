# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DDL applier for system tables.

Turns declarative table definitions and structure changes into DDL on one
branch schema. Runs on a synchronous connection (inside
``AsyncConnection.run_sync``) and drives alembic ``Operations``
programmatically, the same way the platform migration runner does.

Every operation probes the live schema first and returns whether it
changed anything, so re-running a migration step is a no-op.

Notes:
    - Columns added to an existing table are always nullable: a NOT NULL
      column cannot be added to a populated table without a backfill.
    - Named, partial and GIN indexes are created with separate
      ``CREATE INDEX IF NOT EXISTS`` statements after the table.
    - Destructive changes are never executed here.
"""

import json
import logging
from collections.abc import Iterable
from typing import Any, assert_never

import sqlalchemy as sa
from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import text
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Connection

from src.domains.structure.catalog import StructureCatalog
from src.domains.structure.definitions import (
    NOW_DEFAULT,
    UUID_DEFAULT,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
    with_shared_columns,
)
from src.domains.structure.diff import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    AddTable,
    AlterColumn,
    DropColumn,
    DropForeignKey,
    DropIndex,
    DropTable,
    RenameIndex,
    RenameTable,
    StructureChange,
)

logger = logging.getLogger(__name__)

POSTGRES_IDENTIFIER_LIMIT = 63
UUID_GENERATION_SQL = "gen_random_uuid()"


class DDLApplyError(Exception):
    """The live schema is in a state the requested operation cannot handle."""

    pass


class DestructiveChangeError(DDLApplyError):
    """A destructive change reached the applier; it must be applied manually."""

    pass


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _truncate_identifier(name: str) -> str:
    return name[:POSTGRES_IDENTIFIER_LIMIT]


def foreign_key_name(table_name: str, fk: ForeignKeyDefinition) -> str:
    return _truncate_identifier(f"fk_{table_name}_{fk.column}_{fk.references_table}")


def unique_constraint_name(table_name: str, columns: Iterable[str]) -> str:
    return _truncate_identifier(f"uq_{table_name}_{'_'.join(columns)}")


def inline_index_name(table_name: str, column_name: str) -> str:
    return _truncate_identifier(f"ix{table_name}_{column_name}")


def column_type(column: ColumnDefinition) -> Any:
    """Concrete SQL type for an abstract column type."""
    match column.type:
        case "uuid":
            return postgresql.UUID(as_uuid=False)
        case "string":
            return sa.String(column.length or 255)
        case "text":
            return sa.Text()
        case "integer":
            return sa.Integer()
        case "boolean":
            return sa.Boolean()
        case "json":
            return postgresql.JSONB()
        case "timestamp":
            return sa.DateTime(timezone=True)
        case _:
            raise ValueError(f"Unsupported column type: {column.type}")


def server_default(column: ColumnDefinition) -> Any:
    """Resolve a column default, including the symbolic $uuid and $now."""
    default = column.default
    if default is None:
        return None
    if default == UUID_DEFAULT:
        return text(UUID_GENERATION_SQL)
    if default == NOW_DEFAULT:
        return sa.func.now()
    if isinstance(default, bool):
        return text("true" if default else "false")
    if isinstance(default, int):
        return text(str(default))
    if column.type == "json":
        payload = json.dumps(default, separators=(",", ":")).replace("'", "''")
        return text(f"'{payload}'::jsonb")
    return str(default)


def build_column(column: ColumnDefinition, *, force_nullable: bool = False) -> sa.Column:
    """Build a SQLAlchemy column from its definition.

    Args:
        column: Column definition.
        force_nullable: Create the column nullable whatever it declares;
            used when adding a column to an existing table.
    """
    if force_nullable:
        return sa.Column(
            column.name,
            column_type(column),
            nullable=True,
            server_default=server_default(column),
        )
    return sa.Column(
        column.name,
        column_type(column),
        primary_key=column.primary,
        nullable=column.is_nullable,
        server_default=server_default(column),
    )


def build_index_sql(schema_name: str, table_name: str, index: IndexDefinition) -> str:
    """CREATE INDEX statement for a named, partial or GIN index."""
    unique = "UNIQUE " if index.unique else ""
    using = " USING GIN" if index.method == "gin" else ""
    columns = ", ".join(_quote(column) for column in index.columns)
    sql = (
        f"CREATE {unique}INDEX IF NOT EXISTS {_quote(index.name)} "
        f"ON {_quote(schema_name)}.{_quote(table_name)}{using} ({columns})"
    )
    if index.where:
        sql += f" WHERE {index.where}"
    return sql


def build_query_tables(schema_name: str, catalog: StructureCatalog) -> dict[str, sa.Table]:
    """Column-only Table objects for every system table any version declares.

    Later versions win when a table is declared more than once, so queries
    always see the newest column set.
    """
    metadata = sa.MetaData(schema=schema_name)
    latest: dict[str, TableDefinition] = {}
    for version in catalog.versions():
        for table in catalog.get(version):
            latest[table.name] = with_shared_columns(table)

    tables: dict[str, sa.Table] = {}
    for name, definition in latest.items():
        tables[name] = sa.Table(
            name,
            metadata,
            *(
                sa.Column(column.name, column_type(column), primary_key=column.primary)
                for column in definition.columns
            ),
        )
    return tables


class SchemaInspector:
    """Existence probes against information_schema and pg_indexes."""

    def __init__(self, connection: Connection, schema_name: str) -> None:
        self._connection = connection
        self._schema = schema_name

    def _exists(self, sql: str, **params: Any) -> bool:
        result = self._connection.execute(text(sql), {"schema": self._schema, **params})
        return result.first() is not None

    def has_schema(self) -> bool:
        return self._exists(
            "SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema"
        )

    def has_table(self, table_name: str) -> bool:
        return self._exists(
            "SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = :schema AND table_name = :table",
            table=table_name,
        )

    def has_column(self, table_name: str, column_name: str) -> bool:
        return self._exists(
            "SELECT 1 FROM information_schema.columns "
            "WHERE table_schema = :schema AND table_name = :table AND column_name = :column",
            table=table_name,
            column=column_name,
        )

    def is_column_nullable(self, table_name: str, column_name: str) -> bool | None:
        """Nullability of a live column, None when the column is missing."""
        result = self._connection.execute(
            text(
                "SELECT is_nullable FROM information_schema.columns "
                "WHERE table_schema = :schema AND table_name = :table AND column_name = :column"
            ),
            {"schema": self._schema, "table": table_name, "column": column_name},
        )
        value = result.scalar()
        if value is None:
            return None
        return value == "YES"

    def has_index(self, index_name: str) -> bool:
        return self._exists(
            "SELECT 1 FROM pg_indexes WHERE schemaname = :schema AND indexname = :index",
            index=index_name,
        )

    def has_constraint(self, table_name: str, constraint_name: str) -> bool:
        return self._exists(
            "SELECT 1 FROM information_schema.table_constraints "
            "WHERE table_schema = :schema AND table_name = :table "
            "AND constraint_name = :constraint",
            table=table_name,
            constraint=constraint_name,
        )


class SystemTableDDL:
    """Idempotent DDL operations on one branch schema.

    Every method returns True when it changed the schema and False when
    the target state was already in place.
    """

    def __init__(
        self,
        operations: Operations,
        inspector: SchemaInspector,
        schema_name: str,
    ) -> None:
        self._operations = operations
        self._inspector = inspector
        self._schema = schema_name

    @classmethod
    def for_connection(cls, connection: Connection, schema_name: str) -> "SystemTableDDL":
        """Bind alembic operations to a synchronous connection."""
        context = MigrationContext.configure(connection)
        return cls(Operations(context), SchemaInspector(connection, schema_name), schema_name)

    @property
    def schema_name(self) -> str:
        return self._schema

    def create_schema(self) -> bool:
        if self._inspector.has_schema():
            return False
        self._operations.execute(f"CREATE SCHEMA IF NOT EXISTS {_quote(self._schema)}")
        logger.info("Created schema %s", self._schema)
        return True

    def create_table(self, table: TableDefinition) -> bool:
        """Create a table with shared columns, FKs, unique constraints and indexes."""
        table = with_shared_columns(table)
        if self._inspector.has_table(table.name):
            return False

        items: list[sa.SchemaItem] = [build_column(column) for column in table.columns]
        items.extend(
            sa.Index(inline_index_name(table.name, column.name), column.name)
            for column in table.columns
            if column.indexed
        )
        items.extend(
            sa.ForeignKeyConstraint(
                [fk.column],
                [f"{self._schema}.{fk.references_table}.{fk.references_column}"],
                name=foreign_key_name(table.name, fk),
                ondelete=fk.on_delete,
            )
            for fk in table.foreign_keys
        )
        items.extend(
            sa.UniqueConstraint(*columns, name=unique_constraint_name(table.name, columns))
            for columns in table.unique_constraints
        )

        self._operations.create_table(table.name, *items, schema=self._schema)
        for index in table.indexes:
            self._operations.execute(build_index_sql(self._schema, table.name, index))

        logger.info("Created table %s.%s", self._schema, table.name)
        return True

    def create_tables(self, tables: Iterable[TableDefinition]) -> int:
        return sum(1 for table in tables if self.create_table(table))

    def rename_table(self, old_name: str, new_name: str) -> bool:
        source_exists = self._inspector.has_table(old_name)
        target_exists = self._inspector.has_table(new_name)

        if not source_exists and target_exists:
            return False
        if not source_exists:
            raise DDLApplyError(
                f'Cannot rename table "{old_name}" to "{new_name}" in {self._schema}: '
                "neither table exists"
            )
        if target_exists:
            raise DDLApplyError(
                f'Cannot rename table "{old_name}" to "{new_name}" in {self._schema}: '
                "both tables exist"
            )

        self._operations.rename_table(old_name, new_name, schema=self._schema)
        logger.info("Renamed table %s.%s to %s", self._schema, old_name, new_name)
        return True

    def add_column(self, table_name: str, column: ColumnDefinition) -> bool:
        if self._inspector.has_column(table_name, column.name):
            return False
        self._operations.add_column(
            table_name,
            build_column(column, force_nullable=True),
            schema=self._schema,
        )
        logger.info("Added column %s.%s.%s", self._schema, table_name, column.name)
        return True

    def relax_column_nullability(self, table_name: str, column: ColumnDefinition) -> bool:
        """Drop NOT NULL from a column. Tightening is refused."""
        if not column.is_nullable:
            raise DestructiveChangeError(
                f'Setting NOT NULL on "{table_name}.{column.name}" must be applied manually'
            )
        live_nullable = self._inspector.is_column_nullable(table_name, column.name)
        if live_nullable is None:
            raise DDLApplyError(
                f'Cannot alter missing column "{table_name}.{column.name}" in {self._schema}'
            )
        if live_nullable:
            return False
        self._operations.alter_column(
            table_name, column.name, nullable=True, schema=self._schema
        )
        logger.info("Dropped NOT NULL on %s.%s.%s", self._schema, table_name, column.name)
        return True

    def add_index(self, table_name: str, index: IndexDefinition) -> bool:
        if self._inspector.has_index(index.name):
            return False
        self._operations.execute(build_index_sql(self._schema, table_name, index))
        logger.info("Created index %s.%s", self._schema, index.name)
        return True

    def rename_index(self, old_name: str, new_name: str) -> bool:
        source_exists = self._inspector.has_index(old_name)
        target_exists = self._inspector.has_index(new_name)

        if not source_exists and target_exists:
            return False
        if not source_exists:
            raise DDLApplyError(
                f'Cannot rename index "{old_name}" to "{new_name}" in {self._schema}: '
                "neither index exists"
            )
        if target_exists:
            raise DDLApplyError(
                f'Cannot rename index "{old_name}" to "{new_name}" in {self._schema}: '
                "both indexes exist"
            )

        self._operations.execute(
            f"ALTER INDEX {_quote(self._schema)}.{_quote(old_name)} RENAME TO {_quote(new_name)}"
        )
        logger.info("Renamed index %s.%s to %s", self._schema, old_name, new_name)
        return True

    def add_foreign_key(self, table_name: str, fk: ForeignKeyDefinition) -> bool:
        name = foreign_key_name(table_name, fk)
        if self._inspector.has_constraint(table_name, name):
            return False
        self._operations.create_foreign_key(
            name,
            table_name,
            fk.references_table,
            [fk.column],
            [fk.references_column],
            source_schema=self._schema,
            referent_schema=self._schema,
            ondelete=fk.on_delete,
        )
        logger.info("Added foreign key %s.%s", self._schema, name)
        return True

    def apply_change(self, change: StructureChange) -> bool:
        """Apply one additive change.

        Raises:
            DestructiveChangeError: For any destructive change.
        """
        match change:
            case AddTable(table=table):
                return self.create_table(table)
            case RenameTable(old_name=old_name, table=table):
                return self.rename_table(old_name, table.name)
            case AddColumn(table_name=table_name, column=column):
                return self.add_column(table_name, column)
            case AlterColumn(table_name=table_name, column=column, is_destructive=False):
                return self.relax_column_nullability(table_name, column)
            case AddIndex(table_name=table_name, index=index):
                return self.add_index(table_name, index)
            case RenameIndex(old_name=old_name, index=index):
                return self.rename_index(old_name, index.name)
            case AddForeignKey(table_name=table_name, foreign_key=fk):
                return self.add_foreign_key(table_name, fk)
            case DropTable() | DropColumn() | AlterColumn() | DropIndex() | DropForeignKey():
                raise DestructiveChangeError(
                    f"Destructive change must be applied manually: {change.description}"
                )
            case _:
                assert_never(change)
