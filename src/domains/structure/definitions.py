# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Declarative system table definitions.

A structure version is a complete list of TableDefinition values. Two
shared column blocks (platform audit fields and tenant lifecycle fields)
belong to every table; they are never listed per table and are merged in
by with_shared_columns() wherever columns are enumerated.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Literal

ColumnType = Literal["uuid", "string", "text", "integer", "boolean", "json", "timestamp"]
IndexMethod = Literal["btree", "gin"]

# Symbolic defaults resolved by the DDL layer
UUID_DEFAULT = "$uuid"
NOW_DEFAULT = "$now"


@dataclass(frozen=True)
class ColumnDefinition:
    """One column of a system table.

    ``nullable=None`` means "not specified": the column is nullable unless
    it is the primary key.
    """

    name: str
    type: ColumnType
    length: int | None = None
    nullable: bool | None = None
    default: Any = None
    primary: bool = False
    indexed: bool = False

    @property
    def is_nullable(self) -> bool:
        if self.primary:
            return False
        return self.nullable is not False


@dataclass(frozen=True)
class IndexDefinition:
    """A named index, optionally partial or GIN."""

    name: str
    columns: tuple[str, ...]
    unique: bool = False
    renamed_from: tuple[str, ...] = ()
    where: str | None = None
    method: IndexMethod = "btree"


@dataclass(frozen=True)
class ForeignKeyDefinition:
    column: str
    references_table: str
    references_column: str = "id"
    on_delete: str | None = None

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.column, self.references_table, self.references_column)


@dataclass(frozen=True)
class TableDefinition:
    """Full declaration of one system table at one structure version."""

    name: str
    description: str
    columns: tuple[ColumnDefinition, ...]
    foreign_keys: tuple[ForeignKeyDefinition, ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()
    unique_constraints: tuple[tuple[str, ...], ...] = ()
    renamed_from: tuple[str, ...] = field(default=())

    def column(self, name: str) -> ColumnDefinition | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


# Platform audit fields: who created/updated the row and row-level state
PLATFORM_AUDIT_FIELDS: tuple[ColumnDefinition, ...] = (
    ColumnDefinition("_upl_created_at", "timestamp", nullable=False, default=NOW_DEFAULT),
    ColumnDefinition("_upl_created_by", "uuid", nullable=True),
    ColumnDefinition("_upl_updated_at", "timestamp", nullable=False, default=NOW_DEFAULT),
    ColumnDefinition("_upl_updated_by", "uuid", nullable=True),
    ColumnDefinition("_upl_version", "integer", nullable=False, default=1),
    ColumnDefinition("_upl_archived", "boolean", nullable=False, default=False),
    ColumnDefinition("_upl_archived_at", "timestamp", nullable=True),
    ColumnDefinition("_upl_archived_by", "uuid", nullable=True),
    ColumnDefinition("_upl_deleted", "boolean", nullable=False, default=False),
    ColumnDefinition("_upl_deleted_at", "timestamp", nullable=True),
    ColumnDefinition("_upl_deleted_by", "uuid", nullable=True),
    ColumnDefinition("_upl_purge_after", "timestamp", nullable=True),
    ColumnDefinition("_upl_locked", "boolean", nullable=False, default=False),
    ColumnDefinition("_upl_locked_at", "timestamp", nullable=True),
    ColumnDefinition("_upl_locked_by", "uuid", nullable=True),
    ColumnDefinition("_upl_locked_reason", "text", nullable=True),
)

# Tenant lifecycle fields: publish/archive/delete inside the metahub
TENANT_LIFECYCLE_FIELDS: tuple[ColumnDefinition, ...] = (
    ColumnDefinition("_mhb_published", "boolean", nullable=False, default=True),
    ColumnDefinition("_mhb_published_at", "timestamp", nullable=True),
    ColumnDefinition("_mhb_published_by", "uuid", nullable=True),
    ColumnDefinition("_mhb_archived", "boolean", nullable=False, default=False),
    ColumnDefinition("_mhb_archived_at", "timestamp", nullable=True),
    ColumnDefinition("_mhb_archived_by", "uuid", nullable=True),
    ColumnDefinition("_mhb_deleted", "boolean", nullable=False, default=False),
    ColumnDefinition("_mhb_deleted_at", "timestamp", nullable=True),
    ColumnDefinition("_mhb_deleted_by", "uuid", nullable=True),
)

SHARED_FIELDS: tuple[ColumnDefinition, ...] = PLATFORM_AUDIT_FIELDS + TENANT_LIFECYCLE_FIELDS

# Actor columns checked to tell user edits from seeded rows
AUDIT_ACTOR_COLUMNS: tuple[str, ...] = ("_upl_created_by", "_upl_updated_by")


def with_shared_columns(table: TableDefinition) -> TableDefinition:
    """Return the table with both shared column blocks appended.

    Applying it twice is harmless: columns already present are not repeated.
    """
    present = {column.name for column in table.columns}
    extra = tuple(column for column in SHARED_FIELDS if column.name not in present)
    if not extra:
        return table
    return replace(table, columns=table.columns + extra)


def table_snapshot(table: TableDefinition) -> dict[str, Any]:
    """JSON-safe description of a table including shared columns."""
    full = with_shared_columns(table)
    return {
        "name": full.name,
        "renamed_from": list(full.renamed_from),
        "columns": [
            {
                "name": column.name,
                "type": column.type,
                "length": column.length,
                "nullable": column.is_nullable,
                "primary": column.primary,
            }
            for column in full.columns
        ],
        "indexes": [
            {
                "name": index.name,
                "columns": list(index.columns),
                "unique": index.unique,
                "method": index.method,
                "where": index.where,
            }
            for index in full.indexes
        ],
        "foreign_keys": [
            {
                "column": fk.column,
                "references_table": fk.references_table,
                "references_column": fk.references_column,
                "on_delete": fk.on_delete,
            }
            for fk in full.foreign_keys
        ],
        "unique_constraints": [list(columns) for columns in full.unique_constraints],
    }
