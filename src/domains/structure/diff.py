# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structure diff engine.

Compares the table lists of two structure versions and classifies every
difference as additive (safe to apply automatically) or destructive
(reported, never applied).

Matching rules:
    - A new table matches an old table of the same name; otherwise the
      first unclaimed old table named in its ``renamed_from`` list.
      Same-name matches are claimed before renames are searched.
    - Indexes of a matched table pair follow the same rule.
    - Foreign keys match by (column, referenced table, referenced column);
      a referenced table that was renamed in the same step still matches.
    - Columns match by name and always include the shared column blocks.

Output order follows the order of the new definitions, table-level
changes first, so summaries are deterministic.

Example:
    >>> diff = calculate_structure_diff(catalog.get(1), catalog.get(2), 1, 2)
    >>> diff.summary
    'V1→V2: 3 additive change(s), no destructive changes'
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from src.domains.structure.definitions import (
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
    with_shared_columns,
)


class ChangeType(str, Enum):
    """Kinds of structure change."""

    ADD_TABLE = "ADD_TABLE"
    RENAME_TABLE = "RENAME_TABLE"
    DROP_TABLE = "DROP_TABLE"
    ADD_COLUMN = "ADD_COLUMN"
    DROP_COLUMN = "DROP_COLUMN"
    ALTER_COLUMN = "ALTER_COLUMN"
    ADD_INDEX = "ADD_INDEX"
    RENAME_INDEX = "RENAME_INDEX"
    DROP_INDEX = "DROP_INDEX"
    ADD_FK = "ADD_FK"
    DROP_FK = "DROP_FK"


@dataclass(frozen=True)
class AddTable:
    table: TableDefinition
    is_destructive: bool = field(default=False, init=False)
    change_type: ChangeType = field(default=ChangeType.ADD_TABLE, init=False)

    @property
    def description(self) -> str:
        return f'Add table "{self.table.name}"'


@dataclass(frozen=True)
class RenameTable:
    old_name: str
    table: TableDefinition
    is_destructive: bool = field(default=False, init=False)
    change_type: ChangeType = field(default=ChangeType.RENAME_TABLE, init=False)

    @property
    def description(self) -> str:
        return f'Rename table "{self.old_name}" to "{self.table.name}"'


@dataclass(frozen=True)
class DropTable:
    table_name: str
    is_destructive: bool = field(default=True, init=False)
    change_type: ChangeType = field(default=ChangeType.DROP_TABLE, init=False)

    @property
    def description(self) -> str:
        return f'Drop table "{self.table_name}"'


@dataclass(frozen=True)
class AddColumn:
    table_name: str
    column: ColumnDefinition
    is_destructive: bool = field(default=False, init=False)
    change_type: ChangeType = field(default=ChangeType.ADD_COLUMN, init=False)

    @property
    def description(self) -> str:
        return f'Add column "{self.table_name}.{self.column.name}" ({self.column.type})'


@dataclass(frozen=True)
class DropColumn:
    table_name: str
    column_name: str
    is_destructive: bool = field(default=True, init=False)
    change_type: ChangeType = field(default=ChangeType.DROP_COLUMN, init=False)

    @property
    def description(self) -> str:
        return f'Drop column "{self.table_name}.{self.column_name}"'


@dataclass(frozen=True)
class AlterColumn:
    """A column whose type or nullability changed.

    Only a pure nullable relaxation is additive.
    """

    table_name: str
    old_column: ColumnDefinition
    column: ColumnDefinition
    is_destructive: bool
    change_type: ChangeType = field(default=ChangeType.ALTER_COLUMN, init=False)

    @property
    def description(self) -> str:
        target = f'"{self.table_name}.{self.column.name}"'
        parts = []
        if _type_signature(self.old_column) != _type_signature(self.column):
            parts.append(
                f"type {_format_type(self.old_column)} -> {_format_type(self.column)}"
            )
        if self.old_column.is_nullable != self.column.is_nullable:
            parts.append("drop NOT NULL" if self.column.is_nullable else "set NOT NULL")
        return f"Alter column {target}: {', '.join(parts)}"


@dataclass(frozen=True)
class AddIndex:
    table_name: str
    index: IndexDefinition
    is_destructive: bool = field(default=False, init=False)
    change_type: ChangeType = field(default=ChangeType.ADD_INDEX, init=False)

    @property
    def description(self) -> str:
        return f'Add index "{self.index.name}" on "{self.table_name}"'


@dataclass(frozen=True)
class RenameIndex:
    table_name: str
    old_name: str
    index: IndexDefinition
    is_destructive: bool = field(default=False, init=False)
    change_type: ChangeType = field(default=ChangeType.RENAME_INDEX, init=False)

    @property
    def description(self) -> str:
        return f'Rename index "{self.old_name}" to "{self.index.name}"'


@dataclass(frozen=True)
class DropIndex:
    table_name: str
    index_name: str
    is_destructive: bool = field(default=True, init=False)
    change_type: ChangeType = field(default=ChangeType.DROP_INDEX, init=False)

    @property
    def description(self) -> str:
        return f'Drop index "{self.index_name}" on "{self.table_name}"'


@dataclass(frozen=True)
class AddForeignKey:
    table_name: str
    foreign_key: ForeignKeyDefinition
    is_destructive: bool = field(default=False, init=False)
    change_type: ChangeType = field(default=ChangeType.ADD_FK, init=False)

    @property
    def description(self) -> str:
        fk = self.foreign_key
        return (
            f'Add foreign key "{self.table_name}.{fk.column}" -> '
            f'"{fk.references_table}.{fk.references_column}"'
        )


@dataclass(frozen=True)
class DropForeignKey:
    table_name: str
    foreign_key: ForeignKeyDefinition
    is_destructive: bool = field(default=True, init=False)
    change_type: ChangeType = field(default=ChangeType.DROP_FK, init=False)

    @property
    def description(self) -> str:
        fk = self.foreign_key
        return (
            f'Drop foreign key "{self.table_name}.{fk.column}" -> '
            f'"{fk.references_table}.{fk.references_column}"'
        )


StructureChange = Union[
    AddTable,
    RenameTable,
    DropTable,
    AddColumn,
    DropColumn,
    AlterColumn,
    AddIndex,
    RenameIndex,
    DropIndex,
    AddForeignKey,
    DropForeignKey,
]


@dataclass(frozen=True)
class StructureDiff:
    """Result of comparing two structure versions."""

    from_version: int
    to_version: int
    additive: tuple[StructureChange, ...]
    destructive: tuple[StructureChange, ...]
    summary: str

    @property
    def has_changes(self) -> bool:
        return bool(self.additive or self.destructive)

    @property
    def has_destructive_changes(self) -> bool:
        return bool(self.destructive)


def _type_signature(column: ColumnDefinition) -> tuple[str, int | None]:
    return (column.type, column.length)


def _format_type(column: ColumnDefinition) -> str:
    if column.length is not None:
        return f"{column.type}({column.length})"
    return column.type


def _match_by_name(
    old_names: Sequence[str],
    new_items: Sequence[tuple[str, tuple[str, ...]]],
) -> tuple[dict[str, str], set[str]]:
    """Pair new names with old names, direct matches first, then renames.

    Returns a mapping new name -> matched old name and the set of claimed
    old names. A rename target already claimed by an earlier item is not
    available to later ones.
    """
    available = set(old_names)
    matches: dict[str, str] = {}
    claimed: set[str] = set()

    for name, _ in new_items:
        if name in available:
            matches[name] = name
            claimed.add(name)

    for name, renamed_from in new_items:
        if name in matches:
            continue
        for candidate in renamed_from:
            if candidate in available and candidate not in claimed:
                matches[name] = candidate
                claimed.add(candidate)
                break

    return matches, claimed


def _diff_columns(
    table_name: str,
    old_table: TableDefinition,
    new_table: TableDefinition,
    additive: list[StructureChange],
    destructive: list[StructureChange],
) -> None:
    old_columns = {column.name: column for column in old_table.columns}
    new_names = {column.name for column in new_table.columns}

    for column in new_table.columns:
        previous = old_columns.get(column.name)
        if previous is None:
            additive.append(AddColumn(table_name, column))
            continue

        type_changed = _type_signature(previous) != _type_signature(column)
        tightened = previous.is_nullable and not column.is_nullable
        relaxed = not previous.is_nullable and column.is_nullable

        if type_changed or tightened:
            destructive.append(AlterColumn(table_name, previous, column, is_destructive=True))
        elif relaxed:
            additive.append(AlterColumn(table_name, previous, column, is_destructive=False))

    for column in old_table.columns:
        if column.name not in new_names:
            destructive.append(DropColumn(table_name, column.name))


def _diff_indexes(
    table_name: str,
    old_table: TableDefinition,
    new_table: TableDefinition,
    additive: list[StructureChange],
    destructive: list[StructureChange],
) -> None:
    matches, claimed = _match_by_name(
        [index.name for index in old_table.indexes],
        [(index.name, index.renamed_from) for index in new_table.indexes],
    )

    for index in new_table.indexes:
        old_name = matches.get(index.name)
        if old_name is None:
            additive.append(AddIndex(table_name, index))
        elif old_name != index.name:
            additive.append(RenameIndex(table_name, old_name, index))

    for index in old_table.indexes:
        if index.name not in claimed:
            destructive.append(DropIndex(table_name, index.name))


def _diff_foreign_keys(
    table_name: str,
    old_table: TableDefinition,
    new_table: TableDefinition,
    table_renames: dict[str, str],
    additive: list[StructureChange],
    destructive: list[StructureChange],
) -> None:
    def normalized(fk: ForeignKeyDefinition) -> tuple[str, str, str]:
        referenced = table_renames.get(fk.references_table, fk.references_table)
        return (fk.column, referenced, fk.references_column)

    old_identities = {normalized(fk) for fk in old_table.foreign_keys}
    new_identities = {fk.identity for fk in new_table.foreign_keys}

    for fk in new_table.foreign_keys:
        if fk.identity not in old_identities:
            additive.append(AddForeignKey(table_name, fk))

    for fk in old_table.foreign_keys:
        if normalized(fk) not in new_identities:
            destructive.append(DropForeignKey(table_name, fk))


def summarize(
    from_version: int,
    to_version: int,
    additive: Sequence[StructureChange],
    destructive: Sequence[StructureChange],
) -> str:
    prefix = f"V{from_version}→V{to_version}"
    if not additive and not destructive:
        return f"{prefix}: no changes"
    additive_part = f"{len(additive)} additive change(s)"
    if destructive:
        return f"{prefix}: {additive_part}, {len(destructive)} DESTRUCTIVE change(s)"
    return f"{prefix}: {additive_part}, no destructive changes"


def calculate_structure_diff(
    old_definitions: Sequence[TableDefinition],
    new_definitions: Sequence[TableDefinition],
    from_version: int,
    to_version: int,
) -> StructureDiff:
    """Compute additive and destructive changes between two versions.

    Args:
        old_definitions: Tables of the version being migrated from.
        new_definitions: Tables of the version being migrated to.
        from_version: Version number of old_definitions.
        to_version: Version number of new_definitions.

    Returns:
        StructureDiff with ordered change lists and a summary line.
    """
    old_tables = [with_shared_columns(table) for table in old_definitions]
    new_tables = [with_shared_columns(table) for table in new_definitions]
    old_by_name = {table.name: table for table in old_tables}

    matches, claimed = _match_by_name(
        [table.name for table in old_tables],
        [(table.name, table.renamed_from) for table in new_tables],
    )
    table_renames = {old: new for new, old in matches.items() if old != new}

    additive: list[StructureChange] = []
    destructive: list[StructureChange] = []

    for table in new_tables:
        old_name = matches.get(table.name)
        if old_name is None:
            additive.append(AddTable(table))
        elif old_name != table.name:
            additive.append(RenameTable(old_name, table))

    for table in old_tables:
        if table.name not in claimed:
            destructive.append(DropTable(table.name))

    for table in new_tables:
        old_name = matches.get(table.name)
        if old_name is None:
            continue
        old_table = old_by_name[old_name]
        _diff_columns(table.name, old_table, table, additive, destructive)
        _diff_indexes(table.name, old_table, table, additive, destructive)
        _diff_foreign_keys(table.name, old_table, table, table_renames, additive, destructive)

    return StructureDiff(
        from_version=from_version,
        to_version=to_version,
        additive=tuple(additive),
        destructive=tuple(destructive),
        summary=summarize(from_version, to_version, additive, destructive),
    )
