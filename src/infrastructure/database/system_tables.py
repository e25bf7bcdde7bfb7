# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Generic repository over the system tables of one branch schema.

Queries are expressed as equality filters on a named system table, which
keeps the seed and cleanup services independent of SQL. Filter values
that are lists, tuples or sets become ``IN`` clauses.

"Live" rows are rows not soft-deleted at either level
(``_upl_deleted = false AND _mhb_deleted = false``); most reads default
to live rows only.
"""

from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncConnection

T = TypeVar("T")

Row = dict[str, Any]


class SystemTableRepository:
    """Reads and writes system tables through one async connection.

    Attributes:
        schema_name: Branch schema the repository is bound to.
    """

    def __init__(
        self,
        connection: AsyncConnection,
        schema_name: str,
        tables: Mapping[str, sa.Table],
    ) -> None:
        self.schema_name = schema_name
        self._connection = connection
        self._tables = tables
        self._existing_tables: dict[str, bool] = {}

    def _table(self, name: str) -> sa.Table:
        try:
            return self._tables[name]
        except KeyError:
            raise ValueError(f"Unknown system table: {name}") from None

    def _where(
        self,
        table: sa.Table,
        filters: Mapping[str, Any] | None,
        live: bool,
    ) -> list[sa.ColumnElement[bool]]:
        clauses: list[sa.ColumnElement[bool]] = []
        for column_name, value in (filters or {}).items():
            column = table.c[column_name]
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            elif value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == value)
        if live:
            clauses.append(table.c._upl_deleted.is_(False))
            clauses.append(table.c._mhb_deleted.is_(False))
        return clauses

    async def has_table(self, name: str) -> bool:
        """Whether the table physically exists in the schema (cached per repository)."""
        if name not in self._existing_tables:
            result = await self._connection.execute(
                text(
                    "SELECT 1 FROM information_schema.tables "
                    "WHERE table_schema = :schema AND table_name = :table"
                ),
                {"schema": self.schema_name, "table": name},
            )
            self._existing_tables[name] = result.first() is not None
        return self._existing_tables[name]

    async def select(
        self,
        table_name: str,
        filters: Mapping[str, Any] | None = None,
        *,
        live: bool = True,
        order_by: Sequence[str] = (),
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Row]:
        table = self._table(table_name)
        stmt = sa.select(table).where(*self._where(table, filters, live))
        for column_name in order_by:
            column = table.c[column_name]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        result = await self._connection.execute(stmt)
        return [dict(row) for row in result.mappings()]

    async def first(
        self,
        table_name: str,
        filters: Mapping[str, Any] | None = None,
        *,
        live: bool = True,
        order_by: Sequence[str] = (),
    ) -> Row | None:
        rows = await self.select(table_name, filters, live=live, order_by=order_by, limit=1)
        return rows[0] if rows else None

    async def count(
        self,
        table_name: str,
        filters: Mapping[str, Any] | None = None,
        *,
        live: bool = True,
    ) -> int:
        table = self._table(table_name)
        stmt = (
            sa.select(sa.func.count())
            .select_from(table)
            .where(*self._where(table, filters, live))
        )
        result = await self._connection.execute(stmt)
        return int(result.scalar_one())

    async def insert(self, table_name: str, values: Mapping[str, Any]) -> str:
        """Insert one row and return its id."""
        table = self._table(table_name)
        result = await self._connection.execute(
            sa.insert(table).values(**values).returning(table.c.id)
        )
        return str(result.scalar_one())

    async def insert_ignoring_conflict(
        self,
        table_name: str,
        values: Mapping[str, Any],
        conflict_columns: Sequence[str],
    ) -> bool:
        """Insert unless a row with the same conflict key exists.

        Returns:
            True when a row was inserted.
        """
        table = self._table(table_name)
        stmt = (
            pg_insert(table)
            .values(**values)
            .on_conflict_do_nothing(index_elements=list(conflict_columns))
            .returning(table.c.id)
        )
        result = await self._connection.execute(stmt)
        return result.first() is not None

    async def update(
        self,
        table_name: str,
        filters: Mapping[str, Any],
        values: Mapping[str, Any],
        *,
        live: bool = True,
        bump_version: bool = False,
    ) -> int:
        """Update matching rows and return how many changed.

        Args:
            bump_version: Also increment ``_upl_version``.
        """
        table = self._table(table_name)
        assignments: dict[str, Any] = dict(values)
        if bump_version:
            assignments["_upl_version"] = table.c._upl_version + 1
        stmt = sa.update(table).where(*self._where(table, filters, live)).values(**assignments)
        result = await self._connection.execute(stmt)
        return result.rowcount

    async def run_sync(self, fn: Callable[[Connection], T]) -> T:
        """Run a synchronous callable (DDL) on the underlying connection."""
        try:
            return await self._connection.run_sync(fn)
        finally:
            self._existing_tables.clear()
