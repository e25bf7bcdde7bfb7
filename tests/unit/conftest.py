# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-memory stand-ins for branch schemas, DDL, locks and platform records.

FakeBranchDatabase mimics BranchSchemaDatabase: a dict of table name to
rows, with transactions that restore a snapshot on error. FakeDDL plays
SystemTableDDL against the same dict so schema creation and structure
steps can be asserted without PostgreSQL.
"""

import copy
import dataclasses
from collections.abc import Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from src.core.config.settings import MigrationSettings
from src.domains.history.meta import baseline_record
from src.domains.migrations.schema_service import MetahubSchemaService
from src.domains.migrations.state_store import (
    BranchRecord,
    MetahubRecord,
    TemplateVersionRecord,
)
from src.domains.structure.catalog import MIGRATIONS_TABLE, get_structure_catalog
from src.domains.structure.ddl import DDLApplyError, DestructiveChangeError
from src.domains.structure.diff import AddTable, ChangeType, RenameTable, StructureChange
from src.domains.structure.definitions import TableDefinition
from src.utils.datetime import utc_now

ROW_DEFAULTS: dict[str, Any] = {
    "_upl_created_by": None,
    "_upl_updated_by": None,
    "_upl_version": 1,
    "_upl_deleted": False,
    "_mhb_deleted": False,
    "_mhb_deleted_at": None,
    "_mhb_deleted_by": None,
}


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None, live: bool) -> bool:
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            if row.get(column) not in value:
                return False
        elif value is None:
            if row.get(column) is not None:
                return False
        elif row.get(column) != value:
            return False
    if live and (row.get("_upl_deleted") or row.get("_mhb_deleted")):
        return False
    return True


class FakeRepository:
    """SystemTableRepository over FakeBranchDatabase.tables."""

    def __init__(self, database: "FakeBranchDatabase") -> None:
        self._database = database
        self.schema_name = database.schema_name

    @property
    def _tables(self) -> dict[str, list[dict[str, Any]]]:
        return self._database.tables

    def _rows(self, table_name: str) -> list[dict[str, Any]]:
        if table_name not in self._tables:
            raise DDLApplyError(f'relation "{self.schema_name}.{table_name}" does not exist')
        return self._tables[table_name]

    async def has_table(self, name: str) -> bool:
        return name in self._tables

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
    ) -> list[dict[str, Any]]:
        rows = [dict(row) for row in self._rows(table_name) if _matches(row, filters, live)]
        if order_by:
            rows.sort(
                key=lambda row: tuple((row.get(c) is None, row.get(c)) for c in order_by),
                reverse=descending,
            )
        rows = rows[offset or 0 :]
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def first(self, table_name, filters=None, *, live=True, order_by=()):
        rows = await self.select(table_name, filters, live=live, order_by=order_by, limit=1)
        return rows[0] if rows else None

    async def count(self, table_name, filters=None, *, live=True) -> int:
        return len(await self.select(table_name, filters, live=live))

    async def insert(self, table_name: str, values: Mapping[str, Any]) -> str:
        rows = self._rows(table_name)
        row = {**ROW_DEFAULTS, **values}
        row.setdefault("id", str(uuid4()))
        if table_name == MIGRATIONS_TABLE and "applied_at" not in values:
            row["applied_at"] = self._database.next_timestamp()
        rows.append(row)
        return row["id"]

    async def insert_ignoring_conflict(self, table_name, values, conflict_columns) -> bool:
        for row in self._rows(table_name):
            if all(row.get(column) == values.get(column) for column in conflict_columns):
                return False
        await self.insert(table_name, values)
        return True

    async def update(self, table_name, filters, values, *, live=True, bump_version=False) -> int:
        changed = 0
        for row in self._rows(table_name):
            if _matches(row, filters, live):
                row.update(values)
                if bump_version:
                    row["_upl_version"] = row.get("_upl_version", 1) + 1
                changed += 1
        return changed

    async def run_sync(self, fn: Callable[[Any], Any]) -> Any:
        return fn(self._database)


class FakeDDL:
    """SystemTableDDL stand-in that creates and renames entries of the table dict."""

    def __init__(self, database: "FakeBranchDatabase", schema_name: str) -> None:
        self._database = database
        self.schema_name = schema_name

    def create_schema(self) -> bool:
        created = not self._database.schema_created
        self._database.schema_created = True
        return created

    def create_table(self, table: TableDefinition) -> bool:
        if table.name in self._database.tables:
            return False
        self._database.tables[table.name] = []
        return True

    def create_tables(self, tables) -> int:
        return sum(1 for table in tables if self.create_table(table))

    def apply_change(self, change: StructureChange) -> bool:
        if change.change_type in self._database.fail_on:
            raise DDLApplyError(f"Simulated failure: {change.description}")
        if change.is_destructive:
            raise DestructiveChangeError(change.description)
        tables = self._database.tables
        if isinstance(change, AddTable):
            return self.create_table(change.table)
        if isinstance(change, RenameTable):
            if change.old_name not in tables:
                return False
            tables[change.table.name] = tables.pop(change.old_name)
            return True
        if change.description in self._database.applied_ddl:
            return False
        self._database.applied_ddl.append(change.description)
        return True


class FakeBranchDatabase:
    """BranchSchemaDatabase stand-in holding rows in memory."""

    def __init__(self, schema_name: str = "mhb_test_branch") -> None:
        self.schema_name = schema_name
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.schema_created = False
        self.applied_ddl: list[str] = []
        self.fail_on: set[ChangeType] = set()
        self.fail_inserts_into: set[str] = set()
        self.transactions = 0
        self._clock = utc_now()

    def next_timestamp(self):
        self._clock += timedelta(milliseconds=1)
        return self._clock

    def ddl_factory(self, connection: Any, schema_name: str) -> FakeDDL:
        return FakeDDL(self, schema_name)

    def rows(self, table_name: str, *, live: bool = True) -> list[dict[str, Any]]:
        return [row for row in self.tables.get(table_name, []) if _matches(row, None, live)]

    def create_version(self, version: int) -> None:
        """Lay out the tables of a structure version with its baseline history row."""
        catalog = get_structure_catalog()
        for table in catalog.get(version):
            self.tables.setdefault(table.name, [])
        self.schema_created = True
        self.tables[MIGRATIONS_TABLE].append(
            {
                **ROW_DEFAULTS,
                "id": str(uuid4()),
                "applied_at": self.next_timestamp(),
                **baseline_record(version, None),
            }
        )

    def _repository(self) -> FakeRepository:
        repo = FakeRepository(self)
        if self.fail_inserts_into:
            original = repo.insert
            failing = self.fail_inserts_into

            async def insert(table_name, values):
                if table_name in failing:
                    raise DDLApplyError(f"Simulated insert failure into {table_name}")
                return await original(table_name, values)

            repo.insert = insert  # type: ignore[method-assign]
        return repo

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[FakeRepository]:
        snapshot = (
            copy.deepcopy(self.tables),
            list(self.applied_ddl),
            self.schema_created,
        )
        self.transactions += 1
        try:
            yield self._repository()
        except BaseException:
            self.tables, self.applied_ddl, self.schema_created = snapshot
            raise

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[FakeRepository]:
        yield self._repository()


class FakeLock:
    def __init__(self, name: str, acquired: bool) -> None:
        self.name = name
        self._acquired = acquired
        self.held = False
        self.released = False

    async def acquire(self) -> bool:
        self.held = self._acquired
        return self._acquired

    async def release(self) -> None:
        self.held = False
        self.released = True


class FakeLockFactory:
    """lock_factory that hands out FakeLock objects; names in ``busy`` never acquire."""

    def __init__(self) -> None:
        self.locks: list[FakeLock] = []
        self.busy: set[str] = set()

    def __call__(self, engine: Any, name: str, *, timeout: float, poll_interval: float = 0.25):
        lock = FakeLock(name, acquired=name not in self.busy)
        self.locks.append(lock)
        return lock


class FakeStateStore:
    """PlatformStateStore backed by dicts."""

    def __init__(self) -> None:
        self.metahubs: dict[str, MetahubRecord] = {}
        self.branches: dict[str, BranchRecord] = {}
        self.active_branches: dict[tuple[str, str], str] = {}
        self.versions: dict[str, TemplateVersionRecord] = {}
        self.active_versions: dict[str, str] = {}
        self.advance_calls: list[dict[str, Any]] = []
        self.ignore_template_pointer = False

    async def get_metahub(self, metahub_id):
        return self.metahubs.get(metahub_id)

    async def get_branch(self, branch_id):
        return self.branches.get(branch_id)

    async def get_active_branch_id(self, metahub_id, user_id):
        return self.active_branches.get((metahub_id, user_id))

    async def get_template_version(self, version_id):
        return self.versions.get(version_id)

    async def get_active_template_version(self, template_id):
        version_id = self.active_versions.get(template_id)
        return self.versions.get(version_id) if version_id else None

    async def advance_branch(
        self,
        branch_id,
        *,
        structure_version,
        template_version_id=None,
        template_version_label=None,
        synced_at=None,
    ):
        self.advance_calls.append(
            {
                "branch_id": branch_id,
                "structure_version": structure_version,
                "template_version_id": template_version_id,
            }
        )
        changes: dict[str, Any] = {"structure_version": structure_version}
        if template_version_id is not None and not self.ignore_template_pointer:
            changes.update(
                last_template_version_id=template_version_id,
                last_template_version_label=template_version_label,
                last_template_synced_at=synced_at,
            )
        self.branches[branch_id] = dataclasses.replace(self.branches[branch_id], **changes)

    async def set_metahub_template_version(self, metahub_id, template_version_id):
        self.metahubs[metahub_id] = dataclasses.replace(
            self.metahubs[metahub_id], template_version_id=template_version_id
        )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def migration_settings() -> MigrationSettings:
    return MigrationSettings(
        apply_lock_timeout_seconds=1,
        schema_lock_timeout_seconds=1,
        lock_poll_interval_seconds=0.01,
    )


@pytest.fixture
def branch_db() -> FakeBranchDatabase:
    return FakeBranchDatabase()


@pytest.fixture
def lock_factory() -> FakeLockFactory:
    return FakeLockFactory()


@pytest.fixture
def state_store() -> FakeStateStore:
    return FakeStateStore()


@pytest.fixture
def schema_service(branch_db, lock_factory, state_store, migration_settings):
    """MetahubSchemaService whose every branch schema is branch_db."""
    service = MetahubSchemaService(
        MagicMock(),
        migration_settings,
        state_store=state_store,
        ddl_factory=branch_db.ddl_factory,
        lock_factory=lock_factory,
    )
    service.database = lambda schema_name: branch_db  # type: ignore[method-assign]
    return service


@pytest.fixture
def seed_manifest() -> Callable[..., dict[str, Any]]:
    """Build a manifest document around seed content."""

    def build(version: str = "1.0.0", min_structure_version: int = 1, **seed: Any):
        return {
            "codename": "crm",
            "version": version,
            "minStructureVersion": min_structure_version,
            "name": {"en": "CRM"},
            "seed": seed,
        }

    return build
