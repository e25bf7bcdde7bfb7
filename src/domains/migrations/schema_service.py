# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Lifecycle of one branch schema.

The service creates branch schemas, walks them through structure versions
and syncs template seeds into them. It never decides whether a migration
should happen; the orchestrator does. The only platform write it performs
is advancing the branch's structure version from ensure_schema().
"""

from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable

from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.config.settings import MigrationSettings
from src.domains.history.meta import baseline_record, manual_destructive_record, template_seed_record
from src.domains.migrations.state_store import BranchRecord, PlatformStateStore
from src.domains.shared.errors import (
    MigrationRequiredError,
    SchemaLockTimeoutError,
    StructureMigrationFailedError,
    TemplateVersionInvalidError,
)
from src.domains.structure.catalog import MIGRATIONS_TABLE, StructureCatalog, get_structure_catalog
from src.domains.structure.ddl import SystemTableDDL, build_query_tables
from src.domains.structure.migrator import DDLFactory, StructureMigrationResult, StructureMigrator
from src.domains.templates.manifest import TemplateManifest, TemplateSeed
from src.domains.templates.seed_executor import TemplateSeedExecutor, schema_has_seed_data
from src.domains.templates.seed_migrator import SeedHistoryContext, TemplateSeedMigrator
from src.domains.templates.seed_rows import SeedCounts
from src.infrastructure.database.advisory_lock import AdvisoryLock
from src.infrastructure.database.branch_schema import BranchSchemaDatabase
from src.utils.logging import get_logger

logger = get_logger(__name__)

LockFactory = Callable[..., AdvisoryLock]


class EnsureSchemaMode(str, Enum):
    READ_ONLY = "read_only"
    INITIALIZE = "initialize"
    APPLY_MIGRATIONS = "apply_migrations"


@dataclass
class SchemaInitResult:
    structure_version: int
    tables_created: int
    seed_counts: SeedCounts | None = None


@dataclass
class SeedSyncResult:
    """Outcome of a seed sync.

    Attributes:
        strategy: "executor" for an empty schema, "migrator" otherwise.
    """

    strategy: str
    counts: SeedCounts
    skipped: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.counts.total > 0


def schema_lock_name(metahub_id: str) -> str:
    return f"metahub-schema:{metahub_id}"


class MetahubSchemaService:
    """Creates, migrates and seeds branch schemas."""

    def __init__(
        self,
        engine: AsyncEngine,
        settings: MigrationSettings,
        *,
        state_store: PlatformStateStore | None = None,
        catalog: StructureCatalog | None = None,
        ddl_factory: DDLFactory = SystemTableDDL.for_connection,
        lock_factory: LockFactory = AdvisoryLock,
    ) -> None:
        self._engine = engine
        self._settings = settings
        self._state_store = state_store
        self._catalog = catalog or get_structure_catalog()
        self._ddl_factory = ddl_factory
        self._lock_factory = lock_factory

    @property
    def catalog(self) -> StructureCatalog:
        return self._catalog

    def advisory_lock(self, name: str, timeout: float) -> AdvisoryLock:
        return self._lock_factory(
            self._engine,
            name,
            timeout=timeout,
            poll_interval=self._settings.lock_poll_interval_seconds,
        )

    def database(self, schema_name: str) -> BranchSchemaDatabase:
        return BranchSchemaDatabase(
            self._engine, schema_name, build_query_tables(schema_name, self._catalog)
        )

    async def is_initialized(self, schema_name: str) -> bool:
        """Whether the schema has its migration history table."""
        async with self.database(schema_name).connect() as repo:
            return await repo.has_table(MIGRATIONS_TABLE)

    async def ensure_schema(
        self,
        branch: BranchRecord,
        mode: EnsureSchemaMode = EnsureSchemaMode.READ_ONLY,
        manifest: TemplateManifest | None = None,
        *,
        template_version_id: str | None = None,
        template_version_label: str | None = None,
    ) -> BranchSchemaDatabase:
        """Return a handle on the branch schema, preparing it per mode.

        read_only: raise MigrationRequiredError unless the schema exists at
            the current structure version.
        initialize: create a missing schema; an outdated one still raises.
        apply_migrations: create a missing schema or migrate an outdated one.

        Raises:
            MigrationRequiredError: If the schema cannot be used as is.
        """
        mode = EnsureSchemaMode(mode)
        current = self._catalog.current()
        initialized = await self.is_initialized(branch.schema_name)

        if initialized and branch.structure_version >= current:
            return self.database(branch.schema_name)

        if mode is EnsureSchemaMode.READ_ONLY or (
            mode is EnsureSchemaMode.INITIALIZE and initialized
        ):
            raise MigrationRequiredError(
                f"Branch schema {branch.schema_name} requires migration",
                details={
                    "branch_id": branch.id,
                    "schema_initialized": initialized,
                    "structure_version": branch.structure_version,
                    "target_structure_version": current,
                },
            )

        if manifest is None:
            raise ValueError("A template manifest is required to prepare a branch schema")

        if not initialized:
            result = await self.initialize(
                branch,
                manifest,
                template_version_id=template_version_id,
                template_version_label=template_version_label,
            )
            reached = result.structure_version
        else:
            migration = await self.migrate_structure(
                branch.schema_name, branch.structure_version, current
            )
            reached = migration.reached_version
            if reached == current:
                await self.sync_seed(
                    branch.schema_name,
                    manifest.seed,
                    SeedHistoryContext(reached, template_version_id, template_version_label),
                )

        if self._state_store is not None:
            await self._state_store.advance_branch(branch.id, structure_version=reached)
        return self.database(branch.schema_name)

    async def initialize(
        self,
        branch: BranchRecord,
        manifest: TemplateManifest,
        *,
        template_version_id: str | None = None,
        template_version_label: str | None = None,
    ) -> SchemaInitResult:
        """Create the schema at the current structure version and seed it.

        Serialized per metahub by an advisory lock. Tables, seed and baseline
        history row are written in one transaction; rerunning on a complete
        schema changes nothing.

        Raises:
            SchemaLockTimeoutError: If another initialization holds the lock.
            TemplateVersionInvalidError: If the manifest needs a newer structure.
        """
        version = self._catalog.current()
        if manifest.min_structure_version > version:
            raise TemplateVersionInvalidError(
                f"Template {manifest.codename} {manifest.version} requires structure "
                f"version {manifest.min_structure_version}, current is {version}",
                details={"min_structure_version": manifest.min_structure_version},
            )

        lock = self.advisory_lock(
            schema_lock_name(branch.metahub_id), self._settings.schema_lock_timeout_seconds
        )
        if not await lock.acquire():
            raise SchemaLockTimeoutError(
                f"Timed out waiting for the schema lock of metahub {branch.metahub_id}",
                details={"metahub_id": branch.metahub_id, "branch_id": branch.id},
            )

        try:
            database = self.database(branch.schema_name)
            async with database.transaction() as repo:
                tables_created = await repo.run_sync(
                    partial(self._create_schema, schema_name=branch.schema_name, version=version)
                )
                seed_counts = None
                if not await schema_has_seed_data(repo):
                    seed_counts = await TemplateSeedExecutor(database).execute_in(
                        repo, manifest.seed
                    )
                await repo.insert_ignoring_conflict(
                    MIGRATIONS_TABLE,
                    baseline_record(
                        version,
                        self._catalog.snapshot(version),
                        template_version_id,
                        template_version_label,
                    ),
                    ("name",),
                )
        finally:
            await lock.release()

        logger.info(
            "schema_initialized",
            schema_name=branch.schema_name,
            structure_version=version,
            tables_created=tables_created,
            seeded=seed_counts.as_dict() if seed_counts else None,
        )
        return SchemaInitResult(
            structure_version=version, tables_created=tables_created, seed_counts=seed_counts
        )

    def _create_schema(self, connection: Connection, schema_name: str, version: int) -> int:
        ddl = self._ddl_factory(connection, schema_name)
        ddl.create_schema()
        return ddl.create_tables(self._catalog.get(version))

    async def migrate_structure(
        self, schema_name: str, from_version: int, to_version: int
    ) -> StructureMigrationResult:
        """Walk the schema through structure versions.

        A result with skipped destructive changes stops short of to_version;
        callers must store reached_version, never to_version.

        Raises:
            StructureMigrationFailedError: If a step failed and was rolled back.
        """
        migrator = StructureMigrator(
            self.database(schema_name), self._catalog, ddl_factory=self._ddl_factory
        )
        result = await migrator.migrate(from_version, to_version)
        if not result.success:
            raise StructureMigrationFailedError(
                f"Structure migration of {schema_name} failed: {result.error}",
                details={
                    "schema_name": schema_name,
                    "reached_version": result.reached_version,
                    "applied": result.applied,
                },
            )
        logger.info(
            "structure_migrated",
            schema_name=schema_name,
            from_version=from_version,
            reached_version=result.reached_version,
            applied=len(result.applied),
            skipped_destructive=len(result.skipped_destructive),
        )
        return result

    async def sync_seed(
        self, schema_name: str, seed: TemplateSeed, history: SeedHistoryContext
    ) -> SeedSyncResult:
        """Seed an empty schema, or merge into a populated one.

        The seed writes and their template_seed history row share one
        transaction.
        """
        database = self.database(schema_name)
        async with database.connect() as repo:
            has_seed_data = await schema_has_seed_data(repo)

        if has_seed_data:
            merged = await TemplateSeedMigrator(database).migrate_seed(seed, history=history)
            result = SeedSyncResult("migrator", merged.counts, merged.skipped)
        else:
            async with database.transaction() as repo:
                counts = await TemplateSeedExecutor(database).execute_in(repo, seed)
                if counts.total:
                    await repo.insert(
                        MIGRATIONS_TABLE,
                        template_seed_record(
                            structure_version=history.structure_version,
                            counts=counts.as_dict(),
                            skipped=[],
                            template_version_id=history.template_version_id,
                            template_version_label=history.template_version_label,
                        ),
                    )
            result = SeedSyncResult("executor", counts)

        logger.info(
            "seed_synced",
            schema_name=schema_name,
            strategy=result.strategy,
            counts=result.counts.as_dict(),
            skipped=len(result.skipped),
        )
        return result

    async def record_manual_destructive(
        self,
        schema_name: str,
        *,
        structure_version: int,
        applied: list[str],
        performed_by: str | None,
        reason: str | None = None,
    ) -> str:
        """Log DDL an operator applied by hand and return the history row id."""
        async with self.database(schema_name).transaction() as repo:
            row_id = await repo.insert(
                MIGRATIONS_TABLE,
                manual_destructive_record(structure_version, applied, performed_by, reason),
            )
        logger.warning(
            "manual_destructive_recorded",
            schema_name=schema_name,
            structure_version=structure_version,
            changes=len(applied),
            performed_by=performed_by,
        )
        return row_id
