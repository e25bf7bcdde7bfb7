# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structure migrator.

Walks consecutive structure versions and applies the additive part of each
diff to a branch schema. Each version step runs in its own transaction
together with the history row describing it, so a failing step leaves
earlier steps committed and recorded.

Destructive changes are never applied. They are logged, recorded in the
history row of their step and returned; the walk stops after such a step
because later versions assume the manual change has been made.

Example:
    migrator = StructureMigrator(database)
    result = await migrator.migrate(1, 3)
    if not result.success:
        logger.error("Structure migration failed: %s", result.error)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from src.domains.history.meta import structure_record
from src.domains.shared.errors import MetahubDomainError
from src.domains.structure.catalog import (
    MIGRATIONS_TABLE,
    StructureCatalog,
    StructureConfigurationError,
    get_structure_catalog,
)
from src.domains.structure.ddl import DDLApplyError, SystemTableDDL
from src.domains.structure.diff import (
    ChangeType,
    StructureChange,
    StructureDiff,
    calculate_structure_diff,
)
from src.infrastructure.database.branch_schema import BranchSchemaDatabase

logger = logging.getLogger(__name__)

DDLFactory = Callable[[Connection, str], SystemTableDDL]

# Tables first, then columns, then indexes, then foreign keys
ADDITIVE_APPLY_ORDER: dict[ChangeType, int] = {
    ChangeType.RENAME_TABLE: 10,
    ChangeType.ADD_TABLE: 20,
    ChangeType.RENAME_INDEX: 30,
    ChangeType.ADD_COLUMN: 40,
    ChangeType.ALTER_COLUMN: 50,
    ChangeType.ADD_INDEX: 60,
    ChangeType.ADD_FK: 70,
}


def order_additive_changes(changes: tuple[StructureChange, ...]) -> list[StructureChange]:
    """Sort additive changes into apply order, keeping diff order within a kind."""
    return sorted(changes, key=lambda change: ADDITIVE_APPLY_ORDER[change.change_type])


@dataclass
class StructureMigrationResult:
    """Outcome of a structure migration over a version range.

    Attributes:
        from_version: Version the walk started from.
        to_version: Version the walk aimed for.
        reached_version: Last version whose step committed.
        applied: Descriptions of changes that altered the schema.
        skipped_destructive: Descriptions of destructive changes left for
            manual handling.
        success: False when a step failed and was rolled back.
        error: Failure description.
    """

    from_version: int
    to_version: int
    reached_version: int
    applied: list[str] = field(default_factory=list)
    skipped_destructive: list[str] = field(default_factory=list)
    success: bool = True
    error: str | None = None

    @property
    def requires_manual_migration(self) -> bool:
        return bool(self.skipped_destructive)


class StructureMigrator:
    """Applies structure version steps to one branch schema."""

    def __init__(
        self,
        database: BranchSchemaDatabase,
        catalog: StructureCatalog | None = None,
        ddl_factory: DDLFactory = SystemTableDDL.for_connection,
    ) -> None:
        self._database = database
        self._catalog = catalog or get_structure_catalog()
        self._ddl_factory = ddl_factory

    def plan(self, from_version: int, to_version: int) -> list[StructureDiff]:
        """Diff every consecutive version pair between two versions.

        Raises:
            StructureConfigurationError: If the target is beyond the current
                version or any version in the range has no definitions.
        """
        if to_version > self._catalog.current():
            raise StructureConfigurationError(
                f"Target structure version {to_version} is beyond the current "
                f"version {self._catalog.current()}"
            )
        if from_version < 1:
            raise StructureConfigurationError(f"Invalid source structure version {from_version}")

        diffs: list[StructureDiff] = []
        for version in range(from_version, to_version):
            diffs.append(
                calculate_structure_diff(
                    self._catalog.get(version),
                    self._catalog.get(version + 1),
                    version,
                    version + 1,
                )
            )
        return diffs

    async def migrate(self, from_version: int, to_version: int) -> StructureMigrationResult:
        """Apply every additive change from from_version up to to_version.

        Configuration errors are raised before anything is written.
        """
        diffs = self.plan(from_version, to_version)
        result = StructureMigrationResult(
            from_version=from_version,
            to_version=to_version,
            reached_version=from_version,
        )

        for diff in diffs:
            skipped = [change.description for change in diff.destructive]
            for description in skipped:
                logger.warning(
                    "Skipping destructive change in %s (V%d→V%d): %s",
                    self._database.schema_name,
                    diff.from_version,
                    diff.to_version,
                    description,
                )

            try:
                applied = await self._apply_step(diff, skipped)
            except MetahubDomainError:
                raise
            except (SQLAlchemyError, DDLApplyError) as e:
                logger.error(
                    "Structure step V%d→V%d failed for %s: %s",
                    diff.from_version,
                    diff.to_version,
                    self._database.schema_name,
                    e,
                )
                result.success = False
                result.error = f"V{diff.from_version}→V{diff.to_version}: {e}"
                return result

            result.applied.extend(applied)
            result.skipped_destructive.extend(skipped)

            if skipped:
                logger.warning(
                    "Structure migration of %s stopped at V%d: %d destructive change(s) "
                    "require manual migration",
                    self._database.schema_name,
                    diff.from_version,
                    len(skipped),
                )
                return result

            result.reached_version = diff.to_version

        return result

    async def _apply_step(self, diff: StructureDiff, skipped: list[str]) -> list[str]:
        if not diff.has_changes:
            return []

        async with self._database.transaction() as repo:
            applied = await repo.run_sync(partial(self._apply_changes, diff=diff))
            if applied or skipped:
                await repo.insert(
                    MIGRATIONS_TABLE,
                    structure_record(
                        diff.from_version,
                        diff.to_version,
                        applied,
                        skipped,
                        snapshot_before=self._catalog.snapshot(diff.from_version),
                        snapshot_after=self._catalog.snapshot(diff.to_version),
                    ),
                )

        for description in applied:
            logger.info("Applied in %s: %s", self._database.schema_name, description)
        return applied

    def _apply_changes(self, connection: Connection, diff: StructureDiff) -> list[str]:
        ddl = self._ddl_factory(connection, self._database.schema_name)
        applied: list[str] = []
        for change in order_additive_changes(diff.additive):
            if ddl.apply_change(change):
                applied.append(change.description)
        return applied
