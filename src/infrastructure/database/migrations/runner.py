# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Platform schema migration runner.

Applies the Alembic revisions of the platform schema programmatically,
without the alembic CLI. Branch schemas are not versioned here; the
structure migrator owns them.

Example:
    from src.infrastructure.database.migrations.runner import run_platform_migrations

    applied = await run_platform_migrations(get_engine())
"""

import importlib
import logging
from typing import Any, Callable

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from src.infrastructure.database.models.base import PLATFORM_SCHEMA

logger = logging.getLogger(__name__)

# Migration files in order (must be maintained manually)
PLATFORM_MIGRATIONS = [
    "001_initial_schema",
]

VERSION_TABLE = f'"{PLATFORM_SCHEMA}".alembic_version'


async def run_platform_migrations(
    engine: AsyncEngine,
    target_revision: str | None = None,
) -> list[str]:
    """Run pending migrations of the platform schema.

    Args:
        engine: Platform database engine.
        target_revision: Optional revision to stop at. If None, runs all
            pending migrations.

    Returns:
        List of applied migration revision IDs.
    """
    await _ensure_version_table(engine)

    current_version = await _get_current_version(engine)
    logger.info("Current platform migration version: %s", current_version or "None")

    migrations_to_apply = get_pending_migrations(current_version, target_revision)
    if not migrations_to_apply:
        logger.info("No pending platform migrations")
        return []

    logger.info(
        "Applying %d platform migrations: %s",
        len(migrations_to_apply),
        ", ".join(migrations_to_apply),
    )

    applied = []
    for revision in migrations_to_apply:
        await _apply_migration(engine, revision)
        applied.append(revision)
        logger.info("Applied platform migration: %s", revision)

    return applied


async def _ensure_version_table(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{PLATFORM_SCHEMA}"'))
        await conn.execute(
            text(f"""
                CREATE TABLE IF NOT EXISTS {VERSION_TABLE} (
                    version_num VARCHAR(128) NOT NULL,
                    CONSTRAINT alembic_version_pkc PRIMARY KEY (version_num)
                )
            """)
        )


async def _get_current_version(engine: AsyncEngine) -> str | None:
    async with engine.connect() as conn:
        result = await conn.execute(text(f"SELECT version_num FROM {VERSION_TABLE} LIMIT 1"))
        row = result.fetchone()
        return row[0] if row else None


def get_pending_migrations(
    current_version: str | None,
    target_revision: str | None = None,
) -> list[str]:
    """Revisions to apply, in order, to get from current_version to the target.

    An unknown current or target revision yields no migrations.
    """
    if current_version is None:
        start_idx = 0
    else:
        try:
            start_idx = PLATFORM_MIGRATIONS.index(current_version) + 1
        except ValueError:
            logger.warning("Current version %s not in known migrations list", current_version)
            return []

    if target_revision:
        try:
            end_idx = PLATFORM_MIGRATIONS.index(target_revision) + 1
        except ValueError:
            logger.warning("Target revision %s not found", target_revision)
            return []
    else:
        end_idx = len(PLATFORM_MIGRATIONS)

    return PLATFORM_MIGRATIONS[start_idx:end_idx]


async def _apply_migration(engine: AsyncEngine, revision: str) -> None:
    module_name = f"src.infrastructure.database.migrations.platform.{revision}"
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ImportError(f"Cannot import migration {revision}: {e}") from e

    upgrade_fn: Callable[[], None] | None = getattr(module, "upgrade", None)
    if upgrade_fn is None:
        raise ValueError(f"Migration {revision} has no upgrade() function")

    async with engine.begin() as conn:
        await conn.run_sync(_run_upgrade_sync, upgrade_fn)
        await conn.execute(text(f"DELETE FROM {VERSION_TABLE}"))
        await conn.execute(
            text(f"INSERT INTO {VERSION_TABLE} (version_num) VALUES (:version)"),
            {"version": revision},
        )


def _run_upgrade_sync(connection: Connection, upgrade_fn: Callable[[], None]) -> None:
    """Run an upgrade function with alembic's ``op`` bound to this connection."""
    context = MigrationContext.configure(connection)
    with context.begin_transaction():
        with Operations.context(context):
            upgrade_fn()


async def get_migration_status(engine: AsyncEngine) -> dict[str, Any]:
    """Current, pending and known platform migrations."""
    await _ensure_version_table(engine)
    current_version = await _get_current_version(engine)
    pending = get_pending_migrations(current_version)

    return {
        "current_version": current_version,
        "latest_version": PLATFORM_MIGRATIONS[-1] if PLATFORM_MIGRATIONS else None,
        "pending_count": len(pending),
        "pending_migrations": pending,
        "all_migrations": PLATFORM_MIGRATIONS,
        "is_up_to_date": len(pending) == 0,
    }
