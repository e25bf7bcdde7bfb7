# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest fixtures for database integration tests.

Tests here need a disposable PostgreSQL database given by TEST_DATABASE_URL
and are skipped without it. Every test gets a platform schema migrated
from scratch and unique branch schema names; all of it is dropped
afterwards.
"""

import os
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.core.config.settings import MigrationSettings
from src.domains.migrations.orchestrator import MetahubMigrationService
from src.domains.migrations.schema_service import MetahubSchemaService
from src.domains.migrations.state_store import SqlAlchemyPlatformStateStore
from src.infrastructure.database.migrations.runner import run_platform_migrations
from src.infrastructure.database.models.base import PLATFORM_SCHEMA


@pytest.fixture(scope="session")
def database_url() -> str:
    """Get the test database URL, skipping when none is configured."""
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL is not set")
    return url


@pytest.fixture
def branch_schemas() -> list[str]:
    """Branch schema names created by a test, dropped on teardown."""
    return []


@pytest.fixture
def new_schema_name(branch_schemas):
    def make() -> str:
        name = f"mhb_it_{uuid4().hex[:12]}"
        branch_schemas.append(name)
        return name

    return make


@pytest_asyncio.fixture(scope="function")
async def db_engine(database_url: str, branch_schemas) -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine with a freshly migrated platform schema."""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.execute(text(f'DROP SCHEMA IF EXISTS "{PLATFORM_SCHEMA}" CASCADE'))
    await run_platform_migrations(engine)

    yield engine

    async with engine.begin() as conn:
        for name in branch_schemas:
            await conn.execute(text(f'DROP SCHEMA IF EXISTS "{name}" CASCADE'))
        await conn.execute(text(f'DROP SCHEMA IF EXISTS "{PLATFORM_SCHEMA}" CASCADE'))

    await engine.dispose()


@pytest.fixture
def db_sessionmaker(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def integration_settings() -> MigrationSettings:
    return MigrationSettings(
        apply_lock_timeout_seconds=5,
        schema_lock_timeout_seconds=5,
        lock_poll_interval_seconds=0.05,
    )


@pytest.fixture
def platform_store(db_sessionmaker) -> SqlAlchemyPlatformStateStore:
    return SqlAlchemyPlatformStateStore(db_sessionmaker)


@pytest.fixture
def pg_schema_service(db_engine, integration_settings, platform_store) -> MetahubSchemaService:
    return MetahubSchemaService(db_engine, integration_settings, state_store=platform_store)


@pytest.fixture
def migration_service(
    platform_store, pg_schema_service, integration_settings
) -> MetahubMigrationService:
    return MetahubMigrationService(platform_store, pg_schema_service, integration_settings)
