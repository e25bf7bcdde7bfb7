# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Handle on the physical schema owned by one metahub branch.

Every unit of work gets its own connection: ``transaction()`` commits on
success and rolls back on any exception, ``connect()`` is for reads.
Connection-pool exhaustion surfaces as ``PoolExhaustedError`` from both.

Example:
    database = BranchSchemaDatabase(engine, "mhb_7f3a_b1", tables)
    async with database.transaction() as repo:
        await repo.insert("_mhb_settings", {...})
"""

from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import AsyncIterator

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine

from src.domains.shared.errors import translate_pool_errors
from src.infrastructure.database.system_tables import SystemTableRepository


class BranchSchemaDatabase:
    """Transaction factory for one branch schema.

    Attributes:
        schema_name: Name of the PostgreSQL schema.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        schema_name: str,
        tables: Mapping[str, sa.Table],
    ) -> None:
        self.schema_name = schema_name
        self._engine = engine
        self._tables = tables

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SystemTableRepository]:
        """One atomic unit of work on the schema."""
        async with translate_pool_errors(f"Opening a transaction on {self.schema_name}"):
            async with self._engine.begin() as connection:
                yield SystemTableRepository(connection, self.schema_name, self._tables)

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[SystemTableRepository]:
        """Read-only access; nothing is committed."""
        async with translate_pool_errors(f"Reading from {self.schema_name}"):
            async with self._engine.connect() as connection:
                yield SystemTableRepository(connection, self.schema_name, self._tables)
