# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for PostgreSQL connections.

This package provides:
- The platform async engine and sessions (metahubs, branches, templates)
- Session-level advisory locks

Branch schemas share the platform engine and are reached through
``branch_schema.BranchSchemaDatabase``.

Example:
    from src.infrastructure.database import get_engine, get_session, init_database

    await init_database(settings)
    async with get_session() as session:
        result = await session.execute(select(MetahubBranch))
"""

from src.infrastructure.database.advisory_lock import AdvisoryLock, advisory_lock_key
from src.infrastructure.database.connection import (
    DatabaseError,
    check_database_connection,
    close_database,
    get_engine,
    get_session,
    get_sessionmaker,
    init_database,
    is_pool_timeout_error,
)

__all__ = [
    # Platform database
    "DatabaseError",
    "check_database_connection",
    "close_database",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "init_database",
    "is_pool_timeout_error",
    # Locks
    "AdvisoryLock",
    "advisory_lock_key",
]
