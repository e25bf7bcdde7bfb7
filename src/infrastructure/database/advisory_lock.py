# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""PostgreSQL session-level advisory locks.

A session-level advisory lock belongs to the connection that took it, so
the lock keeps one pooled connection checked out from acquire() until
release(). Acquisition polls ``pg_try_advisory_lock`` until a bounded
timeout expires instead of blocking inside the server, which keeps the
wait cancellable and the timeout under our control.

Example:
    lock = AdvisoryLock(engine, "metahub-migration-apply:" + branch_id, timeout=30)
    if not await lock.acquire():
        raise MigrationApplyLockTimeoutError(...)
    try:
        ...
    finally:
        await lock.release()
"""

import asyncio
import hashlib
import logging
import time
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

logger = logging.getLogger(__name__)


def advisory_lock_key(name: str) -> int:
    """Map a lock name to a signed 64-bit advisory lock key.

    The key is stable across processes and Python versions (unlike ``hash``).
    """
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, byteorder="big", signed=True)


class AdvisoryLock:
    """One named advisory lock held on a dedicated connection.

    Attributes:
        name: Human-readable lock name.
        key: Derived bigint key passed to PostgreSQL.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        name: str,
        *,
        timeout: float,
        poll_interval: float = 0.25,
    ) -> None:
        self.name = name
        self.key = advisory_lock_key(name)
        self._engine = engine
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._connection: Optional[AsyncConnection] = None

    @property
    def held(self) -> bool:
        return self._connection is not None

    async def acquire(self) -> bool:
        """Try to take the lock until the timeout expires.

        Returns:
            True when the lock is held, False on timeout.
        """
        if self._connection is not None:
            return True

        connection = await self._engine.connect()
        deadline = time.monotonic() + self._timeout
        try:
            while True:
                result = await connection.execute(
                    text("SELECT pg_try_advisory_lock(:key)"), {"key": self.key}
                )
                # Keep the session lock outside any open transaction
                await connection.commit()
                if result.scalar():
                    self._connection = connection
                    logger.debug("Acquired advisory lock %s", self.name)
                    return True
                if time.monotonic() >= deadline:
                    break
                await asyncio.sleep(self._poll_interval)
        except BaseException:
            await connection.close()
            raise

        await connection.close()
        logger.info("Timed out waiting for advisory lock %s", self.name)
        return False

    async def release(self) -> None:
        """Release the lock and return the connection to the pool."""
        connection = self._connection
        if connection is None:
            return
        self._connection = None
        try:
            await connection.execute(
                text("SELECT pg_advisory_unlock(:key)"), {"key": self.key}
            )
            await connection.commit()
        except SQLAlchemyError as e:
            # A discarded DBAPI connection ends the session and frees the lock
            logger.warning("Failed to release advisory lock %s: %s", self.name, e)
            await connection.invalidate()
        finally:
            await connection.close()
