# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for domain errors and pool error translation."""

import pytest
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from src.domains.shared.errors import (
    MetahubDomainError,
    MigrationApplyLockTimeoutError,
    MigrationBlockedError,
    PoolExhaustedError,
    TemplateSyncNotConfirmedError,
    translate_pool_errors,
)
from src.infrastructure.database.connection import DatabaseError, is_pool_timeout_error


class TestDomainErrors:
    """Tests for error codes and serialization."""

    def test_to_dict(self):
        error = MigrationBlockedError("blocked", details={"blockers": ["x"]})

        assert error.to_dict() == {
            "code": "MIGRATION_BLOCKED",
            "message": "blocked",
            "retryable": False,
            "details": {"blockers": ["x"]},
        }
        assert error.status_code == 422

    @pytest.mark.parametrize(
        "error_class, code, status_code",
        [
            (MigrationApplyLockTimeoutError, "MIGRATION_APPLY_LOCK_TIMEOUT", 409),
            (TemplateSyncNotConfirmedError, "TEMPLATE_SYNC_NOT_CONFIRMED", 409),
            (PoolExhaustedError, "CONNECTION_POOL_EXHAUSTED", 503),
        ],
    )
    def test_codes(self, error_class, code, status_code):
        error = error_class("message")

        assert isinstance(error, MetahubDomainError)
        assert error.code == code
        assert error.status_code == status_code
        assert error.details == {}

    def test_lock_timeout_is_retryable(self):
        assert MigrationApplyLockTimeoutError("busy").retryable is True
        assert PoolExhaustedError("busy").retryable is True


class TestTranslatePoolErrors:
    """Tests for translate_pool_errors."""

    @pytest.mark.asyncio
    async def test_pool_timeout_translated(self):
        with pytest.raises(PoolExhaustedError) as exc_info:
            async with translate_pool_errors("Read branch"):
                raise PoolTimeoutError("QueuePool limit reached")

        assert exc_info.value.details == {"action": "Read branch"}

    @pytest.mark.asyncio
    async def test_wrapped_pool_timeout_translated(self):
        with pytest.raises(PoolExhaustedError):
            async with translate_pool_errors("Apply"):
                raise DatabaseError("failed", PoolTimeoutError("QueuePool limit reached"))

    @pytest.mark.asyncio
    async def test_other_errors_pass_through(self):
        with pytest.raises(RuntimeError):
            async with translate_pool_errors("Apply"):
                raise RuntimeError("boom")

    @pytest.mark.asyncio
    async def test_domain_errors_pass_through(self):
        with pytest.raises(MigrationBlockedError):
            async with translate_pool_errors("Apply"):
                raise MigrationBlockedError("blocked")

    def test_cause_chain(self):
        try:
            try:
                raise PoolTimeoutError("QueuePool limit reached")
            except PoolTimeoutError as e:
                raise RuntimeError("outer") from e
        except RuntimeError as outer:
            assert is_pool_timeout_error(outer) is True

        assert is_pool_timeout_error(ValueError("x")) is False
        assert is_pool_timeout_error(None) is False
