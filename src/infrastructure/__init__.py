# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer.

This package contains:
- Database connections, advisory locks and branch schema access (PostgreSQL)
- Platform ORM models and their Alembic migrations
"""
