# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Platform database migrations package.

Alembic revisions for the metahubs platform schema (templates, metahubs,
branches, memberships). Branch schemas are versioned by the structure
migrator and never appear here.
"""
