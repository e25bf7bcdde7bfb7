# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for Metahubs.

Domains:
    structure: Versioned system tables, diffing and DDL application.
    templates: Template manifests, seeding, seed merge and cleanup.
    history: Migration history rows and their meta payloads.
    migrations: Branch schema lifecycle and migration orchestration.
    shared: Domain errors.
"""
