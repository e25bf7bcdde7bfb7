"""Metahubs migration engine.

Structural migration and template seed reconciliation for per-branch
metahub schemas.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
