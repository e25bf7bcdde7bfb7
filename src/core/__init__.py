# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for the metahubs migration engine.

This package contains:
- config: Application configuration and settings
"""
