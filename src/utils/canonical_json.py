# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Canonical JSON serialization.

Two JSON documents are considered equal when their canonical forms are
identical: object keys sorted, no insignificant whitespace, non-ASCII kept
as-is. Used wherever stored JSONB must be compared with expected content
independently of key order.
"""

import json
from typing import Any


def canonical_json(value: Any) -> str:
    """Serialize value with sorted keys and compact separators."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def json_equal(left: Any, right: Any) -> bool:
    """Deep equality through canonical serialization."""
    return canonical_json(left) == canonical_json(right)
