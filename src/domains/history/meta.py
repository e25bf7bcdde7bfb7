# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Migration history rows and their tagged ``meta`` payloads.

Every row of ``_mhb_migrations`` carries a JSON ``meta`` document whose
``kind`` selects one of four shapes:

    baseline            schema created at a structure version
    structure           one structure version step
    template_seed       a template seed merge that changed data
    manual_destructive  DDL an operator applied by hand

Rows written by older releases may carry meta in another shape or none at
all; parse_migration_meta() returns None for those instead of failing, so
the history stays listable.
"""

import json
import logging
import secrets
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from src.utils.datetime import epoch_millis

logger = logging.getLogger(__name__)


class _MetaBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class BaselineMeta(_MetaBase):
    kind: Literal["baseline"] = "baseline"
    structure_version: int
    snapshot: dict[str, Any] | None = None
    template_version_id: str | None = None
    template_version_label: str | None = None


class StructureMeta(_MetaBase):
    kind: Literal["structure"] = "structure"
    applied: list[str] = Field(default_factory=list)
    skipped_destructive: list[str] = Field(default_factory=list)
    snapshot_before: dict[str, Any] | None = None
    snapshot_after: dict[str, Any] | None = None


class TemplateSeedMeta(_MetaBase):
    kind: Literal["template_seed"] = "template_seed"
    counts: dict[str, int] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)
    template_version_id: str | None = None
    template_version_label: str | None = None


class ManualDestructiveMeta(_MetaBase):
    kind: Literal["manual_destructive"] = "manual_destructive"
    applied: list[str] = Field(default_factory=list)
    performed_by: str | None = None
    reason: str | None = None


MigrationMeta = Annotated[
    Union[BaselineMeta, StructureMeta, TemplateSeedMeta, ManualDestructiveMeta],
    Field(discriminator="kind"),
]

_meta_adapter: TypeAdapter[MigrationMeta] = TypeAdapter(MigrationMeta)


def parse_migration_meta(raw: Any) -> MigrationMeta | None:
    """Parse a stored meta payload, returning None when it is not recognized."""
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    try:
        return _meta_adapter.validate_python(raw)
    except ValidationError:
        logger.debug("Ignoring unrecognized migration meta: %r", raw)
        return None


def unique_migration_name(prefix: str) -> str:
    """Name unique across retries: prefix, epoch millis and random hex."""
    return f"{prefix}_{epoch_millis()}_{secrets.token_hex(4)}"


def _record(name: str, from_version: int, to_version: int, meta: _MetaBase) -> dict[str, Any]:
    return {
        "name": name,
        "from_version": from_version,
        "to_version": to_version,
        "meta": meta.model_dump(mode="json"),
    }


def baseline_record(
    structure_version: int,
    snapshot: dict[str, Any] | None,
    template_version_id: str | None = None,
    template_version_label: str | None = None,
) -> dict[str, Any]:
    """History row for a schema created directly at a structure version.

    The name is deterministic so that a second initialization is ignored.
    """
    meta = BaselineMeta(
        structure_version=structure_version,
        snapshot=snapshot,
        template_version_id=template_version_id,
        template_version_label=template_version_label,
    )
    return _record(f"baseline_structure_v{structure_version}", 0, structure_version, meta)


def structure_record(
    from_version: int,
    to_version: int,
    applied: list[str],
    skipped_destructive: list[str],
    snapshot_before: dict[str, Any] | None = None,
    snapshot_after: dict[str, Any] | None = None,
) -> dict[str, Any]:
    meta = StructureMeta(
        applied=applied,
        skipped_destructive=skipped_destructive,
        snapshot_before=snapshot_before,
        snapshot_after=snapshot_after,
    )
    name = unique_migration_name(f"structure_v{from_version}_to_v{to_version}")
    return _record(name, from_version, to_version, meta)


def template_seed_record(
    structure_version: int,
    counts: dict[str, int],
    skipped: list[str],
    template_version_id: str | None,
    template_version_label: str | None,
) -> dict[str, Any]:
    meta = TemplateSeedMeta(
        counts=counts,
        skipped=skipped,
        template_version_id=template_version_id,
        template_version_label=template_version_label,
    )
    name = unique_migration_name("template_seed")
    return _record(name, structure_version, structure_version, meta)


def manual_destructive_record(
    structure_version: int,
    applied: list[str],
    performed_by: str | None,
    reason: str | None = None,
) -> dict[str, Any]:
    meta = ManualDestructiveMeta(applied=applied, performed_by=performed_by, reason=reason)
    name = unique_migration_name(f"manual_destructive_v{structure_version}")
    return _record(name, structure_version, structure_version, meta)
