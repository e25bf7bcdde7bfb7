# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Removal of seed content dropped by a newer template version.

Candidates are the items the old seed declared and the new one does not:

- entities, together with their attributes, elements and enumeration values
- attributes of entities both seeds declare
- settings

A candidate is removable only while it still looks exactly as the seeder
left it. No audit actor may be set on any of its rows, and its content must
match what the old seed would have written. Anything else is a blocker.

Modes:
    keep     do nothing (default)
    dry_run  report candidates and blockers, never write
    confirm  soft-delete every candidate in one transaction, or nothing at
             all when any blocker exists
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from src.domains.structure.catalog import (
    ATTRIBUTES_TABLE,
    ELEMENTS_TABLE,
    OBJECTS_TABLE,
    SETTINGS_TABLE,
    VALUES_TABLE,
)
from src.domains.structure.definitions import AUDIT_ACTOR_COLUMNS
from src.domains.templates.manifest import SeedEntity, TemplateSeed
from src.domains.templates.seed_rows import (
    attribute_payload,
    element_signature,
    normalize_setting_value,
    payload_of,
)
from src.infrastructure.database.branch_schema import BranchSchemaDatabase
from src.infrastructure.database.system_tables import Row, SystemTableRepository
from src.utils.canonical_json import json_equal
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class CleanupMode(str, Enum):
    KEEP = "keep"
    DRY_RUN = "dry_run"
    CONFIRM = "confirm"


@dataclass
class CleanupSummary:
    """Rows deleted, or that would be deleted outside confirm mode."""

    entities_deleted: int = 0
    attributes_deleted: int = 0
    elements_deleted: int = 0
    enumeration_values_deleted: int = 0
    settings_deleted: int = 0

    @property
    def total(self) -> int:
        return sum(asdict(self).values())

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class TemplateCleanupResult:
    mode: CleanupMode
    blockers: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    summary: CleanupSummary = field(default_factory=CleanupSummary)
    applied: bool = False

    @property
    def has_changes(self) -> bool:
        return self.summary.total > 0


@dataclass
class _CleanupPlan:
    object_ids: list[str] = field(default_factory=list)
    attribute_ids: list[str] = field(default_factory=list)
    element_ids: list[str] = field(default_factory=list)
    value_ids: list[str] = field(default_factory=list)
    setting_ids: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def summary(self) -> CleanupSummary:
        return CleanupSummary(
            entities_deleted=len(self.object_ids),
            attributes_deleted=len(self.attribute_ids),
            elements_deleted=len(self.element_ids),
            enumeration_values_deleted=len(self.value_ids),
            settings_deleted=len(self.setting_ids),
        )

    def result(self, mode: CleanupMode, *, applied: bool = False) -> TemplateCleanupResult:
        return TemplateCleanupResult(
            mode=mode,
            blockers=list(self.blockers),
            notes=list(self.notes),
            summary=self.summary(),
            applied=applied,
        )


def _actor_of(row: Row) -> Any:
    for column in AUDIT_ACTOR_COLUMNS:
        if row.get(column) is not None:
            return row[column]
    return None


class TemplateSeedCleanupService:
    """Finds and removes untouched seed rows the new template no longer declares."""

    def __init__(self, database: BranchSchemaDatabase) -> None:
        self._database = database

    async def analyze(
        self,
        old_seed: TemplateSeed,
        new_seed: TemplateSeed,
        mode: CleanupMode = CleanupMode.KEEP,
    ) -> TemplateCleanupResult:
        """Report what cleanup would remove and what blocks it. Never writes."""
        mode = CleanupMode(mode)
        if mode is CleanupMode.KEEP:
            return TemplateCleanupResult(mode=mode, notes=["Cleanup mode is keep"])

        async with self._database.connect() as repo:
            plan = await self._plan(repo, old_seed, new_seed)
        return plan.result(mode)

    async def apply(
        self,
        old_seed: TemplateSeed,
        new_seed: TemplateSeed,
        mode: CleanupMode = CleanupMode.KEEP,
        *,
        actor_id: str | None = None,
    ) -> TemplateCleanupResult:
        """Soft-delete candidates in confirm mode; other modes behave like analyze().

        Planning happens inside the write transaction, so the checks and the
        deletes see the same rows.
        """
        mode = CleanupMode(mode)
        if mode is not CleanupMode.CONFIRM:
            return await self.analyze(old_seed, new_seed, mode)

        async with self._database.transaction() as repo:
            plan = await self._plan(repo, old_seed, new_seed)
            if plan.blockers:
                logger.warning(
                    "Cleanup on %s refused: %d blocker(s)", repo.schema_name, len(plan.blockers)
                )
                return plan.result(mode)
            await self._soft_delete(repo, plan, actor_id)

        result = plan.result(mode, applied=True)
        logger.info("Cleanup on %s: %s", self._database.schema_name, result.summary.as_dict())
        return result

    async def _plan(
        self, repo: SystemTableRepository, old_seed: TemplateSeed, new_seed: TemplateSeed
    ) -> _CleanupPlan:
        plan = _CleanupPlan()
        has_values = await repo.has_table(VALUES_TABLE)

        for entity in old_seed.entities:
            new_entity = new_seed.entity(entity.kind, entity.codename)
            if new_entity is None:
                await self._plan_entity(repo, plan, entity, old_seed, has_values)
            else:
                await self._plan_attributes(repo, plan, entity, new_entity)

        await self._plan_settings(repo, plan, old_seed, new_seed)

        for blocker in plan.blockers:
            logger.warning("Cleanup blocked in %s: %s", repo.schema_name, blocker)
        return plan

    async def _plan_entity(
        self,
        repo: SystemTableRepository,
        plan: _CleanupPlan,
        entity: SeedEntity,
        old_seed: TemplateSeed,
        has_values: bool,
    ) -> None:
        row = await repo.first(OBJECTS_TABLE, {"kind": entity.kind, "codename": entity.codename})
        if row is None:
            plan.notes.append(f"entity:{entity.key} already absent")
            return

        object_id = row["id"]
        blockers: list[str] = []
        if _actor_of(row) is not None:
            blockers.append(f"entity:{entity.key} was modified by a user")

        declared = {attribute.codename for attribute in entity.attributes}
        attributes = await repo.select(ATTRIBUTES_TABLE, {"object_id": object_id})
        for attribute in attributes:
            if _actor_of(attribute) is not None:
                blockers.append(
                    f"entity:{entity.key} attribute {attribute['codename']} was modified by a user"
                )
            elif attribute["codename"] not in declared:
                blockers.append(
                    f"entity:{entity.key} attribute {attribute['codename']} "
                    "is not part of the template seed"
                )

        expected = Counter(
            element_signature(element.sort_order, element.data)
            for element in old_seed.elements.get(entity.codename, [])
        )
        elements = await repo.select(ELEMENTS_TABLE, {"object_id": object_id})
        for element in elements:
            signature = element_signature(element.get("sort_order"), element.get("data"))
            if _actor_of(element) is not None:
                blockers.append(f"entity:{entity.key} element {element['id']} was modified by a user")
            elif expected[signature] <= 0:
                blockers.append(
                    f"entity:{entity.key} element {element['id']} differs from the template seed"
                )
            else:
                expected[signature] -= 1

        values: list[Row] = []
        if has_values:
            declared_values = {
                value.codename for value in old_seed.enumeration_values.get(entity.codename, [])
            }
            values = await repo.select(VALUES_TABLE, {"object_id": object_id})
            for value in values:
                if _actor_of(value) is not None:
                    blockers.append(
                        f"entity:{entity.key} value {value['codename']} was modified by a user"
                    )
                elif value["codename"] not in declared_values:
                    blockers.append(
                        f"entity:{entity.key} value {value['codename']} "
                        "is not part of the template seed"
                    )

        if blockers:
            plan.blockers.extend(blockers)
            return

        plan.object_ids.append(object_id)
        plan.attribute_ids.extend(item["id"] for item in attributes)
        plan.element_ids.extend(item["id"] for item in elements)
        plan.value_ids.extend(item["id"] for item in values)

    async def _plan_attributes(
        self,
        repo: SystemTableRepository,
        plan: _CleanupPlan,
        old_entity: SeedEntity,
        new_entity: SeedEntity,
    ) -> None:
        kept = {attribute.codename for attribute in new_entity.attributes}
        dropped = [
            (position, attribute)
            for position, attribute in enumerate(old_entity.attributes)
            if attribute.codename not in kept
        ]
        if not dropped:
            return

        row = await repo.first(
            OBJECTS_TABLE, {"kind": old_entity.kind, "codename": old_entity.codename}
        )
        if row is None:
            return

        for position, attribute in dropped:
            key = f"attribute:{old_entity.key}.{attribute.codename}"
            live = await repo.first(
                ATTRIBUTES_TABLE, {"object_id": row["id"], "codename": attribute.codename}
            )
            if live is None:
                plan.notes.append(f"{key} already absent")
                continue
            if _actor_of(live) is not None:
                plan.blockers.append(f"{key} was modified by a user")
                continue
            expected = attribute_payload(attribute, position)
            if not json_equal(payload_of(live, expected), expected):
                plan.blockers.append(f"{key} differs from the template seed")
                continue
            plan.attribute_ids.append(live["id"])

    async def _plan_settings(
        self,
        repo: SystemTableRepository,
        plan: _CleanupPlan,
        old_seed: TemplateSeed,
        new_seed: TemplateSeed,
    ) -> None:
        for setting in old_seed.settings:
            if new_seed.setting(setting.key) is not None:
                continue
            key = f"setting:{setting.key}"
            live = await repo.first(SETTINGS_TABLE, {"key": setting.key})
            if live is None:
                plan.notes.append(f"{key} already absent")
                continue
            if _actor_of(live) is not None:
                plan.blockers.append(f"{key} was modified by a user")
                continue
            if not json_equal(live.get("value"), normalize_setting_value(setting.value)):
                plan.blockers.append(f"{key} differs from the template seed")
                continue
            plan.setting_ids.append(live["id"])

    @staticmethod
    async def _soft_delete(
        repo: SystemTableRepository, plan: _CleanupPlan, actor_id: str | None
    ) -> None:
        now = utc_now()
        deletion = {
            "_mhb_deleted": True,
            "_mhb_deleted_at": now,
            "_mhb_deleted_by": actor_id,
            "_upl_updated_at": now,
            "_upl_updated_by": actor_id,
        }
        # Children before their parent objects
        for table_name, ids in (
            (ATTRIBUTES_TABLE, plan.attribute_ids),
            (ELEMENTS_TABLE, plan.element_ids),
            (VALUES_TABLE, plan.value_ids),
            (OBJECTS_TABLE, plan.object_ids),
            (SETTINGS_TABLE, plan.setting_ids),
        ):
            if ids:
                await repo.update(table_name, {"id": ids}, deletion, bump_version=True)
