# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Incremental merge of a template seed into an already populated schema.

The migrator walks the seed in the executor's order and inserts only what
is missing by natural key:

- layout: template_key
- zone widget: (layout, zone, widget_key, sort_order)
- setting: key (soft-deleted rows count, the key is unique)
- entity: (kind, codename)
- attribute: (object, codename)
- enumeration value: (object, codename)
- elements: skipped entirely when the entity already has any live element

Existing rows are never updated. An incoming default layout is inserted as
non-default when the schema already has a default layout.

A dry run performs the same reads on a plain connection and fills ids of
would-be rows with ``dry-run:`` placeholders; rows under a placeholder are
counted without further lookups.
"""

import logging
from dataclasses import dataclass, field

from src.domains.history.meta import template_seed_record
from src.domains.structure.catalog import (
    ATTRIBUTES_TABLE,
    ELEMENTS_TABLE,
    LAYOUTS_TABLE,
    MIGRATIONS_TABLE,
    OBJECTS_TABLE,
    SETTINGS_TABLE,
    VALUES_TABLE,
    WIDGETS_TABLE,
)
from src.domains.templates.layout_config import build_dashboard_layout_config
from src.domains.templates.manifest import SeedEntity, TemplateSeed
from src.domains.templates.seed_rows import (
    EntityIndex,
    SeedCounts,
    attribute_row,
    element_row,
    enumeration_value_row,
    layout_row,
    normalize_setting_value,
    object_row,
    system_audit_values,
    widget_row,
)
from src.infrastructure.database.branch_schema import BranchSchemaDatabase
from src.infrastructure.database.system_tables import SystemTableRepository
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

DRY_RUN_PREFIX = "dry-run:"


def _is_placeholder(row_id: str) -> bool:
    return row_id.startswith(DRY_RUN_PREFIX)


@dataclass(frozen=True)
class SeedHistoryContext:
    """What the template_seed history row records besides counts."""

    structure_version: int
    template_version_id: str | None = None
    template_version_label: str | None = None


@dataclass
class SeedMigrationResult:
    counts: SeedCounts = field(default_factory=SeedCounts)
    skipped: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def has_changes(self) -> bool:
        return self.counts.total > 0


class _SeedMerge:
    """State of one merge pass."""

    def __init__(self, repo: SystemTableRepository, *, dry_run: bool) -> None:
        self.repo = repo
        self.dry_run = dry_run
        self.audit = system_audit_values(utc_now())
        self.result = SeedMigrationResult(dry_run=dry_run)
        self.entities = EntityIndex()

    @property
    def counts(self) -> SeedCounts:
        return self.result.counts

    def skip(self, reason: str) -> None:
        self.result.skipped.append(reason)

    async def insert(self, table_name: str, values: dict, placeholder: str) -> str:
        if self.dry_run:
            return f"{DRY_RUN_PREFIX}{placeholder}"
        return await self.repo.insert(table_name, {**values, **self.audit})


class TemplateSeedMigrator:
    """Adds missing seed rows to a schema that already has seed data."""

    def __init__(self, database: BranchSchemaDatabase) -> None:
        self._database = database

    async def migrate_seed(
        self,
        seed: TemplateSeed,
        *,
        dry_run: bool = False,
        history: SeedHistoryContext | None = None,
    ) -> SeedMigrationResult:
        """Merge the seed, or preview the merge when dry_run is set.

        With a history context, a template_seed row is written in the same
        transaction when anything was inserted.
        """
        if dry_run:
            async with self._database.connect() as repo:
                return await self.merge(repo, seed, dry_run=True)

        async with self._database.transaction() as repo:
            result = await self.merge(repo, seed)
            if history is not None and result.has_changes:
                await repo.insert(
                    MIGRATIONS_TABLE,
                    template_seed_record(
                        structure_version=history.structure_version,
                        counts=result.counts.as_dict(),
                        skipped=result.skipped,
                        template_version_id=history.template_version_id,
                        template_version_label=history.template_version_label,
                    ),
                )
            return result

    async def merge(
        self, repo: SystemTableRepository, seed: TemplateSeed, *, dry_run: bool = False
    ) -> SeedMigrationResult:
        """Run one merge pass on a connection or transaction owned by the caller."""
        state = _SeedMerge(repo, dry_run=dry_run)

        layout_ids = await self._merge_layouts(state, seed)
        await self._merge_widgets(state, seed, layout_ids)
        await self._merge_settings(state, seed)
        for entity in seed.entities:
            await self._merge_entity(state, entity)
        await self._merge_enumeration_values(state, seed)
        await self._merge_elements(state, seed)

        logger.info(
            "Seed merge on %s%s: %s, %d skipped",
            repo.schema_name,
            " (dry run)" if dry_run else "",
            state.counts.as_dict(),
            len(state.result.skipped),
        )
        return state.result

    async def _merge_layouts(self, state: _SeedMerge, seed: TemplateSeed) -> dict[str, str]:
        layout_ids: dict[str, str] = {}
        default_exists: bool | None = None

        for layout in seed.layouts:
            existing = await state.repo.first(LAYOUTS_TABLE, {"template_key": layout.template_key})
            if existing is not None:
                layout_ids[layout.codename] = existing["id"]
                state.skip(f"layout:{layout.codename} already exists")
                continue

            is_default = layout.is_default
            if is_default:
                if default_exists is None:
                    default_exists = (
                        await state.repo.first(LAYOUTS_TABLE, {"is_default": True}) is not None
                    )
                if default_exists:
                    is_default = False
                    state.skip(f"layout:{layout.codename} default kept on the existing layout")
                default_exists = True

            layout_ids[layout.codename] = await state.insert(
                LAYOUTS_TABLE,
                layout_row(layout, is_default=is_default),
                f"layout:{layout.codename}",
            )
            state.counts.layouts_added += 1

        return layout_ids

    async def _merge_widgets(
        self, state: _SeedMerge, seed: TemplateSeed, layout_ids: dict[str, str]
    ) -> None:
        for layout_codename, widgets in seed.layout_zone_widgets.items():
            layout_id = layout_ids.get(layout_codename)
            if layout_id is None:
                logger.warning("Widgets reference unknown layout %s", layout_codename)
                state.skip(f"widgets:{layout_codename} layout not found")
                continue

            if _is_placeholder(layout_id):
                state.counts.zone_widgets_added += len(widgets)
                continue

            inserted = 0
            for widget in widgets:
                natural_key = {
                    "layout_id": layout_id,
                    "zone": widget.zone,
                    "widget_key": widget.widget_key,
                }
                if await state.repo.first(
                    WIDGETS_TABLE, {**natural_key, "sort_order": widget.sort_order}
                ):
                    state.skip(
                        f"widget:{layout_codename}/{widget.zone}/{widget.widget_key} already exists"
                    )
                    continue

                sibling = await state.repo.first(WIDGETS_TABLE, natural_key)
                is_active = True
                if sibling is not None and sibling.get("is_active") is not None:
                    is_active = sibling["is_active"]

                await state.insert(
                    WIDGETS_TABLE,
                    {**widget_row(layout_id, widget), "is_active": is_active},
                    f"widget:{widget.widget_key}",
                )
                state.counts.zone_widgets_added += 1
                inserted += 1

            if inserted and not state.dry_run:
                await self._refresh_layout_config(state.repo, layout_id)

    @staticmethod
    async def _refresh_layout_config(repo: SystemTableRepository, layout_id: str) -> None:
        layout = await repo.first(LAYOUTS_TABLE, {"id": layout_id})
        if layout is None or layout.get("config"):
            return
        widgets = await repo.select(WIDGETS_TABLE, {"layout_id": layout_id})
        config = build_dashboard_layout_config(
            (row["widget_key"], row["zone"]) for row in widgets if row.get("is_active") is not False
        )
        await repo.update(LAYOUTS_TABLE, {"id": layout_id}, {"config": config})

    async def _merge_settings(self, state: _SeedMerge, seed: TemplateSeed) -> None:
        for setting in seed.settings:
            if await state.repo.first(SETTINGS_TABLE, {"key": setting.key}, live=False):
                state.skip(f"setting:{setting.key} already exists")
                continue
            await state.insert(
                SETTINGS_TABLE,
                {"key": setting.key, "value": normalize_setting_value(setting.value)},
                f"setting:{setting.key}",
            )
            state.counts.settings_added += 1

    async def _merge_entity(self, state: _SeedMerge, entity: SeedEntity) -> None:
        existing = await state.repo.first(
            OBJECTS_TABLE, {"kind": entity.kind, "codename": entity.codename}
        )
        if existing is not None:
            object_id = existing["id"]
            state.skip(f"entity:{entity.key} already exists")
        else:
            object_id = await state.insert(OBJECTS_TABLE, object_row(entity), f"entity:{entity.key}")
            state.counts.entities_added += 1
        state.entities.add(entity.kind, entity.codename, object_id)

        for position, attribute in enumerate(entity.attributes):
            if not _is_placeholder(object_id) and await state.repo.first(
                ATTRIBUTES_TABLE, {"object_id": object_id, "codename": attribute.codename}
            ):
                continue

            target = None
            if attribute.target_entity_codename:
                target = await self._resolve_entity(
                    state, attribute.target_entity_codename, attribute.target_entity_kind
                )
                if target is None:
                    logger.warning(
                        "Attribute %s.%s targets unknown entity %s",
                        entity.key,
                        attribute.codename,
                        attribute.target_entity_codename,
                    )
                    state.skip(
                        f"attribute:{entity.key}.{attribute.codename} target "
                        f"{attribute.target_entity_codename} not found"
                    )
                    continue

            await state.insert(
                ATTRIBUTES_TABLE,
                attribute_row(object_id, attribute, position, target),
                f"attribute:{entity.key}.{attribute.codename}",
            )
            state.counts.attributes_added += 1

    @staticmethod
    async def _resolve_entity(
        state: _SeedMerge, codename: str, kind: str | None = None
    ) -> tuple[str, str] | None:
        """Resolve against entities seen in this pass, then live objects."""
        resolved = state.entities.resolve(codename, kind)
        if resolved is not None:
            return resolved

        filters = {"codename": codename}
        if kind is not None:
            filters["kind"] = kind
        rows = await state.repo.select(OBJECTS_TABLE, filters, limit=2)
        if len(rows) != 1:
            return None
        state.entities.add(rows[0]["kind"], codename, rows[0]["id"])
        return rows[0]["id"], rows[0]["kind"]

    async def _merge_enumeration_values(self, state: _SeedMerge, seed: TemplateSeed) -> None:
        for entity_codename, values in seed.enumeration_values.items():
            resolved = await self._resolve_entity(
                state, entity_codename, "enumeration"
            ) or await self._resolve_entity(state, entity_codename)
            if resolved is None:
                logger.warning("Enumeration values reference unknown entity %s", entity_codename)
                state.skip(f"enumerationValues:{entity_codename} entity not found")
                continue

            object_id = resolved[0]
            for value in values:
                if not _is_placeholder(object_id) and await state.repo.first(
                    VALUES_TABLE, {"object_id": object_id, "codename": value.codename}
                ):
                    continue
                await state.insert(
                    VALUES_TABLE,
                    enumeration_value_row(object_id, value),
                    f"value:{entity_codename}.{value.codename}",
                )
                state.counts.enumeration_values_added += 1

    async def _merge_elements(self, state: _SeedMerge, seed: TemplateSeed) -> None:
        for entity_codename, elements in seed.elements.items():
            resolved = await self._resolve_entity(state, entity_codename)
            if resolved is None:
                logger.warning("Elements reference unknown or ambiguous entity %s", entity_codename)
                state.skip(f"elements:{entity_codename} entity not found")
                continue

            object_id = resolved[0]
            if not _is_placeholder(object_id) and await state.repo.count(
                ELEMENTS_TABLE, {"object_id": object_id}
            ):
                state.skip(f"elements:{entity_codename} entity already has elements")
                continue

            for element in elements:
                await state.insert(
                    ELEMENTS_TABLE, element_row(object_id, element), f"element:{entity_codename}"
                )
                state.counts.elements_added += 1
