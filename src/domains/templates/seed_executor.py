# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""First-time population of a branch schema from a template seed.

Runs only against a schema without seed data (see schema_has_seed_data).
Everything is inserted in one transaction in dependency order: layouts,
zone widgets, settings, entities with their attributes, enumeration
values, elements.

Codename references are resolved through in-memory maps built while
inserting. An attribute can only target an entity listed before it (or
its own entity), so manifests must order ``entities`` accordingly. An
unresolved reference skips the dependent item and is logged; it never
aborts the seed.
"""

import logging

from src.domains.structure.catalog import (
    ATTRIBUTES_TABLE,
    ELEMENTS_TABLE,
    LAYOUTS_TABLE,
    OBJECTS_TABLE,
    SETTINGS_TABLE,
    VALUES_TABLE,
    WIDGETS_TABLE,
)
from src.domains.templates.layout_config import build_dashboard_layout_config
from src.domains.templates.manifest import TemplateSeed
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

SEED_PRESENCE_TABLES = (LAYOUTS_TABLE, OBJECTS_TABLE, SETTINGS_TABLE)


async def schema_has_seed_data(repo: SystemTableRepository) -> bool:
    """Whether any live layout, object or setting exists."""
    for table_name in SEED_PRESENCE_TABLES:
        if await repo.first(table_name) is not None:
            return True
    return False


class TemplateSeedExecutor:
    """Writes a complete seed into an empty schema."""

    def __init__(self, database: BranchSchemaDatabase) -> None:
        self._database = database

    async def execute(self, seed: TemplateSeed) -> SeedCounts:
        async with self._database.transaction() as repo:
            return await self.execute_in(repo, seed)

    async def execute_in(self, repo: SystemTableRepository, seed: TemplateSeed) -> SeedCounts:
        """Write the seed inside a transaction owned by the caller."""
        audit = system_audit_values(utc_now())
        counts = SeedCounts()

        # Layouts
        layout_ids: dict[str, str] = {}
        for layout in seed.layouts:
            layout_ids[layout.codename] = await repo.insert(
                LAYOUTS_TABLE, {**layout_row(layout), **audit}
            )
            counts.layouts_added += 1

        # Zone widgets, then the derived layout config
        layouts_by_codename = {layout.codename: layout for layout in seed.layouts}
        for layout_codename, widgets in seed.layout_zone_widgets.items():
            layout_id = layout_ids.get(layout_codename)
            if layout_id is None:
                logger.warning(
                    "Skipping %d widget(s) of unknown layout %s in %s",
                    len(widgets),
                    layout_codename,
                    repo.schema_name,
                )
                continue

            for widget in widgets:
                await repo.insert(
                    WIDGETS_TABLE, {**widget_row(layout_id, widget), "is_active": True, **audit}
                )
                counts.zone_widgets_added += 1

            if not layouts_by_codename[layout_codename].config:
                config = build_dashboard_layout_config(
                    (widget.widget_key, widget.zone) for widget in widgets
                )
                await repo.update(LAYOUTS_TABLE, {"id": layout_id}, {"config": config})

        # Settings
        for setting in seed.settings:
            if await repo.first(SETTINGS_TABLE, {"key": setting.key}, live=False) is not None:
                continue
            await repo.insert(
                SETTINGS_TABLE,
                {"key": setting.key, "value": normalize_setting_value(setting.value), **audit},
            )
            counts.settings_added += 1

        # Entities and their attributes
        entities = EntityIndex()
        for entity in seed.entities:
            object_id = await repo.insert(OBJECTS_TABLE, {**object_row(entity), **audit})
            entities.add(entity.kind, entity.codename, object_id)
            counts.entities_added += 1

            for position, attribute in enumerate(entity.attributes):
                target = None
                if attribute.target_entity_codename:
                    target = entities.resolve(
                        attribute.target_entity_codename, attribute.target_entity_kind
                    )
                    if target is None:
                        logger.warning(
                            "Skipping attribute %s.%s: target entity %s not found",
                            entity.key,
                            attribute.codename,
                            attribute.target_entity_codename,
                        )
                        continue
                await repo.insert(
                    ATTRIBUTES_TABLE,
                    {**attribute_row(object_id, attribute, position, target), **audit},
                )
                counts.attributes_added += 1

        # Enumeration values
        for entity_codename, values in seed.enumeration_values.items():
            resolved = entities.resolve(entity_codename, "enumeration") or entities.resolve(
                entity_codename
            )
            if resolved is None:
                logger.warning(
                    "Skipping %d enumeration value(s) of unknown entity %s",
                    len(values),
                    entity_codename,
                )
                continue
            for value in values:
                await repo.insert(
                    VALUES_TABLE, {**enumeration_value_row(resolved[0], value), **audit}
                )
                counts.enumeration_values_added += 1

        # Elements
        for entity_codename, elements in seed.elements.items():
            resolved = entities.resolve(entity_codename)
            if resolved is None:
                logger.warning(
                    "Skipping %d element(s) of unknown or ambiguous entity %s",
                    len(elements),
                    entity_codename,
                )
                continue
            for element in elements:
                await repo.insert(ELEMENTS_TABLE, {**element_row(resolved[0], element), **audit})
                counts.elements_added += 1

        logger.info("Seeded %s: %s", repo.schema_name, counts.as_dict())
        return counts
