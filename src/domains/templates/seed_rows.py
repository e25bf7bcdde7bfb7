# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Row builders shared by the seed executor, migrator and cleanup service.

The same functions that produce inserted rows also produce the payloads
cleanup compares live rows against, so "what the seed would have written"
has a single definition.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from src.domains.templates.manifest import (
    SeedAttribute,
    SeedElement,
    SeedEntity,
    SeedEnumerationValue,
    SeedLayout,
    SeedZoneWidget,
)
from src.utils.canonical_json import canonical_json


@dataclass
class SeedCounts:
    """Rows inserted per category."""

    layouts_added: int = 0
    zone_widgets_added: int = 0
    settings_added: int = 0
    entities_added: int = 0
    attributes_added: int = 0
    enumeration_values_added: int = 0
    elements_added: int = 0

    @property
    def total(self) -> int:
        return sum(asdict(self).values())

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def system_audit_values(now: datetime) -> dict[str, Any]:
    """Audit columns of a seeded row: timestamps set, no actor."""
    return {
        "_upl_created_at": now,
        "_upl_created_by": None,
        "_upl_updated_at": now,
        "_upl_updated_by": None,
    }


def normalize_setting_value(value: Any) -> Any:
    """Stored form of a setting value; scalars are wrapped as {"_value": v}."""
    if isinstance(value, (dict, list)):
        return value
    return {"_value": value}


def layout_row(layout: SeedLayout, *, is_default: bool | None = None) -> dict[str, Any]:
    return {
        "template_key": layout.template_key,
        "name": layout.name,
        "description": layout.description,
        "config": layout.config,
        "is_active": layout.is_active,
        "is_default": layout.is_default if is_default is None else is_default,
        "sort_order": layout.sort_order,
    }


def widget_row(layout_id: str, widget: SeedZoneWidget) -> dict[str, Any]:
    return {
        "layout_id": layout_id,
        "zone": widget.zone,
        "widget_key": widget.widget_key,
        "sort_order": widget.sort_order,
        "config": widget.config,
    }


def object_payload(entity: SeedEntity) -> dict[str, Any]:
    return {
        "presentation": {"name": entity.name, "description": entity.description},
        "config": entity.config,
    }


def object_row(entity: SeedEntity) -> dict[str, Any]:
    return {"kind": entity.kind, "codename": entity.codename, **object_payload(entity)}


def attribute_payload(attribute: SeedAttribute, position: int) -> dict[str, Any]:
    """Content columns of an attribute row; position is its index in the seed."""
    return {
        "data_type": attribute.data_type,
        "presentation": {"name": attribute.name, "description": attribute.description},
        "validation_rules": attribute.validation_rules,
        "ui_config": attribute.ui_config,
        "sort_order": attribute.sort_order if attribute.sort_order is not None else position,
        "is_required": attribute.is_required,
        "is_display_attribute": attribute.is_display_attribute,
    }


def attribute_row(
    object_id: str,
    attribute: SeedAttribute,
    position: int,
    target: tuple[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "object_id": object_id,
        "codename": attribute.codename,
        **attribute_payload(attribute, position),
        "target_object_id": target[0] if target else None,
        "target_object_kind": target[1] if target else None,
    }


def element_row(object_id: str, element: SeedElement) -> dict[str, Any]:
    return {"object_id": object_id, "data": element.data, "sort_order": element.sort_order}


def element_signature(sort_order: Any, data: Any) -> str:
    """Order-independent identity of an element's content."""
    return f"{sort_order}:{canonical_json(data)}"


def enumeration_value_payload(value: SeedEnumerationValue) -> dict[str, Any]:
    return {
        "presentation": {"name": value.name, "description": value.description},
        "sort_order": value.sort_order,
        "is_default": value.is_default,
    }


def enumeration_value_row(object_id: str, value: SeedEnumerationValue) -> dict[str, Any]:
    return {"object_id": object_id, "codename": value.codename, **enumeration_value_payload(value)}


def payload_of(row: dict[str, Any], expected: dict[str, Any]) -> dict[str, Any]:
    """Project a live row onto the keys of an expected payload."""
    return {key: row.get(key) for key in expected}


class EntityIndex:
    """Codename lookup of entity ids, filled as entities are resolved or inserted."""

    def __init__(self) -> None:
        self._ids: dict[tuple[str, str], str] = {}

    def add(self, kind: str, codename: str, entity_id: str) -> None:
        self._ids[(kind, codename)] = entity_id

    def resolve(self, codename: str, kind: str | None = None) -> tuple[str, str] | None:
        """Find (id, kind) by codename.

        Without a kind, a codename used by more than one kind is ambiguous
        and resolves to None.
        """
        if kind is not None:
            entity_id = self._ids.get((kind, codename))
            return (entity_id, kind) if entity_id is not None else None

        matches = [(entity_id, k) for (k, c), entity_id in self._ids.items() if c == codename]
        if len(matches) != 1:
            return None
        return matches[0]

    def __len__(self) -> int:
        return len(self._ids)
