# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structure catalog: every published version of the system tables.

Each version is a complete, self-contained table list, never a delta. A
published version must not be edited; platform evolution adds a new
version. Renames are declared with ``renamed_from`` on the new table or
index so the diff engine can keep data in place.

The catalog is built once at import time and is immutable. Tests swap it
with override_structure_catalog(), which is scoped to a context.

Example:
    >>> from src.domains.structure.catalog import get_structure_catalog
    >>> catalog = get_structure_catalog()
    >>> catalog.current()
    3
    >>> [t.name for t in catalog.get(1)][:2]
    ['_mhb_objects', '_mhb_attributes']
"""

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import replace
from types import MappingProxyType
from typing import Any

from src.domains.structure.definitions import (
    NOW_DEFAULT,
    UUID_DEFAULT,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
    table_snapshot,
)

# System table names
OBJECTS_TABLE = "_mhb_objects"
ATTRIBUTES_TABLE = "_mhb_attributes"
ELEMENTS_TABLE = "_mhb_elements"
VALUES_TABLE = "_mhb_values"
SETTINGS_TABLE = "_mhb_settings"
LAYOUTS_TABLE = "_mhb_layouts"
LEGACY_WIDGETS_TABLE = "_mhb_layout_zone_widgets"
WIDGETS_TABLE = "_mhb_widgets"
MIGRATIONS_TABLE = "_mhb_migrations"

LIVE_ROW_FILTER = "_upl_deleted = false AND _mhb_deleted = false"


class StructureConfigurationError(Exception):
    """The structure catalog cannot serve a required version.

    This is a deployment bug (missing or malformed definitions), never a
    runtime condition to recover from.
    """

    pass


def _id_column() -> ColumnDefinition:
    return ColumnDefinition("id", "uuid", primary=True, default=UUID_DEFAULT)


# =============================================================================
# Version 1
# =============================================================================

_OBJECTS_V1 = TableDefinition(
    name=OBJECTS_TABLE,
    description="Metahub objects: catalogs, hubs, documents and enumerations",
    columns=(
        _id_column(),
        ColumnDefinition("kind", "string", length=20, nullable=False, indexed=True),
        ColumnDefinition("codename", "string", length=100, nullable=False),
        ColumnDefinition("table_name", "string", length=255, nullable=True),
        ColumnDefinition("presentation", "json", nullable=False, default={}),
        ColumnDefinition("config", "json", nullable=False, default={}),
    ),
    indexes=(
        IndexDefinition(
            "idx_mhb_objects_kind_codename_active",
            ("kind", "codename"),
            unique=True,
            where=LIVE_ROW_FILTER,
        ),
    ),
)

_ATTRIBUTES_V1 = TableDefinition(
    name=ATTRIBUTES_TABLE,
    description="Attribute definitions of metahub objects",
    columns=(
        _id_column(),
        ColumnDefinition("object_id", "uuid", nullable=False, indexed=True),
        ColumnDefinition("codename", "string", length=100, nullable=False),
        ColumnDefinition("data_type", "string", length=20, nullable=False),
        ColumnDefinition("presentation", "json", nullable=False, default={}),
        ColumnDefinition("validation_rules", "json", nullable=False, default={}),
        ColumnDefinition("ui_config", "json", nullable=False, default={}),
        ColumnDefinition("sort_order", "integer", nullable=False, default=0),
        ColumnDefinition("is_required", "boolean", nullable=False, default=False),
        ColumnDefinition("is_display_attribute", "boolean", nullable=False, default=False),
        ColumnDefinition("target_object_id", "uuid", nullable=True),
        ColumnDefinition("target_object_kind", "string", length=20, nullable=True),
    ),
    foreign_keys=(ForeignKeyDefinition("object_id", OBJECTS_TABLE, "id", on_delete="CASCADE"),),
    indexes=(
        IndexDefinition(
            "idx_mhb_attributes_object_codename_active",
            ("object_id", "codename"),
            unique=True,
            where=LIVE_ROW_FILTER,
        ),
        IndexDefinition("idx_mhb_attributes_target_object", ("target_object_id",)),
    ),
)

_ELEMENTS_V1 = TableDefinition(
    name=ELEMENTS_TABLE,
    description="Predefined elements (rows) of metahub objects",
    columns=(
        _id_column(),
        ColumnDefinition("object_id", "uuid", nullable=False, indexed=True),
        ColumnDefinition("data", "json", nullable=False, default={}),
        ColumnDefinition("sort_order", "integer", nullable=False, default=0),
        ColumnDefinition("owner_id", "uuid", nullable=True),
    ),
    foreign_keys=(ForeignKeyDefinition("object_id", OBJECTS_TABLE, "id", on_delete="CASCADE"),),
    indexes=(
        IndexDefinition("idx_mhb_elements_object_sort", ("object_id", "sort_order")),
        IndexDefinition("idx_mhb_elements_data_gin", ("data",), method="gin"),
    ),
)

_SETTINGS_V1 = TableDefinition(
    name=SETTINGS_TABLE,
    description="Metahub-wide key/value settings",
    columns=(
        _id_column(),
        ColumnDefinition("key", "string", length=100, nullable=False),
        ColumnDefinition("value", "json", nullable=False, default={}),
    ),
    unique_constraints=(("key",),),
)

_LAYOUTS_V1 = TableDefinition(
    name=LAYOUTS_TABLE,
    description="Dashboard layouts",
    columns=(
        _id_column(),
        ColumnDefinition("template_key", "string", length=100, nullable=False, default="dashboard"),
        ColumnDefinition("name", "json", nullable=False, default={}),
        ColumnDefinition("description", "json", nullable=True),
        ColumnDefinition("config", "json", nullable=False, default={}),
        ColumnDefinition("is_active", "boolean", nullable=False, default=True),
        ColumnDefinition("is_default", "boolean", nullable=False, default=False),
        ColumnDefinition("sort_order", "integer", nullable=False, default=0),
        ColumnDefinition("owner_id", "uuid", nullable=True),
    ),
    indexes=(
        IndexDefinition("idx_mhb_layouts_template_key", ("template_key",)),
        IndexDefinition(
            "idx_mhb_layouts_default_active",
            ("is_default",),
            unique=True,
            where=f"is_default = true AND {LIVE_ROW_FILTER}",
        ),
    ),
)

_WIDGETS_V1 = TableDefinition(
    name=LEGACY_WIDGETS_TABLE,
    description="Widgets placed in layout zones",
    columns=(
        _id_column(),
        ColumnDefinition("layout_id", "uuid", nullable=False),
        ColumnDefinition("zone", "string", length=20, nullable=False),
        ColumnDefinition("widget_key", "string", length=100, nullable=False),
        ColumnDefinition("sort_order", "integer", nullable=False, default=1),
        ColumnDefinition("config", "json", nullable=False, default={}),
    ),
    foreign_keys=(ForeignKeyDefinition("layout_id", LAYOUTS_TABLE, "id", on_delete="CASCADE"),),
    indexes=(
        IndexDefinition("idx_mhb_layout_zone_widgets_layout_id", ("layout_id",)),
        IndexDefinition(
            "idx_mhb_layout_zone_widgets_layout_zone_sort",
            ("layout_id", "zone", "sort_order"),
        ),
    ),
)

_MIGRATIONS_V1 = TableDefinition(
    name=MIGRATIONS_TABLE,
    description="Structure and template migration history",
    columns=(
        _id_column(),
        ColumnDefinition("name", "string", length=255, nullable=False),
        ColumnDefinition("applied_at", "timestamp", nullable=False, default=NOW_DEFAULT),
        ColumnDefinition("from_version", "integer", nullable=False),
        ColumnDefinition("to_version", "integer", nullable=False),
        ColumnDefinition("meta", "json", nullable=True),
    ),
    indexes=(IndexDefinition("idx_mhb_migrations_applied_at", ("applied_at",)),),
    unique_constraints=(("name",),),
)

STRUCTURE_V1: tuple[TableDefinition, ...] = (
    _OBJECTS_V1,
    _ATTRIBUTES_V1,
    _ELEMENTS_V1,
    _SETTINGS_V1,
    _LAYOUTS_V1,
    _WIDGETS_V1,
    _MIGRATIONS_V1,
)

# =============================================================================
# Version 2: zone widgets table renamed
# =============================================================================

_WIDGETS_V2 = replace(
    _WIDGETS_V1,
    name=WIDGETS_TABLE,
    renamed_from=(LEGACY_WIDGETS_TABLE,),
    indexes=(
        IndexDefinition(
            "idx_mhb_widgets_layout_id",
            ("layout_id",),
            renamed_from=("idx_mhb_layout_zone_widgets_layout_id",),
        ),
        IndexDefinition(
            "idx_mhb_widgets_layout_zone_sort",
            ("layout_id", "zone", "sort_order"),
            renamed_from=("idx_mhb_layout_zone_widgets_layout_zone_sort",),
        ),
    ),
)

STRUCTURE_V2: tuple[TableDefinition, ...] = (
    _OBJECTS_V1,
    _ATTRIBUTES_V1,
    _ELEMENTS_V1,
    _SETTINGS_V1,
    _LAYOUTS_V1,
    _WIDGETS_V2,
    _MIGRATIONS_V1,
)

# =============================================================================
# Version 3: enumeration values, widget activity flag
# =============================================================================

_VALUES_V3 = TableDefinition(
    name=VALUES_TABLE,
    description="Values of enumeration objects",
    columns=(
        _id_column(),
        ColumnDefinition("object_id", "uuid", nullable=False, indexed=True),
        ColumnDefinition("codename", "string", length=100, nullable=False),
        ColumnDefinition("presentation", "json", nullable=False, default={}),
        ColumnDefinition("sort_order", "integer", nullable=False, default=0),
        ColumnDefinition("is_default", "boolean", nullable=False, default=False),
    ),
    foreign_keys=(ForeignKeyDefinition("object_id", OBJECTS_TABLE, "id", on_delete="CASCADE"),),
    indexes=(
        IndexDefinition(
            "idx_mhb_values_object_codename_active",
            ("object_id", "codename"),
            unique=True,
            where=LIVE_ROW_FILTER,
        ),
    ),
)

_WIDGETS_V3 = replace(
    _WIDGETS_V2,
    renamed_from=(),
    columns=_WIDGETS_V2.columns
    + (ColumnDefinition("is_active", "boolean", nullable=True, default=True),),
    indexes=tuple(replace(index, renamed_from=()) for index in _WIDGETS_V2.indexes),
)

STRUCTURE_V3: tuple[TableDefinition, ...] = (
    _OBJECTS_V1,
    _ATTRIBUTES_V1,
    _ELEMENTS_V1,
    _VALUES_V3,
    _SETTINGS_V1,
    _LAYOUTS_V1,
    _WIDGETS_V3,
    _MIGRATIONS_V1,
)

PUBLISHED_STRUCTURE_VERSIONS: tuple[tuple[TableDefinition, ...], ...] = (
    STRUCTURE_V1,
    STRUCTURE_V2,
    STRUCTURE_V3,
)


class StructureCatalog:
    """Immutable lookup from structure version to its table definitions.

    Versions are numbered from 1 without gaps; the highest one is current.
    """

    def __init__(self, versions: Mapping[int, Sequence[TableDefinition]]) -> None:
        if not versions:
            raise StructureConfigurationError("Structure catalog has no versions")

        expected = list(range(1, len(versions) + 1))
        if sorted(versions) != expected:
            raise StructureConfigurationError(
                f"Structure versions must be numbered 1..{len(versions)} without gaps, "
                f"got {sorted(versions)}"
            )

        frozen: dict[int, tuple[TableDefinition, ...]] = {}
        for version in expected:
            tables = tuple(versions[version])
            names = [table.name for table in tables]
            duplicates = sorted({name for name in names if names.count(name) > 1})
            if duplicates:
                raise StructureConfigurationError(
                    f"Structure version {version} declares duplicate tables: {duplicates}"
                )
            frozen[version] = tables

        self._versions: Mapping[int, tuple[TableDefinition, ...]] = MappingProxyType(frozen)

    @classmethod
    def from_sequence(cls, versions: Sequence[Sequence[TableDefinition]]) -> "StructureCatalog":
        """Build a catalog where the n-th list is version n (1-based)."""
        return cls({index: tables for index, tables in enumerate(versions, start=1)})

    def current(self) -> int:
        return len(self._versions)

    def versions(self) -> tuple[int, ...]:
        return tuple(self._versions)

    def has(self, version: int) -> bool:
        return version in self._versions

    def get(self, version: int) -> tuple[TableDefinition, ...]:
        """Table definitions of one version.

        Raises:
            StructureConfigurationError: If the version is not registered.
        """
        try:
            return self._versions[version]
        except KeyError:
            raise StructureConfigurationError(
                f"No table definitions registered for structure version {version} "
                f"(registered: 1..{self.current()})"
            ) from None

    def table(self, version: int, name: str) -> TableDefinition | None:
        for table in self.get(version):
            if table.name == name:
                return table
        return None

    def snapshot(self, version: int) -> dict[str, Any]:
        """JSON-safe description of every table at a version."""
        return {
            "structure_version": version,
            "tables": [table_snapshot(table) for table in self.get(version)],
        }


_DEFAULT_CATALOG = StructureCatalog.from_sequence(PUBLISHED_STRUCTURE_VERSIONS)
_catalog_override: ContextVar[StructureCatalog | None] = ContextVar(
    "structure_catalog_override", default=None
)

CURRENT_STRUCTURE_VERSION = _DEFAULT_CATALOG.current()


def get_structure_catalog() -> StructureCatalog:
    """The catalog in effect for the current context."""
    return _catalog_override.get() or _DEFAULT_CATALOG


@contextmanager
def override_structure_catalog(catalog: StructureCatalog) -> Iterator[StructureCatalog]:
    """Temporarily replace the catalog for the current context.

    Example:
        >>> with override_structure_catalog(StructureCatalog.from_sequence([tables])):
        ...     get_structure_catalog().current()
        1
    """
    token = _catalog_override.set(catalog)
    try:
        yield catalog
    finally:
        _catalog_override.reset(token)
