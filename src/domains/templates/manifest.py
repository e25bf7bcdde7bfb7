# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Template manifest models.

A template manifest bundles a semantic version, the minimum structure
version its seed needs, and the seed itself. Manifests are JSON documents
with camelCase keys; the models accept both camelCase and snake_case.

All cross-references inside a seed are codenames. Database ids exist only
once the seed is applied to a schema.

Example:
    >>> manifest = validate_template_manifest(version.manifest_json)
    >>> manifest.seed.layouts[0].codename
    'dashboard'
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

EntityKind = Literal["catalog", "hub", "document", "enumeration"]

SEMVER_PATTERN = r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.-]+)?$"


class TemplateManifestError(Exception):
    """A template manifest failed validation.

    Attributes:
        errors: Pydantic error list, when available.
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class _ManifestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class SeedLayout(_ManifestModel):
    codename: str = Field(..., min_length=1, max_length=100)
    template_key: str = Field(default="dashboard", max_length=100)
    name: dict[str, Any] = Field(default_factory=dict)
    description: dict[str, Any] | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    is_default: bool = False
    sort_order: int = 0


class SeedZoneWidget(_ManifestModel):
    zone: str = Field(..., min_length=1, max_length=20)
    widget_key: str = Field(..., min_length=1, max_length=100)
    sort_order: int = 1
    config: dict[str, Any] = Field(default_factory=dict)


class SeedSetting(_ManifestModel):
    key: str = Field(..., min_length=1, max_length=100)
    value: Any = None


class SeedAttribute(_ManifestModel):
    codename: str = Field(..., min_length=1, max_length=100)
    data_type: str = Field(..., min_length=1, max_length=20)
    name: dict[str, Any] = Field(default_factory=dict)
    description: dict[str, Any] | None = None
    validation_rules: dict[str, Any] = Field(default_factory=dict)
    ui_config: dict[str, Any] = Field(default_factory=dict)
    sort_order: int | None = None
    is_required: bool = False
    is_display_attribute: bool = False
    target_entity_codename: str | None = None
    target_entity_kind: EntityKind | None = None


class SeedEntity(_ManifestModel):
    kind: EntityKind
    codename: str = Field(..., min_length=1, max_length=100)
    name: dict[str, Any] = Field(default_factory=dict)
    description: dict[str, Any] | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    attributes: list[SeedAttribute] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.codename}"


class SeedElement(_ManifestModel):
    data: dict[str, Any] = Field(default_factory=dict)
    sort_order: int = 0


class SeedEnumerationValue(_ManifestModel):
    codename: str = Field(..., min_length=1, max_length=100)
    name: dict[str, Any] = Field(default_factory=dict)
    description: dict[str, Any] | None = None
    sort_order: int = 0
    is_default: bool = False


class TemplateSeed(_ManifestModel):
    layouts: list[SeedLayout] = Field(default_factory=list)
    layout_zone_widgets: dict[str, list[SeedZoneWidget]] = Field(default_factory=dict)
    settings: list[SeedSetting] = Field(default_factory=list)
    entities: list[SeedEntity] = Field(default_factory=list)
    elements: dict[str, list[SeedElement]] = Field(default_factory=dict)
    enumeration_values: dict[str, list[SeedEnumerationValue]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_unique_codenames(self) -> "TemplateSeed":
        layout_codenames = [layout.codename for layout in self.layouts]
        if len(layout_codenames) != len(set(layout_codenames)):
            raise ValueError("layout codenames must be unique")
        entity_keys = [entity.key for entity in self.entities]
        if len(entity_keys) != len(set(entity_keys)):
            raise ValueError("entity (kind, codename) pairs must be unique")
        setting_keys = [setting.key for setting in self.settings]
        if len(setting_keys) != len(set(setting_keys)):
            raise ValueError("setting keys must be unique")
        return self

    def entity(self, kind: str, codename: str) -> SeedEntity | None:
        for entity in self.entities:
            if entity.kind == kind and entity.codename == codename:
                return entity
        return None

    def setting(self, key: str) -> SeedSetting | None:
        for setting in self.settings:
            if setting.key == key:
                return setting
        return None


class TemplateManifest(_ManifestModel):
    codename: str = Field(..., min_length=1, max_length=100)
    version: str = Field(..., pattern=SEMVER_PATTERN)
    min_structure_version: int = Field(default=1, ge=1)
    name: dict[str, Any] = Field(default_factory=dict)
    description: dict[str, Any] | None = None
    seed: TemplateSeed = Field(default_factory=TemplateSeed)


def validate_template_manifest(raw: Any) -> TemplateManifest:
    """Validate a manifest document.

    Raises:
        TemplateManifestError: If the document does not describe a manifest.
    """
    if isinstance(raw, TemplateManifest):
        return raw
    try:
        return TemplateManifest.model_validate(raw)
    except ValidationError as e:
        raise TemplateManifestError(
            f"Invalid template manifest: {e.error_count()} error(s)",
            errors=e.errors(include_url=False),
        ) from e
