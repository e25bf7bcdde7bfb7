# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Platform records read and updated by the migration engine.

Tables:
    metahubs: tenant root, pinned to a template version.
    metahubs_branches: one physical schema per branch, with its structure
        version and the last template version synced into it.
    metahubs_users: membership, including the member's active branch.
    templates / templates_versions: template catalog and immutable
        versioned manifests.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Template(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "templates"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    description: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    active_version_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)


class TemplateVersion(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "templates_versions"
    __table_args__ = (
        UniqueConstraint("template_id", "version_number", name="uq_templates_versions_number"),
    )

    template_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    version_label: Mapped[str] = mapped_column(String(50), nullable=False)
    min_structure_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    manifest_json: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    manifest_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    changelog: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)


class Metahub(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "metahubs"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    template_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("templates.id", ondelete="SET NULL"), nullable=True
    )
    template_version_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("templates_versions.id", ondelete="SET NULL"),
        nullable=True,
    )
    default_branch_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)


class MetahubBranch(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "metahubs_branches"
    __table_args__ = (
        UniqueConstraint("metahub_id", "codename", name="uq_metahubs_branches_codename"),
    )

    metahub_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("metahubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    codename: Mapped[str] = mapped_column(String(100), nullable=False)
    schema_name: Mapped[str] = mapped_column(String(63), nullable=False, unique=True)
    structure_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_template_version_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), nullable=True
    )
    last_template_version_label: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_template_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class MetahubUser(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "metahubs_users"
    __table_args__ = (UniqueConstraint("metahub_id", "user_id", name="uq_metahubs_users_member"),)

    metahub_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("metahubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="owner")
    active_branch_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
