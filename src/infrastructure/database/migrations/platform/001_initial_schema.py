# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Initial platform schema.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2025-01-20

Creates the metahubs platform schema with the template catalog, metahubs,
branches and memberships, matching src/infrastructure/database/models/platform.py.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = ("platform",)
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = "metahubs"


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=False),
        server_default=sa.text("gen_random_uuid()"),
        primary_key=True,
    )


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    """Create platform tables."""
    op.execute(f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}"')

    # ==========================================================================
    # 1. templates table
    # ==========================================================================
    op.create_table(
        "templates",
        _id_column(),
        sa.Column("codename", sa.String(100), nullable=False, unique=True),
        sa.Column("name", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("description", postgresql.JSONB, nullable=True),
        sa.Column("is_system", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("active_version_id", postgresql.UUID(as_uuid=False), nullable=True),
        *_timestamp_columns(),
        schema=SCHEMA,
    )

    # ==========================================================================
    # 2. templates_versions table
    # ==========================================================================
    op.create_table(
        "templates_versions",
        _id_column(),
        sa.Column(
            "template_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey(f"{SCHEMA}.templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version_number", sa.Integer, nullable=False),
        sa.Column("version_label", sa.String(50), nullable=False),
        sa.Column("min_structure_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("manifest_json", postgresql.JSONB, nullable=False),
        sa.Column("manifest_hash", sa.String(64), nullable=True),
        sa.Column("changelog", postgresql.JSONB, nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("template_id", "version_number", name="uq_templates_versions_number"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_templates_versions_template_id",
        "templates_versions",
        ["template_id"],
        schema=SCHEMA,
    )

    # ==========================================================================
    # 3. metahubs table
    # ==========================================================================
    op.create_table(
        "metahubs",
        _id_column(),
        sa.Column("codename", sa.String(100), nullable=False, unique=True),
        sa.Column("name", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "template_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey(f"{SCHEMA}.templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "template_version_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey(f"{SCHEMA}.templates_versions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("default_branch_id", postgresql.UUID(as_uuid=False), nullable=True),
        *_timestamp_columns(),
        schema=SCHEMA,
    )

    # ==========================================================================
    # 4. metahubs_branches table
    # ==========================================================================
    op.create_table(
        "metahubs_branches",
        _id_column(),
        sa.Column(
            "metahub_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey(f"{SCHEMA}.metahubs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("codename", sa.String(100), nullable=False),
        sa.Column("schema_name", sa.String(63), nullable=False, unique=True),
        sa.Column("structure_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("last_template_version_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("last_template_version_label", sa.String(50), nullable=True),
        sa.Column("last_template_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("metahub_id", "codename", name="uq_metahubs_branches_codename"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_metahubs_branches_metahub_id",
        "metahubs_branches",
        ["metahub_id"],
        schema=SCHEMA,
    )

    # ==========================================================================
    # 5. metahubs_users table
    # ==========================================================================
    op.create_table(
        "metahubs_users",
        _id_column(),
        sa.Column(
            "metahub_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey(f"{SCHEMA}.metahubs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="owner"),
        sa.Column("active_branch_id", postgresql.UUID(as_uuid=False), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("metahub_id", "user_id", name="uq_metahubs_users_member"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_metahubs_users_metahub_id", "metahubs_users", ["metahub_id"], schema=SCHEMA
    )
    op.create_index("ix_metahubs_users_user_id", "metahubs_users", ["user_id"], schema=SCHEMA)


def downgrade() -> None:
    """Drop platform tables."""
    op.drop_table("metahubs_users", schema=SCHEMA)
    op.drop_table("metahubs_branches", schema=SCHEMA)
    op.drop_table("metahubs", schema=SCHEMA)
    op.drop_table("templates_versions", schema=SCHEMA)
    op.drop_table("templates", schema=SCHEMA)
