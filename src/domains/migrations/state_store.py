# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Platform records as seen by the migration engine.

The engine reads metahubs, branches, memberships and template versions as
plain immutable records and writes back only two things: a branch's
structure/template pointers and a metahub's template version. The
``PlatformStateStore`` protocol is that whole surface; the SQLAlchemy
implementation maps it onto the platform ORM models.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domains.shared.errors import MetahubNotFoundError, translate_pool_errors
from src.infrastructure.database.models import (
    Metahub,
    MetahubBranch,
    MetahubUser,
    Template,
    TemplateVersion,
)


@dataclass(frozen=True)
class MetahubRecord:
    id: str
    template_id: str | None = None
    template_version_id: str | None = None
    default_branch_id: str | None = None


@dataclass(frozen=True)
class BranchRecord:
    id: str
    metahub_id: str
    schema_name: str
    structure_version: int
    last_template_version_id: str | None = None
    last_template_version_label: str | None = None
    last_template_synced_at: datetime | None = None


@dataclass(frozen=True)
class TemplateVersionRecord:
    id: str
    template_id: str
    version_label: str
    manifest_json: dict[str, Any]


class PlatformStateStore(Protocol):
    """Reads and pointer updates on platform records."""

    async def get_metahub(self, metahub_id: str) -> MetahubRecord | None: ...

    async def get_branch(self, branch_id: str) -> BranchRecord | None: ...

    async def get_active_branch_id(self, metahub_id: str, user_id: str) -> str | None: ...

    async def get_template_version(self, version_id: str) -> TemplateVersionRecord | None: ...

    async def get_active_template_version(
        self, template_id: str
    ) -> TemplateVersionRecord | None: ...

    async def advance_branch(
        self,
        branch_id: str,
        *,
        structure_version: int,
        template_version_id: str | None = None,
        template_version_label: str | None = None,
        synced_at: datetime | None = None,
    ) -> None: ...

    async def set_metahub_template_version(
        self, metahub_id: str, template_version_id: str
    ) -> None: ...


def _metahub_record(row: Metahub) -> MetahubRecord:
    return MetahubRecord(
        id=row.id,
        template_id=row.template_id,
        template_version_id=row.template_version_id,
        default_branch_id=row.default_branch_id,
    )


def _branch_record(row: MetahubBranch) -> BranchRecord:
    return BranchRecord(
        id=row.id,
        metahub_id=row.metahub_id,
        schema_name=row.schema_name,
        structure_version=row.structure_version,
        last_template_version_id=row.last_template_version_id,
        last_template_version_label=row.last_template_version_label,
        last_template_synced_at=row.last_template_synced_at,
    )


def _template_version_record(row: TemplateVersion) -> TemplateVersionRecord:
    return TemplateVersionRecord(
        id=row.id,
        template_id=row.template_id,
        version_label=row.version_label,
        manifest_json=row.manifest_json,
    )


class SqlAlchemyPlatformStateStore:
    """PlatformStateStore over the platform schema.

    Every method runs in its own session and transaction.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def get_metahub(self, metahub_id: str) -> MetahubRecord | None:
        async with translate_pool_errors("Reading metahub"):
            async with self._sessionmaker() as session:
                row = await session.get(Metahub, metahub_id)
                return _metahub_record(row) if row is not None else None

    async def get_branch(self, branch_id: str) -> BranchRecord | None:
        async with translate_pool_errors("Reading branch"):
            async with self._sessionmaker() as session:
                row = await session.get(MetahubBranch, branch_id)
                return _branch_record(row) if row is not None else None

    async def get_active_branch_id(self, metahub_id: str, user_id: str) -> str | None:
        async with translate_pool_errors("Reading membership"):
            async with self._sessionmaker() as session:
                result = await session.execute(
                    select(MetahubUser.active_branch_id).where(
                        MetahubUser.metahub_id == metahub_id,
                        MetahubUser.user_id == user_id,
                    )
                )
                return result.scalar_one_or_none()

    async def get_template_version(self, version_id: str) -> TemplateVersionRecord | None:
        async with translate_pool_errors("Reading template version"):
            async with self._sessionmaker() as session:
                row = await session.get(TemplateVersion, version_id)
                return _template_version_record(row) if row is not None else None

    async def get_active_template_version(self, template_id: str) -> TemplateVersionRecord | None:
        async with translate_pool_errors("Reading template"):
            async with self._sessionmaker() as session:
                result = await session.execute(
                    select(TemplateVersion)
                    .join(Template, Template.active_version_id == TemplateVersion.id)
                    .where(Template.id == template_id)
                )
                row = result.scalar_one_or_none()
                return _template_version_record(row) if row is not None else None

    async def advance_branch(
        self,
        branch_id: str,
        *,
        structure_version: int,
        template_version_id: str | None = None,
        template_version_label: str | None = None,
        synced_at: datetime | None = None,
    ) -> None:
        """Store the branch's structure version and, when given, its template pointer."""
        values: dict[str, Any] = {"structure_version": structure_version}
        if template_version_id is not None:
            values["last_template_version_id"] = template_version_id
            values["last_template_version_label"] = template_version_label
            values["last_template_synced_at"] = synced_at

        async with translate_pool_errors("Updating branch"):
            async with self._sessionmaker() as session, session.begin():
                await session.execute(
                    update(MetahubBranch).where(MetahubBranch.id == branch_id).values(**values)
                )

    async def set_metahub_template_version(self, metahub_id: str, template_version_id: str) -> None:
        """Pin the metahub to a template version under a row lock."""
        async with translate_pool_errors("Updating metahub template version"):
            async with self._sessionmaker() as session, session.begin():
                result = await session.execute(
                    select(Metahub).where(Metahub.id == metahub_id).with_for_update()
                )
                metahub = result.scalar_one_or_none()
                if metahub is None:
                    raise MetahubNotFoundError(
                        f"Metahub {metahub_id} not found", details={"metahub_id": metahub_id}
                    )
                metahub.template_version_id = template_version_id
