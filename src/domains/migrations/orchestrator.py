# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Metahub migration orchestrator.

Plans and applies migrations of one metahub branch: structure versions,
template seed sync and seed cleanup.

A branch is in one of three states:

    up_to_date          nothing to do
    requires_migration  apply would change the schema or its seed
    blocked             apply refuses until the blockers are resolved

Destructive structure changes, an incompatible template and cleanup
candidates that users have modified are blockers; nothing resolves them
automatically.

Apply never trusts an earlier plan. It plans again, takes the branch apply
lock, plans once more under the lock, and only then writes. The branch's
pointers move after every write step has committed, and the metahub's
template version moves only after re-reading the branch confirms the
synced template version.

Example:
    service = MetahubMigrationService(store, schema_service, settings.migration)
    plan = await service.plan(metahub_id, user_id=user_id)
    if plan.status is MigrationState.REQUIRES_MIGRATION:
        result = await service.apply(metahub_id, user_id=user_id)
"""

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from src.core.config.settings import MigrationSettings
from src.domains.history.meta import parse_migration_meta
from src.domains.migrations.schema_service import EnsureSchemaMode, MetahubSchemaService
from src.domains.migrations.state_store import (
    BranchRecord,
    MetahubRecord,
    PlatformStateStore,
    TemplateVersionRecord,
)
from src.domains.shared.errors import (
    BranchNotFoundError,
    MetahubDomainError,
    MetahubNotFoundError,
    MigrationApplyLockTimeoutError,
    MigrationBlockedError,
    StructureMigrationFailedError,
    TemplateSyncNotConfirmedError,
    TemplateVersionInvalidError,
)
from src.domains.structure.catalog import MIGRATIONS_TABLE, StructureConfigurationError
from src.domains.structure.diff import calculate_structure_diff
from src.domains.templates.builtin import get_builtin_manifest
from src.domains.templates.manifest import (
    TemplateManifest,
    TemplateManifestError,
    validate_template_manifest,
)
from src.domains.templates.seed_cleanup import (
    CleanupMode,
    TemplateCleanupResult,
    TemplateSeedCleanupService,
)
from src.domains.templates.seed_migrator import SeedHistoryContext, TemplateSeedMigrator
from src.infrastructure.database.system_tables import Row
from src.models.migrations import (
    CleanupReport,
    MigrationApplyResult,
    MigrationHistoryItem,
    MigrationHistoryPage,
    MigrationPlan,
    MigrationState,
    MigrationStatusResponse,
    SeedDryRun,
    StructurePlan,
    StructureStep,
    TemplatePlan,
)
from src.utils.datetime import utc_now
from src.utils.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)


def apply_lock_name(branch_id: str) -> str:
    return f"metahub-migration-apply:{branch_id}"


@dataclass(frozen=True)
class _TemplateRef:
    """A resolved template version and its manifest.

    Built-in templates have no version id.
    """

    version_id: str | None
    label: str | None
    manifest: TemplateManifest


@dataclass(frozen=True)
class _MigrationContext:
    metahub: MetahubRecord
    branch: BranchRecord
    current_template: _TemplateRef | None
    target_template: _TemplateRef


def _cleanup_report(result: TemplateCleanupResult) -> CleanupReport:
    return CleanupReport(
        mode=result.mode,
        has_changes=result.has_changes,
        applied=result.applied,
        blockers=result.blockers,
        notes=result.notes,
        summary=result.summary.as_dict(),
    )


def _history_item(row: Row) -> MigrationHistoryItem:
    return MigrationHistoryItem(
        id=str(row["id"]),
        name=row["name"],
        applied_at=row.get("applied_at"),
        from_version=row["from_version"],
        to_version=row["to_version"],
        meta=parse_migration_meta(row.get("meta")),
    )


class MetahubMigrationService:
    """Plan, status, apply and history for metahub branch migrations."""

    def __init__(
        self,
        state_store: PlatformStateStore,
        schema_service: MetahubSchemaService,
        settings: MigrationSettings,
    ) -> None:
        self._store = state_store
        self._schemas = schema_service
        self._settings = settings

    # =========================================================================
    # Context resolution
    # =========================================================================

    async def resolve_branch(
        self,
        metahub: MetahubRecord,
        branch_id: str | None = None,
        user_id: str | None = None,
    ) -> BranchRecord:
        """Explicit branch, else the caller's active branch, else the default branch.

        Raises:
            BranchNotFoundError: If no branch of this metahub matches.
        """
        candidate = branch_id
        if candidate is None and user_id is not None:
            candidate = await self._store.get_active_branch_id(metahub.id, user_id)
        if candidate is None:
            candidate = metahub.default_branch_id

        branch = await self._store.get_branch(candidate) if candidate else None
        if branch is None or branch.metahub_id != metahub.id:
            raise BranchNotFoundError(
                f"Branch not found for metahub {metahub.id}",
                details={"metahub_id": metahub.id, "branch_id": candidate},
            )
        return branch

    async def _load_context(
        self,
        metahub_id: str,
        branch_id: str | None,
        user_id: str | None,
        target_template_version_id: str | None,
    ) -> _MigrationContext:
        metahub = await self._store.get_metahub(metahub_id)
        if metahub is None:
            raise MetahubNotFoundError(
                f"Metahub {metahub_id} not found", details={"metahub_id": metahub_id}
            )
        branch = await self.resolve_branch(metahub, branch_id, user_id)
        return _MigrationContext(
            metahub=metahub,
            branch=branch,
            current_template=await self._current_template(branch),
            target_template=await self._target_template(metahub, target_template_version_id),
        )

    async def _current_template(self, branch: BranchRecord) -> _TemplateRef | None:
        """Template version last synced into the branch, if still readable."""
        if branch.last_template_version_id is None:
            return None
        version = await self._store.get_template_version(branch.last_template_version_id)
        if version is None:
            logger.warning(
                "synced_template_version_missing",
                branch_id=branch.id,
                template_version_id=branch.last_template_version_id,
            )
            return None
        try:
            manifest = validate_template_manifest(version.manifest_json)
        except TemplateManifestError as e:
            logger.warning(
                "synced_template_manifest_invalid",
                branch_id=branch.id,
                template_version_id=version.id,
                errors=len(e.errors),
            )
            return None
        return _TemplateRef(version.id, version.version_label, manifest)

    async def _target_template(
        self, metahub: MetahubRecord, requested_version_id: str | None
    ) -> _TemplateRef:
        """Requested version, else the metahub's pinned version, else the template's
        active version, else the built-in default template.

        Raises:
            TemplateVersionInvalidError: If the requested version belongs to
                another template or its manifest is invalid.
        """
        version: TemplateVersionRecord | None = None
        if requested_version_id is not None:
            version = await self._store.get_template_version(requested_version_id)
            if version is None or version.template_id != metahub.template_id:
                raise TemplateVersionInvalidError(
                    f"Template version {requested_version_id} does not belong to the "
                    f"template of metahub {metahub.id}",
                    details={"template_version_id": requested_version_id},
                )
        elif metahub.template_version_id is not None:
            version = await self._store.get_template_version(metahub.template_version_id)
        elif metahub.template_id is not None:
            version = await self._store.get_active_template_version(metahub.template_id)

        if version is None:
            manifest = get_builtin_manifest(self._settings.default_template_codename)
            return _TemplateRef(None, manifest.version, manifest)

        try:
            manifest = validate_template_manifest(version.manifest_json)
        except TemplateManifestError as e:
            raise TemplateVersionInvalidError(
                f"Template version {version.id} has an invalid manifest",
                details={"template_version_id": version.id, "errors": e.errors},
            ) from e
        return _TemplateRef(version.id, version.version_label, manifest)

    # =========================================================================
    # Plan and status
    # =========================================================================

    async def _build_plan(
        self,
        context: _MigrationContext,
        cleanup_mode: CleanupMode,
        *,
        include_seed_dry_run: bool,
    ) -> MigrationPlan:
        catalog = self._schemas.catalog
        branch = context.branch
        current_version = branch.structure_version
        target_version = catalog.current()
        if current_version > target_version:
            raise StructureConfigurationError(
                f"Branch {branch.id} is at structure version {current_version}, "
                f"beyond the current version {target_version}"
            )

        initialized = await self._schemas.is_initialized(branch.schema_name)
        blockers: list[str] = []

        steps: list[StructureStep] = []
        if initialized:
            for version in range(current_version, target_version):
                diff = calculate_structure_diff(
                    catalog.get(version), catalog.get(version + 1), version, version + 1
                )
                steps.append(
                    StructureStep(
                        from_version=version,
                        to_version=version + 1,
                        additive=[change.description for change in diff.additive],
                        destructive=[change.description for change in diff.destructive],
                        summary=diff.summary,
                    )
                )
        for step in steps:
            blockers.extend(
                f"V{step.from_version}→V{step.to_version}: {description} requires manual migration"
                for description in step.destructive
            )
        structure_upgrade = not initialized or current_version < target_version
        structure = StructurePlan(
            current_version=current_version,
            target_version=target_version,
            upgrade_required=structure_upgrade,
            steps=steps,
            additive=[description for step in steps for description in step.additive],
            destructive=[description for step in steps for description in step.destructive],
        )

        current = context.current_template
        target = context.target_template
        min_structure_version = target.manifest.min_structure_version
        compatible = min_structure_version <= target_version
        if not compatible:
            blockers.append(
                f"Template {target.manifest.codename} {target.manifest.version} requires "
                f"structure version {min_structure_version}, current is {target_version}"
            )
        if target.version_id is not None:
            template_upgrade = target.version_id != branch.last_template_version_id
        else:
            template_upgrade = not initialized
        template = TemplatePlan(
            current_version_id=branch.last_template_version_id,
            current_version_label=branch.last_template_version_label,
            target_version_id=target.version_id,
            target_version_label=target.label,
            upgrade_required=template_upgrade,
            min_structure_version=min_structure_version,
            structure_compatible=compatible,
        )

        # Seed tables of a pending structure version may not exist yet
        seed = None
        if include_seed_dry_run and initialized and template_upgrade and not structure_upgrade:
            database = self._schemas.database(branch.schema_name)
            dry = await TemplateSeedMigrator(database).migrate_seed(
                target.manifest.seed, dry_run=True
            )
            seed = SeedDryRun(
                counts=dry.counts.as_dict(), skipped=dry.skipped, has_changes=dry.has_changes
            )

        cleanup = None
        if cleanup_mode is not CleanupMode.KEEP:
            if initialized and template_upgrade and current is not None:
                service = TemplateSeedCleanupService(self._schemas.database(branch.schema_name))
                cleanup = _cleanup_report(
                    await service.analyze(current.manifest.seed, target.manifest.seed, cleanup_mode)
                )
                blockers.extend(f"Cleanup: {blocker}" for blocker in cleanup.blockers)
            else:
                cleanup = CleanupReport(
                    mode=cleanup_mode, notes=["No previous template seed to clean up"]
                )

        if blockers:
            status = MigrationState.BLOCKED
        elif structure_upgrade or template_upgrade:
            status = MigrationState.REQUIRES_MIGRATION
        else:
            status = MigrationState.UP_TO_DATE

        return MigrationPlan(
            metahub_id=context.metahub.id,
            branch_id=branch.id,
            schema_name=branch.schema_name,
            schema_initialized=initialized,
            status=status,
            structure=structure,
            template=template,
            seed=seed,
            cleanup=cleanup,
            blockers=blockers,
        )

    async def plan(
        self,
        metahub_id: str,
        *,
        branch_id: str | None = None,
        user_id: str | None = None,
        target_template_version_id: str | None = None,
        cleanup_mode: CleanupMode = CleanupMode.KEEP,
    ) -> MigrationPlan:
        """Full migration plan of a branch, including the seed dry run. Takes no lock."""
        context = await self._load_context(
            metahub_id, branch_id, user_id, target_template_version_id
        )
        return await self._build_plan(
            context, CleanupMode(cleanup_mode), include_seed_dry_run=True
        )

    async def status(
        self,
        metahub_id: str,
        *,
        branch_id: str | None = None,
        user_id: str | None = None,
        target_template_version_id: str | None = None,
        cleanup_mode: CleanupMode = CleanupMode.KEEP,
    ) -> MigrationStatusResponse:
        """Plan without the seed dry run, collapsed for polling."""
        context = await self._load_context(
            metahub_id, branch_id, user_id, target_template_version_id
        )
        plan = await self._build_plan(
            context, CleanupMode(cleanup_mode), include_seed_dry_run=False
        )
        return MigrationStatusResponse.from_plan(plan)

    # =========================================================================
    # Apply
    # =========================================================================

    async def apply(
        self,
        metahub_id: str,
        *,
        branch_id: str | None = None,
        user_id: str | None = None,
        dry_run: bool = False,
        target_template_version_id: str | None = None,
        cleanup_mode: CleanupMode = CleanupMode.KEEP,
    ) -> MigrationApplyResult:
        """Migrate a branch to the current structure and the target template.

        A dry run returns the fresh plan, blockers included, without writing.

        Raises:
            MigrationBlockedError: If the fresh plan has blockers, or cleanup
                in dry_run mode has changes pending.
            MigrationApplyLockTimeoutError: If another apply holds the branch.
            StructureMigrationFailedError: If a structure step failed; the
                branch keeps the version its committed steps reached.
            TemplateSyncNotConfirmedError: If the branch does not show the
                target template version afterwards.
        """
        cleanup_mode = CleanupMode(cleanup_mode)
        context = await self._load_context(
            metahub_id, branch_id, user_id, target_template_version_id
        )
        plan = await self._build_plan(context, cleanup_mode, include_seed_dry_run=True)

        branch = context.branch
        if dry_run:
            return MigrationApplyResult(
                status="dry_run",
                plan=plan,
                structure_version=branch.structure_version,
                template_version_id=branch.last_template_version_id,
                seed=plan.seed,
                cleanup=plan.cleanup,
            )

        self._check_blockers(plan)
        if cleanup_mode is CleanupMode.DRY_RUN and plan.cleanup and plan.cleanup.has_changes:
            raise MigrationBlockedError(
                "Cleanup mode dry_run is read-only; apply with keep or confirm",
                details={"cleanup": plan.cleanup.summary},
            )

        lock = self._schemas.advisory_lock(
            apply_lock_name(branch.id), self._settings.apply_lock_timeout_seconds
        )
        bind_context(metahub_id=context.metahub.id, branch_id=branch.id)
        try:
            if not await lock.acquire():
                raise MigrationApplyLockTimeoutError(
                    f"Another migration of branch {branch.id} is in progress",
                    details={"branch_id": branch.id},
                )
            try:
                result = await self._apply_locked(
                    metahub_id, branch.id, user_id, target_template_version_id, cleanup_mode
                )
            finally:
                await lock.release()

            await self._confirm_template_sync(context.metahub, result)
            latest, warning = await self._latest_migrations(branch.schema_name)
            result.latest_migrations = latest
            result.post_apply_read_warning = warning
            logger.info(
                "migration_applied",
                structure_version=result.structure_version,
                template_version_id=result.template_version_id,
            )
            return result
        finally:
            clear_context()

    @staticmethod
    def _check_blockers(plan: MigrationPlan) -> None:
        if plan.blockers:
            logger.warning(
                "migration_blocked", branch_id=plan.branch_id, blockers=len(plan.blockers)
            )
            raise MigrationBlockedError(
                f"Migration of branch {plan.branch_id} is blocked",
                details={"blockers": plan.blockers},
            )

    async def _apply_locked(
        self,
        metahub_id: str,
        branch_id: str,
        user_id: str | None,
        target_template_version_id: str | None,
        cleanup_mode: CleanupMode,
    ) -> MigrationApplyResult:
        # Another apply may have finished while we waited for the lock
        context = await self._load_context(
            metahub_id, branch_id, user_id, target_template_version_id
        )
        plan = await self._build_plan(context, cleanup_mode, include_seed_dry_run=False)
        self._check_blockers(plan)

        branch = context.branch
        target = context.target_template
        structure_version = branch.structure_version
        seed = None
        cleanup = None

        if not plan.schema_initialized:
            init = await self._schemas.initialize(
                branch,
                target.manifest,
                template_version_id=target.version_id,
                template_version_label=target.label,
            )
            structure_version = init.structure_version
            if init.seed_counts is not None:
                seed = SeedDryRun(
                    counts=init.seed_counts.as_dict(), has_changes=init.seed_counts.total > 0
                )
        else:
            if plan.structure.upgrade_required:
                try:
                    migration = await self._schemas.migrate_structure(
                        branch.schema_name, structure_version, plan.structure.target_version
                    )
                except StructureMigrationFailedError as e:
                    await self._record_partial_structure(branch, e.details.get("reached_version"))
                    raise
                if migration.reached_version < plan.structure.target_version:
                    await self._record_partial_structure(branch, migration.reached_version)
                    raise MigrationBlockedError(
                        f"Structure migration of branch {branch.id} stopped at "
                        f"V{migration.reached_version}",
                        details={"skipped_destructive": migration.skipped_destructive},
                    )
                structure_version = migration.reached_version

            if plan.structure.upgrade_required or plan.template.upgrade_required:
                synced = await self._schemas.sync_seed(
                    branch.schema_name,
                    target.manifest.seed,
                    SeedHistoryContext(structure_version, target.version_id, target.label),
                )
                seed = SeedDryRun(
                    counts=synced.counts.as_dict(),
                    skipped=synced.skipped,
                    has_changes=synced.has_changes,
                )

            current = context.current_template
            if (
                cleanup_mode is CleanupMode.CONFIRM
                and plan.template.upgrade_required
                and current is not None
            ):
                service = TemplateSeedCleanupService(self._schemas.database(branch.schema_name))
                outcome = await service.apply(
                    current.manifest.seed, target.manifest.seed, cleanup_mode, actor_id=user_id
                )
                cleanup = _cleanup_report(outcome)
                if outcome.blockers:
                    raise MigrationBlockedError(
                        f"Seed cleanup of branch {branch.id} is blocked",
                        details={"blockers": outcome.blockers},
                    )

        await self._store.advance_branch(
            branch.id,
            structure_version=structure_version,
            template_version_id=target.version_id,
            template_version_label=target.label if target.version_id else None,
            synced_at=utc_now() if target.version_id else None,
        )

        return MigrationApplyResult(
            status="applied",
            plan=plan,
            structure_version=structure_version,
            template_version_id=target.version_id or branch.last_template_version_id,
            seed=seed,
            cleanup=cleanup,
        )

    async def _record_partial_structure(
        self, branch: BranchRecord, reached_version: int | None
    ) -> None:
        """Store the version reached by committed steps of an unfinished walk."""
        if reached_version is None or reached_version <= branch.structure_version:
            return
        logger.warning(
            "structure_partially_migrated",
            branch_id=branch.id,
            from_version=branch.structure_version,
            reached_version=reached_version,
        )
        await self._store.advance_branch(branch.id, structure_version=reached_version)

    async def _confirm_template_sync(
        self, metahub: MetahubRecord, result: MigrationApplyResult
    ) -> None:
        """Re-read the branch and pin the metahub to the synced template version."""
        target_id = result.plan.template.target_version_id
        if target_id is None:
            return

        branch = await self._store.get_branch(result.plan.branch_id)
        if branch is None or branch.last_template_version_id != target_id:
            raise TemplateSyncNotConfirmedError(
                f"Branch {result.plan.branch_id} does not show template version {target_id}",
                details={
                    "expected_template_version_id": target_id,
                    "actual_template_version_id": branch.last_template_version_id
                    if branch
                    else None,
                },
            )
        if metahub.template_version_id != target_id:
            await self._store.set_metahub_template_version(metahub.id, target_id)

    async def _latest_migrations(
        self, schema_name: str
    ) -> tuple[list[MigrationHistoryItem], str | None]:
        """Latest history rows; a failed read yields a warning, not an error."""
        try:
            async with self._schemas.database(schema_name).connect() as repo:
                rows = await repo.select(
                    MIGRATIONS_TABLE,
                    live=False,
                    order_by=("applied_at",),
                    descending=True,
                    limit=self._settings.latest_migrations_limit,
                )
        except (SQLAlchemyError, MetahubDomainError) as e:
            logger.warning("post_apply_read_failed", schema_name=schema_name, error=str(e))
            return [], f"Migration applied, but reading the latest migrations failed: {e}"
        return [_history_item(row) for row in rows], None

    # =========================================================================
    # History and schema preparation
    # =========================================================================

    async def list_history(
        self,
        metahub_id: str,
        *,
        branch_id: str | None = None,
        user_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> MigrationHistoryPage:
        """Page through a branch's migration history, newest first."""
        limit = limit if limit is not None else self._settings.history_default_limit
        limit = max(1, min(limit, self._settings.history_max_limit))
        offset = max(0, offset)

        metahub = await self._store.get_metahub(metahub_id)
        if metahub is None:
            raise MetahubNotFoundError(
                f"Metahub {metahub_id} not found", details={"metahub_id": metahub_id}
            )
        branch = await self.resolve_branch(metahub, branch_id, user_id)

        async with self._schemas.database(branch.schema_name).connect() as repo:
            if not await repo.has_table(MIGRATIONS_TABLE):
                return MigrationHistoryPage(limit=limit, offset=offset)
            total = await repo.count(MIGRATIONS_TABLE, live=False)
            rows = await repo.select(
                MIGRATIONS_TABLE,
                live=False,
                order_by=("applied_at",),
                descending=True,
                limit=limit,
                offset=offset,
            )
        return MigrationHistoryPage(
            items=[_history_item(row) for row in rows], total=total, limit=limit, offset=offset
        )

    async def ensure_branch_schema(
        self,
        metahub_id: str,
        *,
        branch_id: str | None = None,
        user_id: str | None = None,
        mode: EnsureSchemaMode = EnsureSchemaMode.READ_ONLY,
    ) -> str:
        """Prepare the branch schema per mode and return its name.

        Raises:
            MigrationRequiredError: If the schema cannot be used in this mode.
        """
        context = await self._load_context(metahub_id, branch_id, user_id, None)
        target = context.target_template
        try:
            database = await self._schemas.ensure_schema(
                context.branch,
                mode,
                target.manifest,
                template_version_id=target.version_id,
                template_version_label=target.label,
            )
        except MetahubDomainError as e:
            logger.info("ensure_schema_refused", branch_id=context.branch.id, code=e.code)
            raise
        return database.schema_name
