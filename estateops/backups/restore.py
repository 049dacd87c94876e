from __future__ import annotations

import gzip
import logging
import shutil
from typing import Any, Callable

from estateops.backups.backup import build_command
from estateops.backups.executor import CommandExecutor
from estateops.backups.types import RestoreParameters
from estateops.core.config import Settings
from estateops.db.models import JobKind, JobStatus
from estateops.integrity.validator import IntegrityValidator
from estateops.jobs.artifacts import ArtifactStore
from estateops.jobs.errors import JobNotFoundError, JobParameterError, StepFailure
from estateops.jobs.params import parse_parameters
from estateops.jobs.pipeline import JobPipeline, Step, StepContext, StepOutcome
from estateops.jobs.store import JobRecordStore
from estateops.jobs.types import JobSnapshot

logger = logging.getLogger(__name__)

NestedBackupRunner = Callable[[dict[str, Any], str], JobSnapshot]


def scratch_name(job_id: str) -> str:
    return f"{job_id}.restore.sql"


class RestorePipeline(JobPipeline):
    kind = JobKind.RESTORE
    initial_label = "Initializing restore"
    finalize_label = "Finalizing restore"
    completed_label = "Restore completed"

    def __init__(
        self,
        settings: Settings,
        store: JobRecordStore,
        artifacts: ArtifactStore,
        executor: CommandExecutor,
        validator: IntegrityValidator,
        run_nested_backup: NestedBackupRunner,
    ):
        self._settings = settings
        self._store = store
        self._artifacts = artifacts
        self._executor = executor
        self._validator = validator
        self._run_nested_backup = run_nested_backup

    def normalize_parameters(self, raw: dict[str, Any] | None) -> dict[str, Any]:
        params = parse_parameters(RestoreParameters, raw)
        try:
            backup = self._store.get(params.backup_id)
        except JobNotFoundError as exc:
            raise JobNotFoundError(f"Backup not found: {params.backup_id}") from exc
        if backup.kind != JobKind.BACKUP:
            raise JobNotFoundError(f"Backup not found: {params.backup_id}")
        if backup.status != JobStatus.COMPLETED:
            raise JobParameterError("Cannot restore from incomplete backup")
        return params.model_dump()

    def steps(self) -> list[Step]:
        return [
            Step("Validating backup", 20.0, self._validate_backup),
            Step("Creating pre-restore backup", 40.0, self._pre_restore_backup),
            Step("Preparing restore", 60.0, self._prepare),
            Step("Restoring database", 90.0, self._restore),
        ]

    def _validate_backup(self, ctx: StepContext) -> None:
        backup_id = ctx.parameters["backup_id"]
        validation = self._validator.validate(backup_id)
        if not validation.valid:
            raise StepFailure(f"Invalid backup: {', '.join(validation.errors)}")
        ctx.warnings.extend(validation.warnings)
        ctx.scratch["backup"] = self._store.get(backup_id)

    def _pre_restore_backup(self, ctx: StepContext) -> None:
        if not ctx.parameters.get("create_backup_before_restore"):
            return
        snapshot = self._run_nested_backup(
            {
                "name": f"Pre-restore backup for {ctx.job_id}",
                "description": "Automatic backup created before restore operation",
            },
            "system",
        )
        if snapshot.status != JobStatus.COMPLETED:
            raise StepFailure(f"Pre-restore backup failed: {snapshot.error_message or snapshot.status.value}")
        ctx.scratch["pre_restore_backup_id"] = snapshot.id

    def _prepare(self, ctx: StepContext) -> None:
        backup: JobSnapshot = ctx.scratch["backup"]
        source_name = backup.artifact_name
        if source_name is None:
            raise StepFailure("Backup has no artifact")
        if not source_name.endswith(".gz"):
            ctx.scratch["input_name"] = source_name
            return
        target_name = scratch_name(ctx.job_id)
        with gzip.open(self._artifacts.path_for(source_name), "rb") as packed, self._artifacts.path_for(
            target_name
        ).open("wb") as raw:
            shutil.copyfileobj(packed, raw, self._settings.checksum_chunk_bytes)
        ctx.scratch["input_name"] = target_name

    def _restore(self, ctx: StepContext) -> None:
        argv = build_command(self._settings.backup_restore_command, database_url=self._settings.effective_backup_source_url)
        argv.extend(
            self._settings.backup_table_argument.format(table=table)
            for table in ctx.parameters.get("selected_tables") or []
        )
        result = self._executor.run(argv, stdin_path=self._artifacts.path_for(ctx.scratch["input_name"]))
        if not result.ok:
            raise StepFailure(f"Database restore failed: {result.failure_details()}")
        logger.info("Restore %s applied backup %s", ctx.job_id, ctx.parameters["backup_id"])

    def outcome(self, ctx: StepContext) -> StepOutcome:
        self._artifacts.delete(scratch_name(ctx.job_id))
        return StepOutcome(result=self._summary(ctx))

    def partial_result(self, ctx: StepContext) -> dict[str, Any]:
        return self._summary(ctx)

    def discard(self, ctx: StepContext) -> None:
        self._artifacts.delete(scratch_name(ctx.job_id))

    def _summary(self, ctx: StepContext) -> dict[str, Any]:
        return {
            "backup_id": ctx.parameters.get("backup_id"),
            "restore_type": ctx.parameters.get("restore_type"),
            "selected_tables": list(ctx.parameters.get("selected_tables") or []),
            "pre_restore_backup_id": ctx.scratch.get("pre_restore_backup_id"),
            "warnings": list(ctx.warnings),
        }
