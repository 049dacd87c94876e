from __future__ import annotations

import gzip
import logging
import shlex
import shutil
from typing import Any

from estateops.backups.executor import CommandExecutor
from estateops.backups.types import BackupParameters
from estateops.core.config import Settings
from estateops.db.models import JobKind
from estateops.jobs.artifacts import ARTIFACT_FORMAT_VERSION, ArtifactStore
from estateops.jobs.errors import StepFailure
from estateops.jobs.params import parse_parameters
from estateops.jobs.pipeline import JobPipeline, Step, StepContext, StepOutcome

logger = logging.getLogger(__name__)


def dump_name(job_id: str) -> str:
    return f"{job_id}.sql"


def compressed_name(job_id: str) -> str:
    return f"{job_id}.sql.gz"


def build_command(template: str, *, database_url: str) -> list[str]:
    return [token.format(database_url=database_url) for token in shlex.split(template)]


class BackupPipeline(JobPipeline):
    kind = JobKind.BACKUP
    initial_label = "Initializing backup"
    finalize_label = "Finalizing backup"
    completed_label = "Backup completed"

    def __init__(self, settings: Settings, artifacts: ArtifactStore, executor: CommandExecutor):
        self._settings = settings
        self._artifacts = artifacts
        self._executor = executor

    def normalize_parameters(self, raw: dict[str, Any] | None) -> dict[str, Any]:
        payload = dict(raw or {})
        payload.setdefault("compression_level", self._settings.default_compression_level)
        return parse_parameters(BackupParameters, payload).model_dump()

    def steps(self) -> list[Step]:
        return [
            Step("Creating backup directory", 10.0, self._prepare),
            Step("Exporting database", 50.0, self._export),
            Step("Compressing backup", 70.0, self._compress),
            Step("Calculating checksum", 85.0, self._checksum),
        ]

    def _prepare(self, ctx: StepContext) -> None:
        self._artifacts.ensure_root()
        ctx.scratch["artifact_name"] = dump_name(ctx.job_id)

    def _export(self, ctx: StepContext) -> None:
        argv = build_command(
            self._settings.backup_export_command,
            database_url=self._settings.effective_backup_source_url,
        )
        argv.extend(
            self._settings.backup_table_argument.format(table=table)
            for table in ctx.parameters.get("included_tables") or []
        )
        target = self._artifacts.path_for(dump_name(ctx.job_id))
        result = self._executor.run(argv, stdout_path=target)
        if not result.ok:
            raise StepFailure(f"Database export failed: {result.failure_details()}")
        logger.info("Backup %s exported %d bytes", ctx.job_id, target.stat().st_size)

    def _compress(self, ctx: StepContext) -> None:
        level = int(ctx.parameters.get("compression_level", 0))
        if level <= 0:
            return
        source = self._artifacts.path_for(dump_name(ctx.job_id))
        target = self._artifacts.path_for(compressed_name(ctx.job_id))
        with source.open("rb") as raw, gzip.open(target, "wb", compresslevel=level) as packed:
            shutil.copyfileobj(raw, packed, self._settings.checksum_chunk_bytes)
        self._artifacts.delete(dump_name(ctx.job_id))
        ctx.scratch["artifact_name"] = compressed_name(ctx.job_id)

    def _checksum(self, ctx: StepContext) -> None:
        name = ctx.scratch["artifact_name"]
        size = self._artifacts.size(name)
        if size > self._settings.max_backup_size_bytes:
            raise StepFailure(
                f"Backup size {size} exceeds the configured maximum of {self._settings.max_backup_size_bytes} bytes"
            )
        ctx.scratch["size_bytes"] = size
        ctx.scratch["checksum"] = self._artifacts.digest(name)

    def outcome(self, ctx: StepContext) -> StepOutcome:
        return StepOutcome(
            artifact_name=ctx.scratch["artifact_name"],
            size_bytes=ctx.scratch["size_bytes"],
            checksum=ctx.scratch["checksum"],
            result={
                "format_version": ARTIFACT_FORMAT_VERSION,
                "name": ctx.parameters.get("name"),
                "description": ctx.parameters.get("description"),
                "compression_level": ctx.parameters.get("compression_level"),
                "included_tables": list(ctx.parameters.get("included_tables") or []),
            },
        )

    def discard(self, ctx: StepContext) -> None:
        self._artifacts.delete(dump_name(ctx.job_id))
        self._artifacts.delete(compressed_name(ctx.job_id))
