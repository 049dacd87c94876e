from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

from estateops.core.config import Settings
from estateops.core.path_safety import PathSafetyError, resolve_under_root
from estateops.db.models import JobKind
from estateops.imports.records import PropertySaleRecord, parse_row, read_rows, validate_row
from estateops.imports.sink import ImportSink
from estateops.imports.types import CsvValidationReport, ImportOptions, ImportParameters, ImportStatistics
from estateops.jobs.artifacts import ARTIFACT_FORMAT_VERSION, ArtifactStore
from estateops.jobs.errors import JobParameterError, StepFailure
from estateops.jobs.params import parse_parameters
from estateops.jobs.pipeline import JobPipeline, Step, StepContext, StepOutcome

logger = logging.getLogger(__name__)

VALIDATED_PERCENT = 20.0
IMPORTED_PERCENT = 90.0
SAMPLE_RECORDS = 5
NO_VALID_RECORDS = "CSV file is empty or has no valid records"


def staged_name(job_id: str) -> str:
    return f"{job_id}.csv"


class ImportPipeline(JobPipeline):
    kind = JobKind.IMPORT
    initial_label = "Initializing import"
    finalize_label = "Generating report"
    completed_label = "Import completed"

    def __init__(self, settings: Settings, artifacts: ArtifactStore, sink: ImportSink):
        self._settings = settings
        self._artifacts = artifacts
        self._sink = sink

    def normalize_parameters(self, raw: dict[str, Any] | None) -> dict[str, Any]:
        payload = dict(raw or {})
        payload.setdefault("batch_size", self._settings.import_default_batch_size)
        params = parse_parameters(ImportParameters, payload)
        if params.batch_size > self._settings.import_max_batch_size:
            raise JobParameterError(
                f"Invalid parameters: batch_size: must be <= {self._settings.import_max_batch_size}"
            )
        source = self._source_path(params.source_path)
        if not source.is_file():
            raise JobParameterError(f"Import source not found: {params.source_path}")
        return params.model_dump()

    def _source_path(self, raw: str) -> Path:
        try:
            return resolve_under_root(self._settings.resolved_inbox_root, raw)
        except PathSafetyError as exc:
            raise JobParameterError(f"Invalid parameters: source_path: {exc}") from exc

    def stage(self, job_id: str, parameters: dict[str, Any]) -> str | None:
        name = staged_name(job_id)
        self._artifacts.stage_copy(self._source_path(parameters["source_path"]), name)
        logger.info("Import %s staged %s", job_id, parameters["source_path"])
        return name

    def unstage(self, artifact_name: str | None) -> None:
        if artifact_name:
            self._artifacts.delete(artifact_name)

    def steps(self) -> list[Step]:
        return [
            Step("Validating CSV", VALIDATED_PERCENT, self._validate),
            Step("Importing records", IMPORTED_PERCENT, self._import),
            Step("Calculating checksum", 95.0, self._checksum),
        ]

    def _stats(self, ctx: StepContext) -> ImportStatistics:
        stats = ctx.scratch.get("stats")
        if stats is None:
            stats = ImportStatistics(max_reported_errors=self._settings.import_max_reported_errors)
            ctx.scratch["stats"] = stats
        return stats

    def dry_run(self, source_path: str) -> CsvValidationReport:
        """Validate an inbox CSV file the way an import would, without writing anything."""
        relative = parse_parameters(ImportParameters, {"source_path": source_path}).source_path
        source = self._source_path(relative)
        if not source.is_file():
            raise JobParameterError(f"Import source not found: {relative}")

        stats = ImportStatistics(max_reported_errors=self._settings.import_max_reported_errors)
        samples: list[PropertySaleRecord] = []
        for record in self._scan(source, stats):
            if len(samples) < SAMPLE_RECORDS:
                samples.append(record)

        errors = list(stats.errors)
        if not stats.valid_rows:
            errors.append(NO_VALID_RECORDS)
        warning = self._large_file_warning(stats)
        return CsvValidationReport(
            source_path=relative,
            record_count=stats.total_rows,
            valid_rows=stats.valid_rows,
            invalid_rows=stats.invalid_rows,
            errors=errors,
            warnings=[warning] if warning else [],
            sample_records=samples,
        )

    def _scan(self, path: Path, stats: ImportStatistics) -> Iterator[PropertySaleRecord]:
        with path.open("r", encoding="utf-8-sig", newline="") as handle:
            for record_number, row in read_rows(handle):
                stats.total_rows += 1
                problems = validate_row(row, record_number)
                if problems:
                    stats.invalid_rows += 1
                    stats.add_errors(problems)
                    continue
                stats.valid_rows += 1
                yield parse_row(row, record_number)

    def _large_file_warning(self, stats: ImportStatistics) -> str | None:
        if stats.total_rows > self._settings.import_large_file_warning_rows:
            return f"Large file detected ({stats.total_rows} records); import may take a long time"
        return None

    def _validate(self, ctx: StepContext) -> None:
        stats = self._stats(ctx)
        records = list(self._scan(self._artifacts.path_for(staged_name(ctx.job_id)), stats))
        warning = self._large_file_warning(stats)
        if warning:
            ctx.warnings.append(warning)
        if not records:
            raise StepFailure(NO_VALID_RECORDS)
        ctx.scratch["records"] = records
        logger.info(
            "Import %s validated %d rows (%d invalid)", ctx.job_id, stats.total_rows, stats.invalid_rows
        )

    def _import(self, ctx: StepContext) -> None:
        stats = self._stats(ctx)
        records: list[PropertySaleRecord] = ctx.scratch["records"]
        batch_size = int(ctx.parameters["batch_size"])
        options = ImportOptions(
            job_id=ctx.job_id,
            skip_duplicates=bool(ctx.parameters.get("skip_duplicates", True)),
            update_existing=bool(ctx.parameters.get("update_existing", False)),
        )
        span = IMPORTED_PERCENT - VALIDATED_PERCENT
        for start in range(0, len(records), batch_size):
            ctx.checkpoint()
            batch = records[start : start + batch_size]
            stats.absorb(self._sink.insert_batch(batch, options))
            processed = start + len(batch)
            ctx.report(
                VALIDATED_PERCENT + span * processed / len(records),
                f"Importing records ({processed}/{len(records)})",
            )

    def _checksum(self, ctx: StepContext) -> None:
        name = staged_name(ctx.job_id)
        ctx.scratch["size_bytes"] = self._artifacts.size(name)
        ctx.scratch["checksum"] = self._artifacts.digest(name)

    def outcome(self, ctx: StepContext) -> StepOutcome:
        stats = self._stats(ctx)
        logger.info(
            "Import %s finished: %d imported, %d updated, %d duplicates, %d failed",
            ctx.job_id,
            stats.imported,
            stats.updated,
            stats.duplicates,
            stats.failed,
        )
        return StepOutcome(
            artifact_name=staged_name(ctx.job_id),
            size_bytes=ctx.scratch["size_bytes"],
            checksum=ctx.scratch["checksum"],
            result=self._summary(ctx),
        )

    def partial_result(self, ctx: StepContext) -> dict[str, Any]:
        return self._summary(ctx)

    def discard(self, ctx: StepContext) -> None:
        self._artifacts.delete(staged_name(ctx.job_id))

    def _summary(self, ctx: StepContext) -> dict[str, Any]:
        return {
            "format_version": ARTIFACT_FORMAT_VERSION,
            "source_path": ctx.parameters.get("source_path"),
            "statistics": self._stats(ctx).to_dict(),
            "warnings": list(ctx.warnings),
        }
