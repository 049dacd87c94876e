from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from estateops.core.path_safety import validate_relative_path
from estateops.imports.records import PropertySaleRecord


class ImportParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_path: str = Field(min_length=1, max_length=1024)
    batch_size: int = Field(default=1000, ge=1, le=10000)
    skip_duplicates: bool = True
    update_existing: bool = False

    @field_validator("source_path")
    @classmethod
    def _check_source_path(cls, value: str) -> str:
        return validate_relative_path(value).as_posix()


@dataclass(frozen=True, slots=True)
class ImportOptions:
    job_id: str
    skip_duplicates: bool = True
    update_existing: bool = False


@dataclass(slots=True)
class BatchResult:
    inserted: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


@dataclass(slots=True)
class ImportStatistics:
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    imported: int = 0
    updated: int = 0
    duplicates: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    max_reported_errors: int = 500

    def add_errors(self, messages: list[str]) -> None:
        room = self.max_reported_errors - len(self.errors)
        if room > 0:
            self.errors.extend(messages[:room])

    def absorb(self, batch: BatchResult) -> None:
        self.imported += batch.inserted
        self.updated += batch.updated
        self.duplicates += batch.duplicates
        self.failed += batch.failed
        self.add_errors(batch.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "invalid_rows": self.invalid_rows,
            "imported": self.imported,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class CsvValidationReport:
    """Outcome of checking a CSV file without importing it."""

    source_path: str
    record_count: int
    valid_rows: int
    invalid_rows: int
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    sample_records: list[PropertySaleRecord] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        samples = []
        for record in self.sample_records:
            payload = asdict(record)
            payload["date_of_transfer"] = record.date_of_transfer.isoformat()
            samples.append(payload)
        return {
            "source_path": self.source_path,
            "valid": self.valid,
            "record_count": self.record_count,
            "valid_rows": self.valid_rows,
            "invalid_rows": self.invalid_rows,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "sample_records": samples,
        }
