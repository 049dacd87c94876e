from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def _validate_table_names(values: list[str]) -> list[str]:
    normalized: list[str] = []
    for raw in values:
        name = raw.strip()
        if not _TABLE_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid table name: {raw!r}")
        if name not in normalized:
            normalized.append(name)
    return normalized


class BackupParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="Manual backup", min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2048)
    compression_level: int = Field(default=6, ge=0, le=9)
    included_tables: list[str] = Field(default_factory=list)

    @field_validator("included_tables")
    @classmethod
    def _check_tables(cls, value: list[str]) -> list[str]:
        return _validate_table_names(value)


class RestoreParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backup_id: str = Field(min_length=1, max_length=36)
    restore_type: Literal["full", "partial"] = "full"
    selected_tables: list[str] = Field(default_factory=list)
    create_backup_before_restore: bool = False

    @field_validator("selected_tables")
    @classmethod
    def _check_tables(cls, value: list[str]) -> list[str]:
        return _validate_table_names(value)

    @model_validator(mode="after")
    def _check_partial_restore(self) -> "RestoreParameters":
        if self.restore_type == "partial" and not self.selected_tables:
            raise ValueError("Partial restore requires at least one selected table")
        if self.restore_type == "full" and self.selected_tables:
            raise ValueError("selected_tables is only valid for partial restore")
        return self
