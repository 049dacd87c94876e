from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RetentionSweepRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    retention_days: int | None = Field(default=None, ge=1, le=3650)


class RetentionSweepResponse(BaseModel):
    removed: int
    retention_days: int


class ReconcileResponse(BaseModel):
    reconciled: int
