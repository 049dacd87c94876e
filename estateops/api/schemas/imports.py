from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict, Field


class CreateImportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_path: str = Field(min_length=1, max_length=1024)
    batch_size: int | None = Field(default=None, ge=1, le=10000)
    skip_duplicates: bool = True
    update_existing: bool = False


class ValidateImportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_path: str = Field(min_length=1, max_length=1024)


class PropertySaleResponse(BaseModel):
    row_number: int
    transaction_id: str
    price: float
    date_of_transfer: date
    postcode: str
    property_type: str
    old_new: str | None
    duration: str | None
    paon: str | None
    saon: str | None
    street: str | None
    locality: str | None
    town: str | None
    district: str | None
    county: str | None
    ppd_category: str | None
    record_status: str | None


class CsvValidationResponse(BaseModel):
    source_path: str
    valid: bool
    record_count: int
    valid_rows: int
    invalid_rows: int
    errors: list[str]
    warnings: list[str]
    sample_records: list[PropertySaleResponse]
