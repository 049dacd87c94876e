from __future__ import annotations

import csv
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import IO, Iterator

LAND_REGISTRY_HEADERS: tuple[str, ...] = (
    "transaction_id",
    "price",
    "date_of_transfer",
    "postcode",
    "property_type",
    "old_new",
    "duration",
    "paon",
    "saon",
    "street",
    "locality",
    "town",
    "district",
    "county",
    "ppd_category",
    "record_status",
)

REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("transaction_id", "Transaction ID is required"),
    ("date_of_transfer", "Date of transfer is required"),
    ("postcode", "Postcode is required"),
    ("property_type", "Property type is required"),
)

UK_POSTCODE_RE = re.compile(r"^[A-Z]{1,2}[0-9][A-Z0-9]? ?[0-9][A-Z]{2}$", re.IGNORECASE)

DATE_FORMATS = ("%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d", "%d/%m/%Y")

CSV_TEMPLATE_SAMPLE = (
    "{8A1B2C3D-0000-4E5F-9A0B-1C2D3E4F5A6B}",
    "250000",
    "2024-03-15 00:00",
    "SW1A 1AA",
    "F",
    "N",
    "L",
    "FLAT 4",
    "10",
    "DOWNING STREET",
    "",
    "LONDON",
    "CITY OF WESTMINSTER",
    "GREATER LONDON",
    "A",
    "A",
)


@dataclass(frozen=True, slots=True)
class PropertySaleRecord:
    row_number: int
    transaction_id: str
    price: float
    date_of_transfer: date
    postcode: str
    property_type: str
    old_new: str | None = None
    duration: str | None = None
    paon: str | None = None
    saon: str | None = None
    street: str | None = None
    locality: str | None = None
    town: str | None = None
    district: str | None = None
    county: str | None = None
    ppd_category: str | None = None
    record_status: str | None = None


def parse_transfer_date(raw: str) -> date | None:
    value = raw.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_price(raw: str) -> float | None:
    try:
        return float(raw.strip().replace(",", ""))
    except ValueError:
        return None


def is_valid_postcode(raw: str) -> bool:
    return bool(UK_POSTCODE_RE.match(raw.strip()))


def _is_header_row(cells: list[str]) -> bool:
    if not cells:
        return False
    first = cells[0].strip().lower().replace(" ", "_")
    return first in {"transaction_id", "transactionid"}


def read_rows(handle: IO[str]) -> Iterator[tuple[int, dict[str, str]]]:
    """Yield ``(record_number, row)`` pairs keyed by ``LAND_REGISTRY_HEADERS``.

    Blank lines are ignored and an optional header row is skipped. Short
    rows are padded with empty strings; extra cells are dropped.
    """
    reader = csv.reader(handle)
    record_number = 0
    for index, cells in enumerate(reader):
        if not cells or all(not cell.strip() for cell in cells):
            continue
        if index == 0 and _is_header_row(cells):
            continue
        record_number += 1
        padded = list(cells[: len(LAND_REGISTRY_HEADERS)])
        padded.extend([""] * (len(LAND_REGISTRY_HEADERS) - len(padded)))
        yield record_number, dict(zip(LAND_REGISTRY_HEADERS, padded))


def validate_row(row: dict[str, str], record_number: int) -> list[str]:
    prefix = f"Record {record_number}:"
    errors: list[str] = []
    for field_name, message in REQUIRED_FIELDS:
        if not (row.get(field_name) or "").strip():
            errors.append(f"{prefix} {message}")

    raw_price = (row.get("price") or "").strip()
    price = parse_price(raw_price) if raw_price else None
    if price is None:
        errors.append(f"{prefix} Valid price is required")
    elif price <= 0:
        errors.append(f"{prefix} Price must be greater than 0")

    raw_date = (row.get("date_of_transfer") or "").strip()
    if raw_date and parse_transfer_date(raw_date) is None:
        errors.append(f"{prefix} Invalid date format")

    raw_postcode = (row.get("postcode") or "").strip()
    if raw_postcode and not is_valid_postcode(raw_postcode):
        errors.append(f"{prefix} Invalid postcode format")
    return errors


def _optional(row: dict[str, str], name: str) -> str | None:
    value = (row.get(name) or "").strip()
    return value or None


def parse_row(row: dict[str, str], record_number: int) -> PropertySaleRecord:
    """Build a record from a row that already passed ``validate_row``."""
    price = parse_price(row["price"])
    transfer_date = parse_transfer_date(row["date_of_transfer"])
    if price is None or transfer_date is None:
        raise ValueError(f"Record {record_number}: row was not validated")
    return PropertySaleRecord(
        row_number=record_number,
        transaction_id=row["transaction_id"].strip().strip("{}").upper(),
        price=price,
        date_of_transfer=transfer_date,
        postcode=row["postcode"].strip().upper(),
        property_type=row["property_type"].strip().upper(),
        old_new=_optional(row, "old_new"),
        duration=_optional(row, "duration"),
        paon=_optional(row, "paon"),
        saon=_optional(row, "saon"),
        street=_optional(row, "street"),
        locality=_optional(row, "locality"),
        town=_optional(row, "town"),
        district=_optional(row, "district"),
        county=_optional(row, "county"),
        ppd_category=_optional(row, "ppd_category"),
        record_status=_optional(row, "record_status"),
    )


def csv_template() -> str:
    lines = [",".join(LAND_REGISTRY_HEADERS), ",".join(f'"{cell}"' for cell in CSV_TEMPLATE_SAMPLE)]
    return "\n".join(lines) + "\n"
