from __future__ import annotations

import io
import threading
from datetime import date
from typing import Sequence

import pytest
from conftest import write_inbox_csv
from sqlalchemy import select

import estateops.db.session as db_session_module
from estateops.db.models import JobKind, JobStatus, PropertySale
from estateops.imports.records import (
    LAND_REGISTRY_HEADERS,
    PropertySaleRecord,
    csv_template,
    parse_row,
    read_rows,
    validate_row,
)
from estateops.imports.sink import ImportSink, SqlPropertySaleSink
from estateops.imports.types import BatchResult, ImportOptions
from estateops.jobs.errors import JobParameterError


def sale_line(transaction_id: str, *, price: str = "250000", postcode: str = "SW1A 1AA", when: str = "2024-03-15 00:00") -> str:
    return (
        f'"{{{transaction_id}}}","{price}","{when}","{postcode}","F","N","L",'
        '"4","","DOWNING STREET","","LONDON","CITY OF WESTMINSTER","GREATER LONDON","A","A"'
    )


def stored_sales() -> list[PropertySale]:
    with db_session_module.get_session_factory()() as session:
        return list(session.scalars(select(PropertySale).order_by(PropertySale.transaction_id)).all())


def test_read_rows_skips_header_and_blank_lines() -> None:
    handle = io.StringIO(csv_template() + "\n\n" + sale_line("ABC") + "\n")

    rows = list(read_rows(handle))

    assert [number for number, _ in rows] == [1, 2]
    assert set(rows[0][1]) == set(LAND_REGISTRY_HEADERS)
    assert rows[1][1]["transaction_id"] == "{ABC}"


def test_validate_row_reports_each_problem_with_record_number() -> None:
    row = dict.fromkeys(LAND_REGISTRY_HEADERS, "")
    row.update({"price": "-5", "date_of_transfer": "31st of never", "postcode": "NOT A POSTCODE", "property_type": "D"})

    errors = validate_row(row, 7)

    assert errors == [
        "Record 7: Transaction ID is required",
        "Record 7: Price must be greater than 0",
        "Record 7: Invalid date format",
        "Record 7: Invalid postcode format",
    ]


def test_validate_row_requires_numeric_price() -> None:
    _, row = next(read_rows(io.StringIO(sale_line("X1", price="lots"))))
    assert validate_row(row, 1) == ["Record 1: Valid price is required"]


def test_parse_row_normalizes_values() -> None:
    _, row = next(read_rows(io.StringIO(sale_line("ab-12", postcode="sw1a 1aa", when="15/03/2024"))))

    record = parse_row(row, 3)

    assert record.transaction_id == "AB-12"
    assert record.postcode == "SW1A 1AA"
    assert record.date_of_transfer == date(2024, 3, 15)
    assert record.price == 250000.0
    assert record.saon is None
    assert record.row_number == 3


def test_import_writes_records_and_reports_statistics(make_engine) -> None:
    engine = make_engine()
    source = write_inbox_csv(
        engine,
        "uploads/pp-2024.csv",
        [sale_line("A1"), sale_line("A2"), sale_line("A3", price="0"), sale_line("A4", postcode="???")],
    )

    job_id = engine.submit(JobKind.IMPORT, {"source_path": source, "batch_size": 1}, "frank")
    job = engine.wait(job_id, timeout=10)

    assert job.status == JobStatus.COMPLETED
    stats = job.result["statistics"]
    assert stats["total_rows"] == 4
    assert stats["valid_rows"] == 2
    assert stats["invalid_rows"] == 2
    assert stats["imported"] == 2
    assert stats["duplicates"] == 0
    assert stats["errors"] == ["Record 3: Price must be greater than 0", "Record 4: Invalid postcode format"]
    assert [sale.transaction_id for sale in stored_sales()] == ["A1", "A2"]
    assert all(sale.import_job_id == job_id for sale in stored_sales())

    assert job.artifact_name == f"{job_id}.csv"
    assert engine.validate(job_id, kind=JobKind.IMPORT).valid is True
    progress = engine.get_progress(job_id)
    assert progress.current_step == "Import completed"
    assert progress.total_steps == 4


def test_reimport_skips_or_updates_duplicates(make_engine) -> None:
    engine = make_engine()
    first = write_inbox_csv(engine, "first.csv", [sale_line("D1"), sale_line("D2")])
    assert engine.wait(engine.submit(JobKind.IMPORT, {"source_path": first}), timeout=10).status == JobStatus.COMPLETED

    again = write_inbox_csv(engine, "again.csv", [sale_line("D1", price="300000"), sale_line("D3")])
    skipped = engine.wait(engine.submit(JobKind.IMPORT, {"source_path": again}), timeout=10)
    assert skipped.result["statistics"]["imported"] == 1
    assert skipped.result["statistics"]["duplicates"] == 1

    updated = engine.wait(
        engine.submit(JobKind.IMPORT, {"source_path": again, "update_existing": True}),
        timeout=10,
    )
    assert updated.result["statistics"]["updated"] == 2
    prices = {sale.transaction_id: sale.price for sale in stored_sales()}
    assert prices == {"D1": 300000.0, "D2": 250000.0, "D3": 250000.0}


def test_duplicates_fail_rows_when_neither_skipped_nor_updated(make_engine) -> None:
    engine = make_engine()
    source = write_inbox_csv(engine, "dupes.csv", [sale_line("E1"), sale_line("E1")])

    job = engine.wait(engine.submit(JobKind.IMPORT, {"source_path": source, "skip_duplicates": False}), timeout=10)

    stats = job.result["statistics"]
    assert stats["imported"] == 1
    assert stats["failed"] == 1
    assert stats["errors"] == ["Record 2: Duplicate transaction id E1"]


def test_file_without_valid_rows_fails_with_statistics(make_engine) -> None:
    engine = make_engine()
    source = write_inbox_csv(engine, "bad.csv", [sale_line("", price="abc")])

    job = engine.wait(engine.submit(JobKind.IMPORT, {"source_path": source}), timeout=10)

    assert job.status == JobStatus.FAILED
    assert job.error_message == "CSV file is empty or has no valid records"
    assert job.result["statistics"]["invalid_rows"] == 1
    assert not engine.artifacts.exists(f"{job.id}.csv")


def test_reported_errors_are_capped(make_engine) -> None:
    engine = make_engine(import_max_reported_errors=2)
    source = write_inbox_csv(engine, "many.csv", [sale_line(f"Z{index}", price="0") for index in range(5)] + [sale_line("OK")])

    job = engine.wait(engine.submit(JobKind.IMPORT, {"source_path": source}), timeout=10)

    stats = job.result["statistics"]
    assert stats["invalid_rows"] == 5
    assert len(stats["errors"]) == 2


def test_import_source_must_stay_inside_inbox(make_engine) -> None:
    engine = make_engine()

    for bad in ("../estateops.sqlite3", "/etc/passwd", "missing.csv"):
        with pytest.raises(JobParameterError):
            engine.submit(JobKind.IMPORT, {"source_path": bad})
    with pytest.raises(JobParameterError):
        engine.submit(JobKind.IMPORT, {"source_path": "x.csv", "batch_size": 0})

    assert engine.runtime.admission.active_count(JobKind.IMPORT) == 0


class GatedSink(ImportSink):
    """Writes through to the database, then holds the worker until released."""

    def __init__(self) -> None:
        self.first_batch = threading.Event()
        self.release = threading.Event()
        self.batches = 0

    def insert_batch(self, rows: Sequence[PropertySaleRecord], options: ImportOptions) -> BatchResult:
        self.batches += 1
        result = SqlPropertySaleSink(db_session_module.get_session_factory()).insert_batch(rows, options)
        self.first_batch.set()
        assert self.release.wait(timeout=10)
        return result


def test_cancel_between_batches_keeps_partial_statistics(make_engine) -> None:
    sink = GatedSink()
    engine = make_engine(sink=sink)
    source = write_inbox_csv(engine, "batches.csv", [sale_line(f"C{index}") for index in range(6)])

    job_id = engine.submit(JobKind.IMPORT, {"source_path": source, "batch_size": 2})
    assert sink.first_batch.wait(timeout=5)
    engine.cancel(job_id, "ops", kind=JobKind.IMPORT)
    sink.release.set()
    job = engine.wait(job_id, timeout=10)

    assert job.status == JobStatus.CANCELLED
    assert sink.batches == 1
    assert job.result["statistics"]["imported"] == 2
    assert len(stored_sales()) == 2
    assert not engine.artifacts.exists(f"{job_id}.csv")


def test_validate_import_file_reports_without_writing(make_engine) -> None:
    engine = make_engine()
    rows = [sale_line(f"S{index}") for index in range(7)] + [sale_line("BAD", postcode="nowhere")]
    source = write_inbox_csv(engine, "check.csv", rows)

    report = engine.validate_import_file(source, "gina")

    assert report.valid is False
    assert report.record_count == 8
    assert report.valid_rows == 7
    assert report.errors == ["Record 8: Invalid postcode format"]
    assert [record.transaction_id for record in report.sample_records] == ["S0", "S1", "S2", "S3", "S4"]
    assert report.to_dict()["sample_records"][0]["date_of_transfer"] == "2024-03-15"
    assert stored_sales() == []
    assert engine.list_history().total == 0

    entry = engine.list_activity().items[0]
    assert entry.action == "csv_validation"
    assert entry.actor == "gina"
    assert entry.metadata["record_count"] == 8


def test_validate_import_file_flags_files_without_valid_rows(make_engine) -> None:
    engine = make_engine(import_large_file_warning_rows=1)
    source = write_inbox_csv(engine, "junk.csv", [sale_line("", price="x"), sale_line("", price="y")])

    report = engine.validate_import_file(source)

    assert report.valid is False
    assert report.errors[-1] == "CSV file is empty or has no valid records"
    assert report.sample_records == []
    assert report.warnings == ["Large file detected (2 records); import may take a long time"]

    with pytest.raises(JobParameterError):
        engine.validate_import_file("../escape.csv")
    with pytest.raises(JobParameterError):
        engine.validate_import_file("absent.csv")
