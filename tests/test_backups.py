from __future__ import annotations

import gzip
import hashlib
import threading
import time

import pytest
from conftest import DUMP_PAYLOAD, FakeExecutor

from estateops.db.models import TERMINAL_STATUSES, JobKind, JobStatus
from estateops.integrity.validator import ARTIFACT_MISSING, CHECKSUM_MISMATCH, SIZE_MISMATCH
from estateops.jobs.errors import AdmissionRejectedError, InvalidJobStateError, JobNotFoundError, JobParameterError


def test_backup_completes_validates_and_refuses_late_cancel(make_engine) -> None:
    engine = make_engine()

    job_id = engine.submit(JobKind.BACKUP, {"name": "nightly", "compression_level": 6}, "alice")
    job = engine.wait(job_id, timeout=10)

    assert job.status == JobStatus.COMPLETED
    assert job.created_by == "alice"
    assert job.artifact_name == f"{job_id}.sql.gz"
    artifact = engine.artifacts.path_for(job.artifact_name)
    assert job.size_bytes == artifact.stat().st_size
    assert job.checksum == hashlib.sha256(artifact.read_bytes()).hexdigest()
    with gzip.open(artifact, "rb") as handle:
        assert handle.read() == DUMP_PAYLOAD
    assert not engine.artifacts.exists(f"{job_id}.sql")
    assert job.result["compression_level"] == 6
    assert job.result["format_version"] == "1.0.0"

    progress = engine.get_progress(job_id)
    assert progress.status == JobStatus.COMPLETED
    assert progress.percent == 100
    assert progress.current_step == "Backup completed"
    assert progress.total_steps == 5

    validation = engine.validate(job_id)
    assert validation.valid is True
    assert validation.errors == []
    assert validation.metadata.checksum == job.checksum
    assert validation.metadata.size == job.size_bytes

    with pytest.raises(InvalidJobStateError) as excinfo:
        engine.cancel(job_id, "alice")
    assert str(excinfo.value) == "Cannot cancel completed or failed backup."


def test_backup_without_compression_keeps_raw_dump(make_engine) -> None:
    engine = make_engine()

    job = engine.wait(engine.submit(JobKind.BACKUP, {"compression_level": 0}), timeout=10)

    assert job.status == JobStatus.COMPLETED
    assert job.artifact_name == f"{job.id}.sql"
    assert engine.artifacts.path_for(job.artifact_name).read_bytes() == DUMP_PAYLOAD


def test_backup_passes_included_tables_to_export_command(make_engine) -> None:
    executor = FakeExecutor()
    engine = make_engine(executor=executor)

    job = engine.wait(
        engine.submit(JobKind.BACKUP, {"included_tables": ["property_sales", "jobs", "property_sales"]}),
        timeout=10,
    )

    assert job.status == JobStatus.COMPLETED
    argv = executor.calls[0].argv
    assert argv[0] == "pg_dump"
    assert argv[-2:] == ["--table=property_sales", "--table=jobs"]
    assert any(token.startswith("--dbname=sqlite:///") for token in argv)
    assert engine.validate(job.id).metadata.tables == ["property_sales", "jobs"]


def test_default_compression_level_comes_from_settings(make_engine) -> None:
    engine = make_engine(default_compression_level=0)

    job = engine.wait(engine.submit(JobKind.BACKUP, {}), timeout=10)

    assert job.parameters["compression_level"] == 0
    assert job.artifact_name == f"{job.id}.sql"


def test_export_failure_marks_job_failed_and_leaves_no_artifact(make_engine) -> None:
    engine = make_engine(executor=FakeExecutor(returncode=1, stderr="pg_dump: connection refused\n"))

    job = engine.wait(engine.submit(JobKind.BACKUP, {}), timeout=10)

    assert job.status == JobStatus.FAILED
    assert job.error_message == "Database export failed: pg_dump: connection refused"
    assert job.completed_at is not None
    assert list(engine.artifacts.root.iterdir()) == []
    assert engine.get_progress(job.id).status == JobStatus.FAILED

    validation = engine.validate(job.id)
    assert validation.valid is False
    assert validation.errors == ["Backup is not completed (status: failed)"]


def test_invalid_parameters_are_rejected_synchronously(make_engine) -> None:
    engine = make_engine()

    with pytest.raises(JobParameterError):
        engine.submit(JobKind.BACKUP, {"compression_level": 12})
    with pytest.raises(JobParameterError):
        engine.submit(JobKind.BACKUP, {"included_tables": ["jobs; DROP TABLE jobs"]})
    with pytest.raises(JobParameterError):
        engine.submit(JobKind.BACKUP, {"unexpected": True})

    assert engine.runtime.admission.active_count(JobKind.BACKUP) == 0
    assert engine.list_history().total == 0


def test_cancel_during_export_discards_partial_artifact(make_engine) -> None:
    gate = threading.Event()
    executor = FakeExecutor(gate=gate)
    engine = make_engine(executor=executor)

    job_id = engine.submit(JobKind.BACKUP, {}, "bob")
    assert executor.started.wait(timeout=5)
    progress = engine.cancel(job_id, "bob")
    assert progress.status == JobStatus.RUNNING
    gate.set()
    job = engine.wait(job_id, timeout=10)

    assert job.status == JobStatus.CANCELLED
    assert job.error_message == "cancelled by user"
    assert not engine.artifacts.exists(f"{job_id}.sql")
    assert not engine.artifacts.exists(f"{job_id}.sql.gz")
    assert engine.get_progress(job_id).status == JobStatus.CANCELLED
    assert engine.runtime.admission.active_count(JobKind.BACKUP) == 0
    assert not engine.runtime.broker.is_cancelled(job_id)

    with pytest.raises(InvalidJobStateError):
        engine.cancel(job_id, "bob")


def test_admission_limit_then_cancel_frees_a_slot(make_engine) -> None:
    gate = threading.Event()
    engine = make_engine(executor=FakeExecutor(gate=gate), max_concurrent_backups=2)

    first = engine.submit(JobKind.BACKUP, {})
    second = engine.submit(JobKind.BACKUP, {})
    with pytest.raises(AdmissionRejectedError) as excinfo:
        engine.submit(JobKind.BACKUP, {})
    assert str(excinfo.value) == "Too many concurrent backup operations (limit 2)"
    assert engine.list_history(kind=JobKind.BACKUP).total == 2

    engine.cancel(first, "ops")
    gate.set()
    assert engine.wait(first, timeout=10).status == JobStatus.CANCELLED
    assert engine.wait(second, timeout=10).status == JobStatus.COMPLETED

    third = engine.submit(JobKind.BACKUP, {})
    assert engine.wait(third, timeout=10).status == JobStatus.COMPLETED


def test_job_timeout_fails_at_next_step_boundary(make_engine) -> None:
    gate = threading.Event()
    engine = make_engine(executor=FakeExecutor(gate=gate), job_timeout_seconds=1)

    job_id = engine.submit(JobKind.BACKUP, {})
    time.sleep(1.2)
    gate.set()
    job = engine.wait(job_id, timeout=10)

    assert job.status == JobStatus.FAILED
    assert job.error_message == "Job exceeded the configured timeout of 1 seconds"
    assert not engine.artifacts.exists(f"{job_id}.sql")


def test_backup_larger_than_limit_fails(make_engine) -> None:
    engine = make_engine(max_backup_size_bytes=16)

    job = engine.wait(engine.submit(JobKind.BACKUP, {"compression_level": 0}), timeout=10)

    assert job.status == JobStatus.FAILED
    assert "exceeds the configured maximum of 16 bytes" in (job.error_message or "")
    assert not engine.artifacts.exists(f"{job.id}.sql")


def test_tampered_artifact_fails_validation(make_engine) -> None:
    engine = make_engine()
    job = engine.wait(engine.submit(JobKind.BACKUP, {}), timeout=10)
    assert job.artifact_name is not None
    artifact = engine.artifacts.path_for(job.artifact_name)

    with artifact.open("ab") as handle:
        handle.write(b"tampered")
    tampered = engine.validate(job.id)
    assert tampered.valid is False
    assert tampered.errors == [SIZE_MISMATCH, CHECKSUM_MISMATCH]

    original = artifact.read_bytes()[: -len(b"tampered")]
    flipped = bytes([original[0] ^ 0xFF]) + original[1:]
    artifact.write_bytes(flipped)
    corrupted = engine.validate(job.id)
    assert corrupted.errors == [CHECKSUM_MISMATCH]

    artifact.unlink()
    missing = engine.validate(job.id)
    assert missing.errors == [ARTIFACT_MISSING]


def test_kind_scoped_lookups_hide_other_kinds(make_engine) -> None:
    engine = make_engine()
    job = engine.wait(engine.submit(JobKind.BACKUP, {}), timeout=10)

    with pytest.raises(JobNotFoundError):
        engine.get_progress(job.id, kind=JobKind.IMPORT)
    with pytest.raises(JobNotFoundError):
        engine.validate(job.id, kind=JobKind.IMPORT)
    with pytest.raises(JobNotFoundError):
        engine.cancel(job.id, "ops", kind=JobKind.RESTORE)
    with pytest.raises(JobNotFoundError):
        engine.get_progress("does-not-exist")


def test_storage_usage_counts_completed_artifacts(make_engine) -> None:
    engine = make_engine()
    first = engine.wait(engine.submit(JobKind.BACKUP, {}), timeout=10)
    second = engine.wait(engine.submit(JobKind.BACKUP, {"compression_level": 0}), timeout=10)

    usage = engine.storage_usage()

    assert usage.artifact_count == 2
    assert usage.total_bytes == (first.size_bytes or 0) + (second.size_bytes or 0)


def test_activity_log_records_submission_and_outcome(make_engine) -> None:
    engine = make_engine()
    job = engine.wait(engine.submit(JobKind.BACKUP, {}, "carol"), timeout=10)

    page = engine.list_activity(job_id=job.id)

    actions = [item.action for item in page.items]
    assert actions == ["job_completed", "backup_submitted"]
    assert all(item.actor == "carol" for item in page.items)


def poll_until_terminal(engine, job_id: str, timeout: float = 10.0):
    deadline = time.monotonic() + timeout
    while True:
        progress = engine.get_progress(job_id)
        if progress.status in TERMINAL_STATUSES:
            return progress
        assert time.monotonic() < deadline, f"job {job_id} never reached a terminal state"
        time.sleep(0.001)


def test_resubmit_is_admitted_as_soon_as_progress_is_terminal(make_engine) -> None:
    engine = make_engine(max_concurrent_backups=1)

    for _ in range(25):
        job_id = engine.submit(JobKind.BACKUP, {"compression_level": 0})
        assert poll_until_terminal(engine, job_id).status == JobStatus.COMPLETED

    gate = threading.Event()
    gated = make_engine(executor=FakeExecutor(gate=gate), max_concurrent_backups=1)
    held = gated.submit(JobKind.BACKUP, {})
    gated.cancel(held, "ops")
    gate.set()
    assert poll_until_terminal(gated, held).status == JobStatus.CANCELLED
    follow_up = gated.submit(JobKind.BACKUP, {})
    assert gated.wait(follow_up, timeout=10).status == JobStatus.COMPLETED


def test_reconcile_spares_jobs_this_engine_owns(make_engine) -> None:
    gate = threading.Event()
    executor = FakeExecutor(gate=gate)
    engine = make_engine(executor=executor)
    running = engine.submit(JobKind.BACKUP, {})
    assert executor.started.wait(timeout=5)

    # Admitted and recorded, but not yet seeded in the tracker.
    assert engine.runtime.admission.try_admit(JobKind.IMPORT, "half-submitted").granted
    engine.store.create(job_id="half-submitted", kind=JobKind.IMPORT, created_by="tester")
    engine.store.create(job_id="orphan", kind=JobKind.BACKUP, created_by="tester")

    assert engine.reconcile_interrupted_jobs() == 1
    assert engine.get_job("orphan").error_message == "Interrupted by process restart"
    assert engine.get_job("half-submitted").status == JobStatus.PENDING

    gate.set()
    assert engine.wait(running, timeout=10).status == JobStatus.COMPLETED
    engine.runtime.admission.release(JobKind.IMPORT, "half-submitted")
