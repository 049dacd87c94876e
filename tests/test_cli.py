from __future__ import annotations

from pathlib import Path

import pytest

import estateops.db.session as db_session_module
from estateops.cli import main
from estateops.core.config import get_settings
from estateops.db.models import JobKind, JobStatus
from estateops.jobs.store import JobRecordStore


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    state_root = tmp_path / "state"
    monkeypatch.setenv("ESTATEOPS_STATE_ROOT", state_root.as_posix())
    monkeypatch.setenv("ESTATEOPS_BACKUP_EXPORT_COMMAND", "sh -c 'printf cli-dump' {database_url}")
    get_settings.cache_clear()
    db_session_module.reset_engine()

    yield monkeypatch

    get_settings.cache_clear()
    db_session_module.reset_engine()


def test_backup_command_runs_export_and_prints_artifact(cli_env, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(["backup", "--name", "cli", "--compression-level", "0", "--actor", "cron"])

    assert exit_code == 0
    job_id, artifact_name, size, checksum = capsys.readouterr().out.split()
    assert artifact_name == f"{job_id}.sql"
    artifact = get_settings().resolved_artifacts_root / artifact_name
    assert artifact.read_bytes() == b"cli-dump"
    assert int(size) == artifact.stat().st_size
    assert len(checksum) == 64

    job = JobRecordStore(db_session_module.get_session_factory()).get(job_id)
    assert job.created_by == "cron"
    assert job.parameters["name"] == "cli"


def test_backup_command_reports_missing_binary(cli_env) -> None:
    cli_env.setenv("ESTATEOPS_BACKUP_EXPORT_COMMAND", "estateops-no-such-dump-binary {database_url}")
    get_settings.cache_clear()

    assert main(["backup"]) == 1

    store = JobRecordStore(db_session_module.get_session_factory())
    items, total = store.list_page(page=1, page_size=5, kind=JobKind.BACKUP)
    assert total == 1
    assert items[0].status == JobStatus.FAILED
    assert "command not found" in (items[0].error_message or "")


def test_backup_command_rejects_bad_parameters(cli_env) -> None:
    assert main(["backup", "--compression-level", "42"]) == 2


def test_reconcile_requires_force_and_sweep_commands(cli_env, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["sweep", "--retention-days", "7"]) == 0
    assert capsys.readouterr().out.strip() == "removed 0"

    store = JobRecordStore(db_session_module.get_session_factory())
    store.create(job_id="left-over", kind=JobKind.RESTORE, created_by="tester")
    store.mark_running("left-over")

    assert main(["reconcile", "--actor", "cron"]) == 2
    assert store.get("left-over").status == JobStatus.RUNNING

    assert main(["reconcile", "--force", "--actor", "cron"]) == 0
    assert capsys.readouterr().out.strip() == "reconciled 1"
    assert store.get("left-over").status == JobStatus.FAILED

    assert main(["sweep", "--retention-days", "0"]) == 2
