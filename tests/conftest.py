from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest

import estateops.db.session as db_session_module
from estateops.backups.executor import CommandExecutor, CommandResult
from estateops.core.config import get_settings
from estateops.db.init_db import initialize_database
from estateops.db.models import Job
from estateops.imports.sink import ImportSink
from estateops.jobs.engine import JobEngine

DUMP_PAYLOAD = b"-- estateops test dump\n" + b"INSERT INTO property_sales VALUES (1, 'x');\n" * 256


@dataclass
class RecordedCall:
    argv: list[str]
    stdin: bytes | None


class FakeExecutor(CommandExecutor):
    """Stands in for pg_dump/psql: writes a fixed dump and can be held on a gate."""

    def __init__(
        self,
        payload: bytes = DUMP_PAYLOAD,
        *,
        returncode: int = 0,
        stderr: str = "",
        gate: threading.Event | None = None,
    ):
        self.payload = payload
        self.returncode = returncode
        self.stderr = stderr
        self.gate = gate
        self.started = threading.Event()
        self.calls: list[RecordedCall] = []
        self._lock = threading.Lock()

    def run(
        self,
        argv: Sequence[str],
        *,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
    ) -> CommandResult:
        with self._lock:
            self.calls.append(
                RecordedCall(argv=list(argv), stdin=stdin_path.read_bytes() if stdin_path is not None else None)
            )
        self.started.set()
        if self.gate is not None:
            assert self.gate.wait(timeout=10), "executor gate was never opened"
        if self.returncode == 0 and stdout_path is not None:
            stdout_path.write_bytes(self.payload)
        return CommandResult(returncode=self.returncode, stdout="", stderr=self.stderr)


EngineFactory = Callable[..., JobEngine]


@pytest.fixture
def make_engine(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[EngineFactory]:
    engines: list[JobEngine] = []

    def factory(
        *,
        executor: CommandExecutor | None = None,
        sink: ImportSink | None = None,
        **overrides: object,
    ) -> JobEngine:
        state_root = tmp_path / "state"
        state_root.mkdir(parents=True, exist_ok=True)
        monkeypatch.setenv("ESTATEOPS_STATE_ROOT", state_root.as_posix())
        for name, value in overrides.items():
            monkeypatch.setenv(f"ESTATEOPS_{name.upper()}", str(value))

        get_settings.cache_clear()
        db_session_module.reset_engine()
        initialize_database()
        engine = JobEngine(
            get_settings(),
            db_session_module.get_session_factory(),
            executor=executor or FakeExecutor(),
            sink=sink,
        )
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        engine.shutdown(timeout=5)
    get_settings.cache_clear()
    db_session_module.reset_engine()


def age_job(job_id: str, *, days: float) -> None:
    """Move a job's creation time into the past."""
    created = datetime.now(tz=timezone.utc) - timedelta(days=days)
    with db_session_module.get_session_factory()() as session:
        job = session.get(Job, job_id)
        assert job is not None
        job.created_at = created
        session.commit()


def write_inbox_csv(engine: JobEngine, name: str, rows: list[str]) -> str:
    inbox = engine.settings.resolved_inbox_root
    target = inbox / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text("\n".join(rows) + "\n", encoding="utf-8")
    return name
