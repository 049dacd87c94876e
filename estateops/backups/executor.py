from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def failure_details(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or f"command exited with status {self.returncode}"


class CommandExecutor(ABC):
    @abstractmethod
    def run(
        self,
        argv: Sequence[str],
        *,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
    ) -> CommandResult:
        raise NotImplementedError


class SubprocessCommandExecutor(CommandExecutor):
    def __init__(self, timeout_seconds: int):
        self._timeout_seconds = timeout_seconds

    def run(
        self,
        argv: Sequence[str],
        *,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
    ) -> CommandResult:
        if not argv:
            raise ValueError("argv cannot be empty")

        with ExitStack() as stack:
            stdin = stack.enter_context(stdin_path.open("rb")) if stdin_path is not None else subprocess.DEVNULL
            stdout = stack.enter_context(stdout_path.open("wb")) if stdout_path is not None else subprocess.PIPE
            try:
                completed = subprocess.run(
                    list(argv),
                    stdin=stdin,
                    stdout=stdout,
                    stderr=subprocess.PIPE,
                    check=False,
                    timeout=self._timeout_seconds,
                )
            except subprocess.TimeoutExpired:
                return CommandResult(
                    returncode=124,
                    stdout="",
                    stderr=f"{argv[0]} timed out after {self._timeout_seconds} seconds",
                )
            except FileNotFoundError:
                return CommandResult(returncode=127, stdout="", stderr=f"{argv[0]}: command not found")

        captured_stdout = completed.stdout.decode("utf-8", errors="replace") if completed.stdout else ""
        captured_stderr = completed.stderr.decode("utf-8", errors="replace") if completed.stderr else ""
        return CommandResult(returncode=completed.returncode, stdout=captured_stdout, stderr=captured_stderr)
