from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path
from typing import BinaryIO

from estateops.core.path_safety import resolve_under_root

logger = logging.getLogger(__name__)

ARTIFACT_FORMAT_VERSION = "1.0.0"


class ArtifactStore:
    """Job artifacts on local disk, one or more files per job id under a single root."""

    def __init__(self, root: Path, *, chunk_bytes: int = 4 * 1024 * 1024):
        self._root = root
        self._chunk_bytes = chunk_bytes

    @property
    def root(self) -> Path:
        return self._root

    def ensure_root(self) -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    def path_for(self, name: str) -> Path:
        return resolve_under_root(self._root, name)

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def size(self, name: str) -> int:
        return self.path_for(name).stat().st_size

    def open_read(self, name: str) -> BinaryIO:
        return self.path_for(name).open("rb")

    def delete(self, name: str) -> bool:
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted artifact %s", path.as_posix())
        return True

    def digest(self, name: str) -> str:
        hasher = hashlib.sha256()
        with self.open_read(name) as handle:
            while True:
                chunk = handle.read(self._chunk_bytes)
                if not chunk:
                    break
                hasher.update(chunk)
        return hasher.hexdigest()

    def stage_copy(self, source: Path, name: str) -> Path:
        self.ensure_root()
        target = self.path_for(name)
        shutil.copyfile(source, target)
        return target
