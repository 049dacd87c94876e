from __future__ import annotations

from pathlib import Path


class PathSafetyError(ValueError):
    pass


def validate_relative_path(raw_path: str) -> Path:
    if not raw_path or not raw_path.strip():
        raise PathSafetyError("Path cannot be blank")
    if raw_path.startswith("/"):
        raise PathSafetyError("Path must be relative to its root directory")
    if ".." in Path(raw_path).parts:
        raise PathSafetyError("Path traversal is not allowed")
    if "~" in raw_path:
        raise PathSafetyError("Home expansion is not allowed")
    if "$" in raw_path:
        raise PathSafetyError("Environment variable expansion is not allowed")
    return Path(raw_path)


def resolve_under_root(root: Path, raw_path: str) -> Path:
    rel = validate_relative_path(raw_path)
    resolved_root = root.resolve(strict=False)
    candidate = (resolved_root / rel).resolve(strict=False)

    if candidate != resolved_root and resolved_root in candidate.parents:
        return candidate

    raise PathSafetyError("Path escapes root directory")
