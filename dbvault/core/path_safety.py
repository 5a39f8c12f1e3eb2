from __future__ import annotations

import re
from pathlib import Path

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class PathSafetyError(ValueError):
    pass


def sanitize_file_name(raw_name: str, *, fallback: str = "BackupPlan") -> str:
    cleaned = _INVALID_FILENAME_CHARS.sub("_", raw_name).strip().strip(".")
    if not cleaned or cleaned in {".", ".."}:
        return fallback
    return cleaned


def validate_output_directory(raw_path: str) -> Path:
    if "~" in raw_path:
        raise PathSafetyError("Home expansion is not allowed")
    if "$" in raw_path:
        raise PathSafetyError("Environment variable expansion is not allowed")
    path = Path(raw_path)
    if not path.is_absolute():
        raise PathSafetyError("Output directory must be absolute")
    return path


def resolve_under_root(root: Path, name: str) -> Path:
    candidate = (root / name).resolve(strict=False)
    resolved_root = root.resolve(strict=False)

    if candidate != resolved_root and resolved_root in candidate.parents:
        return candidate

    raise PathSafetyError("Path escapes output root")
