from __future__ import annotations

import gzip
import hashlib
import logging
import re
import shutil
import tarfile
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Callable

from dbvault.core.path_safety import resolve_under_root, sanitize_file_name, validate_output_directory
from dbvault.db.models import CompressionFormat, Schedule

logger = logging.getLogger(__name__)

Checkpoint = Callable[[], None]

_COPY_CHUNK_BYTES = 1024 * 1024
# A run name is taken while its folder or any archive built from it exists.
_ARTIFACT_EXTENSIONS = ("", ".zip", ".tar", ".tar.gz")
_RUN_NAME = re.compile(r"^(?P<stamp>\d{8}_\d{6})(?:_(?P<suffix>\d+))?(?:\.zip|\.tar\.gz|\.tar)?$")


def _noop() -> None:
    return


def schedule_root(schedule: Schedule, default_root: Path) -> Path:
    base = validate_output_directory(schedule.output_directory.strip()) if schedule.output_directory.strip() else default_root
    safe_name = sanitize_file_name(schedule.name.strip() or "BackupPlan")
    return resolve_under_root(base, f"{safe_name}_{schedule.id[:8]}")


def _name_taken(root: Path, name: str) -> bool:
    return any((root / f"{name}{extension}").exists() for extension in _ARTIFACT_EXTENSIONS)


def create_working_folder(root: Path, now: datetime) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    stamp = now.strftime("%Y%m%d_%H%M%S")
    name = stamp
    suffix = 1
    while True:
        if not _name_taken(root, name):
            try:
                (root / name).mkdir()
                return root / name
            except FileExistsError:
                pass
        name = f"{stamp}_{suffix}"
        suffix += 1


def compress_folder(
    folder: Path,
    fmt: CompressionFormat,
    *,
    checkpoint: Checkpoint = _noop,
) -> Path:
    checkpoint()
    if fmt == CompressionFormat.TAR_GZ:
        archive = _compress_tar_gz(folder, checkpoint)
    else:
        archive = _compress_zip(folder, checkpoint)
    shutil.rmtree(folder)
    return archive


def _archive_members(folder: Path) -> list[Path]:
    return sorted(path for path in folder.rglob("*") if path.is_file())


def _compress_zip(folder: Path, checkpoint: Checkpoint) -> Path:
    destination = folder.with_name(f"{folder.name}.zip")
    try:
        with zipfile.ZipFile(destination, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
            for member in _archive_members(folder):
                checkpoint()
                archive.write(member, arcname=member.relative_to(folder).as_posix())
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    return destination


def _compress_tar_gz(folder: Path, checkpoint: Checkpoint) -> Path:
    tar_path = folder.with_name(f"{folder.name}.tar")
    destination = folder.with_name(f"{folder.name}.tar.gz")
    try:
        with tarfile.open(tar_path, mode="w") as archive:
            for member in _archive_members(folder):
                checkpoint()
                archive.add(member, arcname=member.relative_to(folder).as_posix())

        checkpoint()
        with tar_path.open("rb") as source, gzip.open(destination, "wb") as target:
            while True:
                chunk = source.read(_COPY_CHUNK_BYTES)
                if not chunk:
                    break
                target.write(chunk)
                checkpoint()
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    finally:
        tar_path.unlink(missing_ok=True)
    return destination


def _run_order(name: str) -> tuple[str, int, str]:
    match = _RUN_NAME.match(name)
    if match is None:
        return ("", 0, name)
    return (match.group("stamp"), int(match.group("suffix") or 0), name)


def _creation_key(path: Path) -> tuple[float, tuple[str, int, str]]:
    stat = path.stat()
    created = getattr(stat, "st_birthtime", None)
    return (created if created is not None else stat.st_mtime, _run_order(path.name))


def apply_retention(root: Path, retention_count: int) -> list[Path]:
    if not root.is_dir():
        return []

    keep = max(1, retention_count)
    entries: list[tuple[tuple[float, tuple[str, int, str]], Path]] = []
    for entry in root.iterdir():
        try:
            entries.append((_creation_key(entry), entry))
        except OSError as exc:
            logger.debug("Retention skipped unreadable entry %s: %s", entry, exc)
    entries.sort(key=lambda item: item[0], reverse=True)

    removed: list[Path] = []
    for _key, extra in entries[keep:]:
        try:
            if extra.is_dir() and not extra.is_symlink():
                shutil.rmtree(extra)
            else:
                extra.unlink()
            removed.append(extra)
        except OSError as exc:
            logger.debug("Retention cleanup failed for %s: %s", extra, exc)
    return removed


def compute_content_hash(
    path: Path,
    algorithm: str = "sha256",
    *,
    chunk_bytes: int = 4 * 1024 * 1024,
    checkpoint: Checkpoint = _noop,
) -> str:
    digest = hashlib.new(algorithm)
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_bytes)
            if not chunk:
                break
            digest.update(chunk)
            checkpoint()
    return digest.hexdigest()
