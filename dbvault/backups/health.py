from __future__ import annotations

import logging
import tarfile
import zipfile
from pathlib import Path

from dbvault.core.config import Settings, get_settings
from dbvault.core.errors import HealthCheckFailure
from dbvault.backups.types import HealthReport

logger = logging.getLogger(__name__)

_SMOKE_READ_BYTES = 256
_TAIL_KEYWORDS = ("CREATE TABLE", "INSERT INTO")


class HealthVerifier:
    def __init__(self, settings: Settings):
        self._settings = settings

    def verify(self, path: str | Path | None, is_compressed: bool) -> HealthReport:
        if path is None or not str(path).strip():
            return self._report(False, "File path missing.")

        target = Path(path)
        try:
            if not target.is_file():
                return self._report(False, "Backup file not found.")
            if is_compressed:
                self._verify_archive(target)
            else:
                self._verify_dump(target)
        except Exception as exc:
            logger.debug("Health check failed for %s: %s", target, exc)
            return self._report(False, str(exc) or type(exc).__name__)

        return self._report(True, "Structure validated.")

    def _report(self, healthy: bool, details: str) -> HealthReport:
        return HealthReport(healthy=healthy, details=details, algorithm=f"{self._settings.hash_algorithm}+structure")

    def _verify_archive(self, path: Path) -> None:
        name = path.name.lower()
        if name.endswith((".tar.gz", ".tgz")) or (not name.endswith(".zip") and tarfile.is_tarfile(path)):
            self._verify_tar(path)
        else:
            self._verify_zip(path)

    def _verify_zip(self, path: Path) -> None:
        with zipfile.ZipFile(path) as archive:
            entries = archive.infolist()
            if not entries:
                raise HealthCheckFailure("Archive contains no entries.")
            with archive.open(entries[0]) as handle:
                handle.read(_SMOKE_READ_BYTES)

    def _verify_tar(self, path: Path) -> None:
        with tarfile.open(path, mode="r:*") as archive:
            members = [member for member in archive.getmembers() if member.isfile()]
            if not members:
                raise HealthCheckFailure("Archive contains no entries.")
            handle = archive.extractfile(members[0])
            if handle is None:
                raise HealthCheckFailure("First archive entry is unreadable.")
            with handle:
                handle.read(_SMOKE_READ_BYTES)

    def _verify_dump(self, path: Path) -> None:
        size = path.stat().st_size
        if size < self._settings.health_min_bytes:
            raise HealthCheckFailure("Backup file too small.")

        with path.open("rb") as handle:
            head = handle.readline().decode("utf-8", errors="replace").lower()
            if not any(token.lower() in head for token in self._settings.health_header_tokens):
                raise HealthCheckFailure("Missing dump header.")

            tail_bytes = self._settings.health_tail_bytes
            handle.seek(max(0, size - tail_bytes))
            tail = handle.read().decode("utf-8", errors="replace").upper()

        if not any(keyword in tail for keyword in _TAIL_KEYWORDS):
            raise HealthCheckFailure("SQL tail missing expected statements.")


def verify_backup(path: str | Path | None, is_compressed: bool, *, settings: Settings | None = None) -> HealthReport:
    return HealthVerifier(settings or get_settings()).verify(path, is_compressed)
