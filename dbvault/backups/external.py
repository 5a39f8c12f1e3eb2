from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from dbvault.backups.pause import PauseToken, checkpoint
from dbvault.core.config import Settings
from dbvault.core.errors import CanceledOperation, ExternalToolError, PreconditionError, StreamingError
from dbvault.sources.profiles import ConnectionProfile, DatabaseEngine

logger = logging.getLogger(__name__)

_KILL_POLL_SECONDS = 0.1


@dataclass(slots=True)
class ExternalCommand:
    argv: list[str]
    env: dict[str, str] = field(default_factory=dict)

    @property
    def tool_name(self) -> str:
        return Path(self.argv[0]).name if self.argv else "dump tool"


CommandFactory = Callable[[ConnectionProfile, str], ExternalCommand]


def build_dump_command(settings: Settings, profile: ConnectionProfile, database: str) -> ExternalCommand:
    if profile.engine == DatabaseEngine.MYSQL:
        argv = [settings.mysqldump_bin, f"--host={profile.host}"]
        if profile.effective_port:
            argv.append(f"--port={profile.effective_port}")
        argv.extend([f"--user={profile.username}", database])
        env = {"MYSQL_PWD": profile.password} if profile.password else {}
        return ExternalCommand(argv=argv, env=env)

    if profile.engine == DatabaseEngine.POSTGRESQL:
        argv = [settings.pg_dump_bin, f"--host={profile.host}"]
        if profile.effective_port:
            argv.append(f"--port={profile.effective_port}")
        argv.extend([f"--username={profile.username}", "--no-password", database])
        env = {"PGPASSWORD": profile.password} if profile.password else {}
        return ExternalCommand(argv=argv, env=env)

    raise PreconditionError(f"External tool mode is not available for {profile.engine.value} profiles")


class ExternalDumpRunner:
    def __init__(self, settings: Settings, command_factory: CommandFactory | None = None):
        self._settings = settings
        self._command_factory = command_factory or (
            lambda profile, database: build_dump_command(settings, profile, database)
        )

    def dump(
        self,
        profile: ConnectionProfile,
        database: str,
        destination: Path,
        *,
        cancel_event: threading.Event,
        pause_token: PauseToken | None = None,
        on_chunk: Callable[[int], None] | None = None,
    ) -> int:
        command = self._command_factory(profile, database)
        env = {**os.environ, **command.env}
        try:
            process = subprocess.Popen(
                command.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                env=env,
            )
        except OSError as exc:
            raise ExternalToolError(f"{command.tool_name} could not be started: {exc}") from exc

        stderr_chunks: list[bytes] = []
        stderr_reader = threading.Thread(
            target=lambda: stderr_chunks.append(process.stderr.read() if process.stderr else b""),
            name="dbvault-external-stderr",
            daemon=True,
        )
        stderr_reader.start()
        watcher = threading.Thread(
            target=self._kill_on_cancel,
            args=(process, cancel_event),
            name="dbvault-external-cancel",
            daemon=True,
        )
        watcher.start()

        stdout = process.stdout
        if stdout is None:
            self._terminate(process)
            raise ExternalToolError(f"{command.tool_name} produced no output stream")

        written = 0
        chunk_bytes = self._settings.external_chunk_bytes
        try:
            with destination.open("wb") as handle:
                while True:
                    chunk = stdout.read(chunk_bytes)
                    if not chunk:
                        break
                    checkpoint(cancel_event, pause_token)
                    handle.write(chunk)
                    written += len(chunk)
                    if on_chunk is not None:
                        on_chunk(written)
            checkpoint(cancel_event, None)
            exit_code = process.wait()
        except CanceledOperation:
            self._terminate(process)
            raise
        except OSError as exc:
            self._terminate(process)
            raise StreamingError(f"Writing {destination.name} failed: {exc}") from exc
        finally:
            stdout.close()

        stderr_reader.join()
        stderr_text = b"".join(stderr_chunks).decode("utf-8", errors="replace").strip()
        if exit_code != 0:
            raise ExternalToolError(
                f"{command.tool_name} failed: {stderr_text}",
                exit_code=exit_code,
                stderr=stderr_text,
            )
        if stderr_text:
            logger.debug("%s stderr: %s", command.tool_name, stderr_text)
        return written

    def _kill_on_cancel(self, process: subprocess.Popen[bytes], cancel_event: threading.Event) -> None:
        while process.poll() is None:
            if cancel_event.wait(_KILL_POLL_SECONDS):
                self._terminate(process)
                return

    def _terminate(self, process: subprocess.Popen[bytes]) -> None:
        if process.poll() is None:
            process.kill()
        process.wait()
