from __future__ import annotations

import threading

from dbvault.core.errors import CanceledOperation

DEFAULT_POLL_SECONDS = 0.15


class PauseToken:
    def __init__(self, poll_seconds: float = DEFAULT_POLL_SECONDS):
        self._poll_seconds = poll_seconds
        self._running = threading.Event()
        self._running.set()

    @property
    def is_paused(self) -> bool:
        return not self._running.is_set()

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()

    def wait_while_paused(self, cancel_event: threading.Event | None = None) -> None:
        while not self._running.wait(self._poll_seconds):
            if cancel_event is not None and cancel_event.is_set():
                raise CanceledOperation("Backup canceled while paused")


def checkpoint(cancel_event: threading.Event | None, pause_token: PauseToken | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CanceledOperation("Backup canceled")
    if pause_token is not None:
        pause_token.wait_while_paused(cancel_event)
    if cancel_event is not None and cancel_event.is_set():
        raise CanceledOperation("Backup canceled")
