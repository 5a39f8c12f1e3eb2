from __future__ import annotations

import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, title: str, message: str) -> None: ...


class LoggingNotifier:
    def notify(self, title: str, message: str) -> None:
        logger.info("%s: %s", title, message)


class CallbackNotifier:
    def __init__(self, callback: Callable[[str, str], None]):
        self._callback = callback

    def notify(self, title: str, message: str) -> None:
        self._callback(title, message)


def deliver(notifier: Notifier | None, title: str, message: str) -> None:
    if notifier is None:
        return
    try:
        notifier.notify(title, message)
    except Exception as exc:
        logger.debug("Notification %r was not delivered: %s", title, exc)
