from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTask:
    """A thread the caller always joins before the process exits.

    The target's return value or exception is captured instead of being
    raised in the worker thread.
    """

    def __init__(self, target: Callable[[], Any], *, name: str):
        self.name = name
        self._target = target
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._done = threading.Event()
        self.result: Any = None
        self.error: BaseException | None = None

    def start(self) -> BackgroundTask:
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            self.result = self._target()
        except Exception as exc:
            self.error = exc
            logger.warning(
                "background task failed",
                extra={"event": "task.failed", "task": self.name},
                exc_info=exc,
            )
        finally:
            self._done.set()

    def done(self) -> bool:
        return self._done.is_set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the task to settle; False when the timeout ran out first."""

        if not self._thread.is_alive() and not self._thread.ident:
            return True
        self._thread.join(timeout)
        settled = self._done.is_set()
        if not settled:
            logger.warning(
                "background task still running at exit",
                extra={"event": "task.join_timeout", "task": self.name, "timeout_s": timeout},
            )
        return settled
