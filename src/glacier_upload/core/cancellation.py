"""Cooperative cancellation for upload runs."""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """A polled stop signal shared between the caller and the orchestrator.

    The caller (a signal handler, a UI thread, a test) calls ``cancel()``;
    the orchestrator checks ``cancelled`` at part boundaries, between
    attempts and on every progress update from the transport.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            logger.info(f"Cancellation requested{f': {reason}' if reason else ''}")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True early if cancelled."""
        if timeout <= 0:
            return self._event.is_set()
        return self._event.wait(timeout)
