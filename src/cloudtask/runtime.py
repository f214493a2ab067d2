"""Cooperative shutdown primitives for consumption loops."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class StopToken:
    """Cancellation flag checked by consumption loops between messages.

    Requesting a stop never interrupts the message currently being handled;
    the loop finishes its ack/reject cycle and then exits.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def stop_requested(self) -> bool:
        return self._event.is_set()

    def request_stop(self, reason: str = "requested") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds`` unless a stop is requested; return the stop state."""

        return self._event.wait(timeout=max(0.0, seconds))


@contextmanager
def signal_handlers(stop: StopToken) -> Iterator[StopToken]:
    """Route SIGINT/SIGTERM to ``stop`` for the duration of the block."""

    if not hasattr(signal, "SIGINT"):
        yield stop
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Received %s, shutting down after the in-flight message", name)
        stop.request_stop(reason=name)

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        installed = True
    except ValueError:
        # Signal handlers can only be installed in main thread.
        installed = False

    try:
        yield stop
    finally:
        if installed:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
