"""
services/ticker.py

Cancellable one-second ticker driving the exam countdown.

IntervalTicker runs the callback on a daemon thread; ManualTicker fires only
when advanced explicitly, so countdowns can be exercised without waiting.
"""

import logging
import threading
from typing import Callable, Optional, Protocol

from config import TICK_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]


class Ticker(Protocol):
    @property
    def running(self) -> bool: ...

    def start(self, callback: TickCallback) -> None: ...

    def cancel(self) -> None: ...


class IntervalTicker:
    """Calls `callback` every `interval` seconds until cancelled."""

    def __init__(self, interval: float = TICK_INTERVAL_SECONDS):
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self, callback: TickCallback) -> None:
        if self.running:
            raise RuntimeError("ticker already running")
        stop = self._stop = threading.Event()

        def _loop():
            # wait() returns True once cancelled
            while not stop.wait(self.interval):
                try:
                    callback()
                except Exception:
                    logger.exception("tick callback failed")

        self._thread = threading.Thread(target=_loop, name="exam-ticker", daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        # no join: the caller may hold a lock the in-flight callback is waiting for
        self._stop.set()
        self._thread = None


class ManualTicker:
    """Deterministic ticker: nothing happens until advance() is called."""

    def __init__(self):
        self._callback: Optional[TickCallback] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._callback is not None

    def start(self, callback: TickCallback) -> None:
        if self.running:
            raise RuntimeError("ticker already running")
        self._callback = callback

    def cancel(self) -> None:
        self._callback = None

    def advance(self, seconds: int = 1) -> int:
        """Fire up to `seconds` ticks; stops early if the ticker gets cancelled. Returns ticks fired."""
        fired = 0
        for _ in range(seconds):
            if self._callback is None:
                break
            self._callback()
            self.ticks += 1
            fired += 1
        return fired
