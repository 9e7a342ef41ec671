"""Timer abstraction driving the twin tick.

``ThreadScheduler`` runs the tick on a background thread at a fixed real-time
interval. ``ManualScheduler`` never fires on its own; callers step it with
``advance()``, which keeps tests and offline runs deterministic.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Scheduler(ABC):
    """Owns a single repeating timer."""

    @abstractmethod
    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        """Start calling ``callback`` every ``interval_s`` seconds."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the timer. A tick already in progress completes."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """Whether the timer is currently scheduled."""


class ThreadScheduler(Scheduler):
    """Fixed-interval timer on a daemon thread."""

    def __init__(self, name: str = "twin-tick"):
        self.name = name
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        if self.active:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(interval_s, callback, self._stop), name=self.name, daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread and thread is not threading.current_thread():
            thread.join(timeout=5)

    def _run(self, interval_s: float, callback: Callable[[], None], stop: threading.Event) -> None:
        """Tick loop. Waiting on the event lets cancel() interrupt the sleep."""
        while not stop.wait(interval_s):
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in tick loop: {e}")


class ManualScheduler(Scheduler):
    """Scheduler stepped explicitly by the caller."""

    def __init__(self):
        self.interval_s: Optional[float] = None
        self._callback: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._callback is not None

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        if self.active:
            return
        self.interval_s = interval_s
        self._callback = callback

    def cancel(self) -> None:
        self._callback = None

    def advance(self, ticks: int = 1) -> int:
        """Fire up to ``ticks`` callbacks; stops early if cancelled. Returns ticks fired."""
        fired = 0
        for _ in range(ticks):
            callback = self._callback
            if callback is None:
                break
            callback()
            fired += 1
        return fired
