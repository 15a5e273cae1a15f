"""Cancellable background timers for polling and debounced draft writes."""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicPoller:
    """
    Runs a callback on a fixed interval in a daemon thread until cancelled.

    The callback returns True to stop polling (e.g. once the watched
    questionnaire completes). Errors are logged and polling continues.
    """

    def __init__(self, interval: float, callback: Callable[[], bool], name: str = "poller"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"[{self.name}] started (every {self.interval}s)")

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                if self.callback():
                    logger.debug(f"[{self.name}] finished")
                    self._stop.set()
            except Exception as e:
                logger.warning(f"[{self.name}] poll failed: {e}")

    def cancel(self) -> None:
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1)
        logger.debug(f"[{self.name}] cancelled")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive() and not self._stop.is_set())


class Debouncer:
    """
    Delays a write until calls stop arriving for `delay` seconds.

    Each call replaces the pending one; cancel() drops it without writing,
    flush() runs it immediately.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[Callable[[], None]] = None

    def call(self, func: Callable[[], None]) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._pending = func
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            func = self._pending
            self._pending = None
            self._timer = None
        if func:
            try:
                func()
            except Exception as e:
                logger.error(f"Debounced write failed: {e}")

    def flush(self) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = None
        self._fire()

    def cancel(self) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = None
            self._pending = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None
