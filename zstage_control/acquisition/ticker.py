"""Periodic task running on its own worker thread."""

from typing import Callable, Optional
import logging
import threading
import time

from zstage_control.errors import ConfigurationError

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Call a function at a fixed period on a dedicated thread.

    Ticks never overlap: a tick that runs longer than the period delays the
    next one. stop() sets the cancellation token, which also interrupts the
    wait between ticks, and joins the worker, so no tick starts after stop()
    returns.

    Args:
        callback: Function called once per tick, no arguments
        period_s: Seconds between tick starts
        name: Thread name, used in log messages
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        callback: Callable[[], None],
        period_s: float,
        name: str = "periodic-task",
        clock: Callable[[], float] = time.monotonic,
    ):
        if period_s <= 0:
            raise ConfigurationError(f"Period must be positive, got {period_s}")
        self.callback = callback
        self.period_s = float(period_s)
        self.name = name
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def is_running(self) -> bool:
        with self._lock:
            return (
                self._thread is not None
                and self._thread.is_alive()
                and not self._stop_event.is_set()
            )

    def start(self) -> bool:
        """Start ticking. Returns False if already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set():
                return False
            previous = self._thread
            if previous is not None and previous is not threading.current_thread():
                # A stopped worker may still be finishing its last tick
                previous.join()
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._stop_event,), name=self.name, daemon=True
            )
            self._thread.start()
        logger.debug(f"{self.name} started (period {self.period_s:.3f}s)")
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """Request cancellation and wait for the worker to exit."""
        with self._lock:
            self._stop_event.set()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"{self.name} did not stop within {timeout}s")
        logger.debug(f"{self.name} stopped")

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            started = self._clock()
            try:
                self.callback()
            except Exception:
                # Last line of defence, callbacks handle their own named errors
                logger.exception(f"{self.name}: unhandled error in tick")
            elapsed = self._clock() - started
            stop_event.wait(max(0.0, self.period_s - elapsed))
