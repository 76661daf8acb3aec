"""
Automated Z scanning.

ScanController steps the stage by a fixed amount, waits for it to settle and
checks the soft limits, until a limit is reached, an optional step count runs
out, or the scan is aborted. The acquisition loop records a sample at each
stop; it must already be running, the scan controller does not start it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
import logging
import math
import threading
import time

from zstage_control.errors import ConfigurationError, HardwareError
from zstage_control.hardware.base import ZLimits, ZStage, Z_AXIS, is_z_in_range

logger = logging.getLogger(__name__)


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    ABORTING = "aborting"


class HaltReason(Enum):
    LIMIT_REACHED = "limit_reached"
    STEPS_COMPLETED = "steps_completed"
    ABORTED = "aborted"
    HARDWARE_ERROR = "hardware_error"


@dataclass(frozen=True)
class ScanSummary:
    """
    Statistics for one finished scan.

    actual_step_size is the distance covered per commanded step and can
    differ from requested_step_size when the stage rounds moves.
    """

    halt_reason: HaltReason
    total_steps: int
    duration_s: float
    average_step_rate: float
    start_position: float
    end_position: float
    total_distance: float
    actual_step_size: float
    requested_step_size: float
    requested_steps: Optional[int]
    direction: int


class ScanController:
    """
    Step-pause-check state machine for Z scans.

    Args:
        stage: Stage collaborator used for relative moves and position reads
        limits: Soft Z limits the scan must stay within
        axis: Stage axis to scan
        status_callback: Called with human-readable progress messages
        completion_callback: Called with the ScanSummary when a scan ends
        clock: Monotonic time source used for the summary duration
    """

    def __init__(
        self,
        stage: ZStage,
        limits: ZLimits,
        axis: str = Z_AXIS,
        status_callback: Optional[Callable[[str], None]] = None,
        completion_callback: Optional[Callable[[ScanSummary], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stage = stage
        self.limits = limits
        self.axis = axis
        self.status_callback = status_callback
        self.completion_callback = completion_callback
        self.clock = clock

        self._lock = threading.Lock()
        self._state = ScanState.IDLE
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.step_size = 0.0
        self.pause_time = 0.0
        self.direction = 1
        self.start_position: Optional[float] = None
        self.current_position: Optional[float] = None
        self.steps_remaining: Optional[int] = None
        self.steps_taken = 0
        self.last_halt_reason: Optional[HaltReason] = None
        self.last_summary: Optional[ScanSummary] = None
        self._started_at = 0.0

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._state

    def is_scanning(self) -> bool:
        return self.state is ScanState.SCANNING

    @staticmethod
    def validate_parameters(step_size: float, pause_time: float, max_steps: Optional[int] = None) -> None:
        """
        Check scan parameters.

        Raises:
            ConfigurationError: step_size is zero or not finite, pause_time is
                negative or not finite, or max_steps is given and below 1
        """
        try:
            step_size = float(step_size)
            pause_time = float(pause_time)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Scan parameters must be numeric, got {step_size!r}, {pause_time!r}")

        if not math.isfinite(step_size) or step_size == 0:
            raise ConfigurationError(f"Step size must be a nonzero number, got {step_size}")
        if not math.isfinite(pause_time) or pause_time < 0:
            raise ConfigurationError(f"Pause time must be >= 0 seconds, got {pause_time}")
        if max_steps is not None and (isinstance(max_steps, bool) or int(max_steps) != max_steps or max_steps < 1):
            raise ConfigurationError(f"Number of steps must be a positive integer, got {max_steps}")

    def start(self, step_size: float, pause_time: float, max_steps: Optional[int] = None) -> bool:
        """
        Start scanning from the current position.

        Args:
            step_size: Relative move per step in micrometers; its sign sets the direction
            pause_time: Settle time after each move in seconds
            max_steps: Optional number of steps after which the scan ends

        Returns:
            True if a scan was started, False if one is already in progress

        Raises:
            ConfigurationError: Invalid parameters (nothing is changed)
            HardwareError: The starting position could not be read
        """
        self.validate_parameters(step_size, pause_time, max_steps)

        with self._lock:
            if self._state is not ScanState.IDLE:
                logger.warning(f"Scan start ignored, controller is {self._state.value}")
                return False

        start_position = float(self.stage.get_position(self.axis))

        with self._lock:
            if self._state is not ScanState.IDLE:
                return False
            self.step_size = float(step_size)
            self.pause_time = float(pause_time)
            self.direction = 1 if step_size > 0 else -1
            self.start_position = start_position
            self.current_position = start_position
            self.steps_remaining = int(max_steps) if max_steps is not None else None
            self.steps_taken = 0
            self.last_halt_reason = None
            self._started_at = self.clock()
            self._stop_event = threading.Event()
            self._state = ScanState.SCANNING
            self._thread = threading.Thread(
                target=self._run, args=(self._stop_event,), name="z-scan", daemon=True
            )
            self._thread.start()
        return True

    def stop(self) -> None:
        """
        Abort the scan.

        No step is issued after this returns, whether the scan was moving or
        pausing. Does nothing if no scan is running. A scan started while
        this call waits (from the completion callback, say) keeps running.
        """
        with self._lock:
            if self._state is ScanState.IDLE:
                return
            self._state = ScanState.ABORTING
            self._stop_event.set()
            thread = self._thread

        if thread is None or thread is threading.current_thread():
            # The worker marks itself idle on the way out
            return

        thread.join()
        with self._lock:
            if self._thread is thread and self._state is ScanState.ABORTING:
                self._state = ScanState.IDLE

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the current scan ends. Returns True if idle."""
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        return self.state is ScanState.IDLE

    def _report(self, message: str) -> None:
        logger.info(message)
        if self.status_callback is not None:
            try:
                self.status_callback(message)
            except Exception as e:
                logger.warning(f"ScanController status callback failed: {e}")

    def _run(self, stop_event: threading.Event) -> None:
        direction = "upward" if self.direction > 0 else "downward"
        self._report(
            f"Scanning {direction} from Z={self.start_position:.2f} in {abs(self.step_size):.2f} um steps "
            f"(limits [{self.limits.low:.2f}, {self.limits.high:.2f}])"
        )

        reason = HaltReason.ABORTED
        try:
            while True:
                if stop_event.is_set():
                    reason = HaltReason.ABORTED
                    break
                if self.steps_remaining is not None and self.steps_remaining <= 0:
                    reason = HaltReason.STEPS_COMPLETED
                    break

                # A step that would leave the limits is never commanded
                target = self.current_position + self.step_size
                if not self.limits.contains(target):
                    reason = HaltReason.LIMIT_REACHED
                    break

                self.current_position = float(self.stage.relative_move(self.axis, self.step_size))
                self.steps_taken += 1
                if self.steps_remaining is not None:
                    self.steps_remaining -= 1
                logger.debug(f"Scan step {self.steps_taken}: Z={self.current_position:.2f}")

                if stop_event.wait(self.pause_time):
                    reason = HaltReason.ABORTED
                    break

                self.current_position = float(self.stage.get_position(self.axis))
                if not is_z_in_range(self.limits, self.current_position):
                    reason = HaltReason.LIMIT_REACHED
                    break
        except HardwareError as e:
            reason = HaltReason.HARDWARE_ERROR
            logger.error(f"ScanController step failed at Z={self.current_position}: {e}")
            self._report(f"Scan halted: {e}")

        summary = self._summarize(reason)
        with self._lock:
            self._state = ScanState.IDLE
            self.last_halt_reason = reason
            self.last_summary = summary

        messages = {
            HaltReason.LIMIT_REACHED: "Scan reached Z limit. Ready to move to best focus.",
            HaltReason.STEPS_COMPLETED: "Scan completed. Ready to move to best focus.",
            HaltReason.ABORTED: "Scan stopped. Ready to move to best focus.",
        }
        if reason in messages:
            self._report(
                f"{messages[reason]} ({self.steps_taken} steps, Z={self.current_position:.2f})"
            )

        logger.info(
            f"Scan summary: {summary.total_steps} steps in {summary.duration_s:.1f}s "
            f"({summary.average_step_rate:.2f} steps/s), moved {summary.total_distance:.2f} um, "
            f"actual step {summary.actual_step_size:.2f} um"
        )

        if self.completion_callback is not None:
            try:
                self.completion_callback(summary)
            except Exception as e:
                logger.warning(f"ScanController completion callback failed: {e}")

    def _summarize(self, reason: HaltReason) -> ScanSummary:
        duration = max(self.clock() - self._started_at, 0.0)
        distance = abs(self.current_position - self.start_position)
        steps = self.steps_taken
        requested_steps = None
        if self.steps_remaining is not None:
            requested_steps = self.steps_remaining + steps
        return ScanSummary(
            halt_reason=reason,
            total_steps=steps,
            duration_s=duration,
            average_step_rate=steps / max(duration, 0.1),
            start_position=self.start_position,
            end_position=self.current_position,
            total_distance=distance,
            actual_step_size=distance / steps if steps else 0.0,
            requested_step_size=abs(self.step_size),
            requested_steps=requested_steps,
            direction=self.direction,
        )
