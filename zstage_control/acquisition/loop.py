"""
Periodic focus-signal acquisition.

Each tick captures one frame, evaluates every focus metric on it, reads the
stage Z position and appends a Sample to the SampleBuffer. A bad frame or a
failed read is logged and skipped; it never ends the monitoring session.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional
import logging
import time

import cv2

from zstage_control.acquisition.buffer import Sample, SampleBuffer
from zstage_control.acquisition.ticker import PeriodicTask
from zstage_control.autofocus.metrics import SelectedMetric, compute_all
from zstage_control.errors import HardwareError
from zstage_control.hardware.base import FrameSource, ZStage, Z_AXIS

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_S = 0.25


class SampleRecorder(ABC):
    """Collaborator that persists acquired samples."""

    @abstractmethod
    def record(self, timestamp: float, position: float, metric_name: str, metric_value: float) -> None:
        pass


class LoggingSampleRecorder(SampleRecorder):
    """Writes each sample to the module logger at DEBUG level."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def record(self, timestamp: float, position: float, metric_name: str, metric_value: float) -> None:
        self.logger.debug(
            f"t={timestamp:.3f}s Z={position:.2f}um {metric_name}={metric_value:.4f}"
        )


class AcquisitionLoop:
    """
    Samples the focus signal on a fixed period.

    Args:
        frame_source: Provides frames (real or simulated)
        stage: Provides the current Z position
        buffer: Destination for samples; this loop is its only writer
        selected_metric: Metric reported as latest_value and to the recorder
        period_s: Seconds between ticks
        axis: Stage axis recorded as the sample position
        recorder: Optional sample persistence collaborator
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        frame_source: FrameSource,
        stage: ZStage,
        buffer: SampleBuffer,
        selected_metric: Optional[SelectedMetric] = None,
        period_s: float = DEFAULT_PERIOD_S,
        axis: str = Z_AXIS,
        recorder: Optional[SampleRecorder] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.frame_source = frame_source
        self.stage = stage
        self.buffer = buffer
        self.selected_metric = selected_metric or SelectedMetric()
        self.axis = axis
        self.recorder = recorder or LoggingSampleRecorder()
        self._clock = clock
        self._session_start = clock()
        self._task = PeriodicTask(self._scheduled_tick, period_s, name="acquisition-loop", clock=clock)

        self.frames_acquired = 0
        self.frames_skipped = 0
        self.errors = 0

    @property
    def period_s(self) -> float:
        return self._task.period_s

    @property
    def latest_value(self) -> Optional[float]:
        """Selected metric of the most recent sample, or None."""
        sample = self.buffer.latest()
        if sample is None:
            return None
        return sample.metrics[self.selected_metric.index]

    def start(self) -> bool:
        """
        Start a new monitoring session.

        Clears the buffer and restarts the session clock. Does nothing and
        returns False if the loop is already running.
        """
        if self._task.is_running():
            return False
        self.buffer.clear()
        self._session_start = self._clock()
        self.frames_acquired = 0
        self.frames_skipped = 0
        self.errors = 0
        self._task.start()
        logger.info(f"Acquisition started (period {self.period_s:.3f}s, metric {self.selected_metric.name})")
        return True

    def stop(self) -> None:
        """Stop ticking. No sample is appended after this returns."""
        was_running = self._task.is_running()
        self._task.stop()
        if was_running:
            logger.info(
                f"Acquisition stopped: {self.frames_acquired} samples, "
                f"{self.frames_skipped} skipped, {self.errors} errors"
            )

    def is_running(self) -> bool:
        return self._task.is_running()

    def tick(self) -> Optional[Sample]:
        """Run one acquisition step synchronously and return the stored sample."""
        sample = self._acquire()
        if sample is not None:
            self._store(sample)
        return sample

    def _scheduled_tick(self) -> None:
        sample = self._acquire()
        if sample is not None and not self._task.stop_requested:
            self._store(sample)

    def _acquire(self) -> Optional[Sample]:
        try:
            frame, ok = self.frame_source.capture_frame()
        except HardwareError as e:
            self.errors += 1
            logger.warning(f"AcquisitionLoop.capture_frame failed, skipping tick: {e}")
            return None

        if not ok or frame is None:
            self.frames_skipped += 1
            return None

        try:
            metrics = compute_all(frame)
        except (ValueError, cv2.error) as e:
            self.errors += 1
            logger.warning(f"AcquisitionLoop.compute_metrics failed, skipping frame: {e}")
            return None

        try:
            position = float(self.stage.get_position(self.axis))
        except HardwareError as e:
            self.errors += 1
            logger.warning(f"AcquisitionLoop.get_position failed, skipping frame: {e}")
            return None

        return Sample(
            timestamp=self._clock() - self._session_start,
            position=position,
            metrics=metrics,
        )

    def _store(self, sample: Sample) -> None:
        self.buffer.append(sample)
        self.frames_acquired += 1

        index = self.selected_metric.index
        try:
            self.recorder.record(
                sample.timestamp, sample.position, self.selected_metric.name, sample.metrics[index]
            )
        except Exception as e:
            logger.warning(f"AcquisitionLoop.record failed for sample at {sample.timestamp:.3f}s: {e}")
