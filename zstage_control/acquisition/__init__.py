"""
Acquisition package - Periodic focus-signal sampling.

Modules:
    buffer: Fixed-capacity ring buffer of samples (SampleBuffer)
    ticker: Periodic task with a cancellation token (PeriodicTask)
    loop: Capture/metrics/position acquisition loop (AcquisitionLoop)
"""

from zstage_control.acquisition.buffer import Sample, SampleBuffer, DEFAULT_CAPACITY
from zstage_control.acquisition.ticker import PeriodicTask
from zstage_control.acquisition.loop import (
    AcquisitionLoop,
    SampleRecorder,
    LoggingSampleRecorder,
    DEFAULT_PERIOD_S,
)

__all__ = [
    "Sample",
    "SampleBuffer",
    "DEFAULT_CAPACITY",
    "PeriodicTask",
    "AcquisitionLoop",
    "SampleRecorder",
    "LoggingSampleRecorder",
    "DEFAULT_PERIOD_S",
]
