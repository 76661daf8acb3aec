"""Fixed-capacity ring buffer of focus samples."""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
import threading

import numpy as np

from zstage_control.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


@dataclass(frozen=True)
class Sample:
    """One acquisition tick."""

    # Seconds since the acquisition session started (monotonic clock)
    timestamp: float

    # Stage Z position in micrometers when the frame was taken
    position: float

    # One value per metric, indexed by autofocus.metrics.Metric
    metrics: Tuple[float, ...]


class SampleBuffer:
    """
    Ring buffer of Samples with a single writer.

    Once full, each append overwrites the oldest sample. Readers get a
    snapshot copy so the writer may keep appending while they work on it.

    Args:
        capacity: Maximum number of samples kept
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if int(capacity) < 1:
            raise ConfigurationError(f"Buffer capacity must be >= 1, got {capacity}")
        self._capacity = int(capacity)
        self._entries: List[Optional[Sample]] = [None] * self._capacity
        self._write_index = 0
        self._count = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._count

    def append(self, sample: Sample) -> None:
        """Store a sample, overwriting the oldest one when full."""
        with self._lock:
            self._entries[self._write_index] = sample
            self._write_index = (self._write_index + 1) % self._capacity
            self._count = min(self._count + 1, self._capacity)

    def clear(self) -> None:
        """Invalidate all entries."""
        with self._lock:
            self._entries = [None] * self._capacity
            self._write_index = 0
            self._count = 0
        logger.debug("Sample buffer cleared")

    def snapshot(self) -> List[Sample]:
        """Valid samples, oldest first."""
        with self._lock:
            if self._count < self._capacity:
                entries = self._entries[: self._count]
            else:
                entries = self._entries[self._write_index :] + self._entries[: self._write_index]
        return list(entries)

    def latest(self) -> Optional[Sample]:
        """Most recently appended sample, or None if empty."""
        with self._lock:
            if self._count == 0:
                return None
            return self._entries[(self._write_index - 1) % self._capacity]

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Snapshot as numpy arrays for plotting and analysis.

        Returns:
            (timestamps, positions, metrics) where metrics has shape
            (n_samples, n_metrics)
        """
        samples = self.snapshot()
        if not samples:
            return np.empty(0), np.empty(0), np.empty((0, 0))
        timestamps = np.array([s.timestamp for s in samples], dtype=np.float64)
        positions = np.array([s.position for s in samples], dtype=np.float64)
        metrics = np.array([s.metrics for s in samples], dtype=np.float64)
        return timestamps, positions, metrics
