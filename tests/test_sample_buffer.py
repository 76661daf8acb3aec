"""
Unit tests for the sample ring buffer.
"""

import numpy as np
import pytest

from zstage_control.acquisition.buffer import Sample, SampleBuffer, DEFAULT_CAPACITY
from zstage_control.errors import ConfigurationError


def make_sample(i):
    return Sample(timestamp=float(i), position=float(i) * 2.0, metrics=(float(i), float(i) + 0.5))


class TestSampleBufferBasics:
    """Test appending and reading samples."""

    def test_default_capacity(self):
        """Default capacity should be 1000 samples."""
        assert DEFAULT_CAPACITY == 1000
        assert SampleBuffer().capacity == 1000

    def test_empty_buffer(self):
        """A new buffer has no samples."""
        buffer = SampleBuffer(5)

        assert len(buffer) == 0
        assert buffer.snapshot() == []
        assert buffer.latest() is None

    def test_append_preserves_order(self):
        """Snapshot should return samples oldest first."""
        buffer = SampleBuffer(5)
        for i in range(3):
            buffer.append(make_sample(i))

        assert len(buffer) == 3
        assert [s.timestamp for s in buffer.snapshot()] == [0.0, 1.0, 2.0]
        assert buffer.latest() == make_sample(2)

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_invalid_capacity_rejected(self, capacity):
        """Capacity below one should raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            SampleBuffer(capacity)


class TestSampleBufferRing:
    """Test ring (overwrite-oldest) semantics."""

    def test_never_exceeds_capacity(self):
        """The buffer should hold at most capacity samples."""
        buffer = SampleBuffer(4)
        for i in range(10):
            buffer.append(make_sample(i))
            assert len(buffer) <= 4

        assert len(buffer) == 4

    def test_capacity_plus_one_drops_oldest(self):
        """capacity+1 inserts leave samples 2..capacity+1."""
        capacity = 5
        buffer = SampleBuffer(capacity)
        for i in range(1, capacity + 2):
            buffer.append(make_sample(i))

        assert [s.timestamp for s in buffer.snapshot()] == [2.0, 3.0, 4.0, 5.0, 6.0]
        assert buffer.latest().timestamp == 6.0

    def test_capacity_one(self):
        """A one-slot buffer always holds the latest sample."""
        buffer = SampleBuffer(1)
        buffer.append(make_sample(1))
        buffer.append(make_sample(2))

        assert buffer.snapshot() == [make_sample(2)]


class TestSampleBufferSnapshot:
    """Test clear, snapshot isolation and array export."""

    def test_clear_invalidates_entries(self):
        """clear() should empty the buffer."""
        buffer = SampleBuffer(3)
        for i in range(5):
            buffer.append(make_sample(i))
        buffer.clear()

        assert len(buffer) == 0
        assert buffer.snapshot() == []

        buffer.append(make_sample(9))
        assert buffer.snapshot() == [make_sample(9)]

    def test_snapshot_is_a_copy(self):
        """Appending after a snapshot must not change it."""
        buffer = SampleBuffer(3)
        buffer.append(make_sample(0))
        snapshot = buffer.snapshot()
        buffer.append(make_sample(1))

        assert len(snapshot) == 1

    def test_as_arrays(self):
        """as_arrays should return aligned numpy arrays."""
        buffer = SampleBuffer(10)
        for i in range(3):
            buffer.append(make_sample(i))

        timestamps, positions, metrics = buffer.as_arrays()

        np.testing.assert_array_equal(timestamps, [0.0, 1.0, 2.0])
        np.testing.assert_array_equal(positions, [0.0, 2.0, 4.0])
        assert metrics.shape == (3, 2)
        assert metrics[2, 1] == 2.5

    def test_as_arrays_empty(self):
        """An empty buffer exports empty arrays."""
        timestamps, positions, metrics = SampleBuffer(3).as_arrays()

        assert timestamps.size == 0
        assert positions.size == 0
        assert metrics.shape == (0, 0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
