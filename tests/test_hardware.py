"""
Unit tests for the hardware layer: Z limits, bounded calls, the simulated
backend and the pycromanager controller against a fake Core.
"""

import time
from types import SimpleNamespace

import numpy as np
import pytest

from zstage_control.autofocus.metrics import AutofocusMetrics
from zstage_control.errors import (
    ConfigurationError,
    ConnectionTimeoutError,
    HardwareError,
    HardwareTimeoutError,
    InvalidHandleError,
    NotFoundError,
)
from zstage_control.hardware import base as hardware_base
from zstage_control.hardware import pycromanager as pm
from zstage_control.hardware.base import ZLimits, call_with_timeout, is_z_in_range
from zstage_control.hardware.pycromanager import PycromanagerController, validate_core_handle
from zstage_control.hardware.simulation import SimulatedFrameSource, SimulatedZStage


class TestZLimits:
    """Test Z soft-limit validation."""

    def test_contains_is_inclusive(self):
        """Both bounds are part of the range."""
        limits = ZLimits(0.0, 50.0)

        assert limits.contains(0.0)
        assert limits.contains(50.0)
        assert not limits.contains(50.001)
        assert not limits.contains(-0.001)

    @pytest.mark.parametrize("low,high", [(10.0, 10.0), (10.0, 0.0)])
    def test_invalid_limits_rejected(self, low, high):
        """low must be strictly below high."""
        with pytest.raises(ConfigurationError):
            ZLimits(low, high)

    def test_is_z_in_range(self):
        """Range check rejects out-of-range and non-finite positions."""
        limits = ZLimits(-5.0, 5.0)

        assert is_z_in_range(limits, 0.0)
        assert not is_z_in_range(limits, 6.0)
        assert not is_z_in_range(limits, float("nan"))
        assert not is_z_in_range(limits, None)


class TestCallWithTimeout:
    """Test bounded hardware calls."""

    def test_returns_result(self):
        """Fast calls return their value."""
        assert call_with_timeout(lambda a, b: a + b, 1.0, 2, 3) == 5

    def test_timeout_raises_error_cls(self):
        """A call that overruns raises the requested error kind."""
        with pytest.raises(ConnectionTimeoutError):
            call_with_timeout(time.sleep, 0.05, 1.0, error_cls=ConnectionTimeoutError)

    def test_default_error_is_hardware_timeout(self):
        """The default timeout error is a HardwareError."""
        with pytest.raises(HardwareTimeoutError) as exc_info:
            call_with_timeout(time.sleep, 0.05, 1.0, description="Slow move")

        assert isinstance(exc_info.value, HardwareError)
        assert "Slow move" in str(exc_info.value)

    def test_exceptions_propagate(self):
        """Errors raised by the call are not converted."""

        def fail():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            call_with_timeout(fail, 1.0)

    def test_no_timeout(self):
        """timeout None calls directly."""
        assert call_with_timeout(lambda: 42, None) == 42


class TestSimulatedStage:
    """Test the in-memory stage."""

    def test_moves(self):
        """Relative and absolute moves update the position."""
        stage = SimulatedZStage()

        assert stage.get_position("z") == 0.0
        assert stage.relative_move("z", 2.5) == 2.5
        assert stage.absolute_move("z", -1.0) == -1.0
        assert stage.get_position("z") == -1.0

    def test_unknown_axis(self):
        """Unknown axes raise HardwareError."""
        with pytest.raises(HardwareError):
            SimulatedZStage().get_position("theta")

    def test_reset(self):
        """reset() returns every axis to zero."""
        stage = SimulatedZStage()
        stage.absolute_move("x", 3.0)
        stage.absolute_move("z", 4.0)
        stage.reset()

        assert stage.get_position("x") == 0.0
        assert stage.get_position("z") == 0.0


class TestSimulatedFrameSource:
    """Test synthetic frames."""

    def test_frame_shape_and_type(self):
        """Frames are uint16 with the configured shape."""
        source = SimulatedFrameSource(SimulatedZStage(), frame_shape=(40, 30), seed=0)

        frame, ok = source.capture_frame()

        assert ok
        assert frame.shape == (40, 30)
        assert frame.dtype == np.uint16

    def test_focus_peaks_at_focal_plane(self):
        """Brightness and sharpness are highest at the focal plane."""
        source = SimulatedFrameSource(
            SimulatedZStage(), focal_plane_um=50.0, noise_level=0.0, seed=3
        )

        in_focus = source.render(50.0)
        near = source.render(60.0)
        far = source.render(0.0)

        assert AutofocusMetrics.mean(in_focus) > AutofocusMetrics.mean(near) > AutofocusMetrics.mean(far)
        assert AutofocusMetrics.gradient_energy(in_focus) > AutofocusMetrics.gradient_energy(near)

    def test_frame_follows_stage(self):
        """capture_frame renders at the stage Z position."""
        stage = SimulatedZStage()
        source = SimulatedFrameSource(stage, focal_plane_um=50.0, noise_level=0.0, seed=4)

        far_frame, _ = source.capture_frame()
        stage.absolute_move("z", 50.0)
        focused_frame, _ = source.capture_frame()

        assert AutofocusMetrics.mean(focused_frame) > AutofocusMetrics.mean(far_frame)


class FakeCore:
    """Stand-in for a pycromanager Core."""

    def __init__(self):
        self.z = 10.0
        self.x = 0.0
        self.y = 0.0
        self.focus_device = "ZStage"
        self.sequence_running = False
        self.remaining = 0
        self.image = SimpleNamespace(
            pix=np.arange(12, dtype=np.uint16),
            tags={"Width": 4, "Height": 3},
        )
        self.waited = []

    def get_version_info(self):
        return "2.0.3"

    def get_focus_device(self):
        return self.focus_device

    def set_focus_device(self, name):
        self.focus_device = name

    def get_xy_stage_device(self):
        return "XYStage"

    def wait_for_device(self, name):
        self.waited.append(name)

    def set_relative_position(self, delta):
        self.z += delta

    def set_position(self, z):
        self.z = z

    def get_position(self):
        return self.z

    def get_x_position(self):
        return self.x

    def get_y_position(self):
        return self.y

    def set_xy_position(self, x, y):
        self.x, self.y = x, y

    def set_relative_xy_position(self, dx, dy):
        self.x += dx
        self.y += dy

    def is_sequence_running(self):
        return self.sequence_running

    def get_remaining_image_count(self):
        return self.remaining

    def get_last_tagged_image(self):
        return self.image

    def snap_image(self):
        pass

    def get_tagged_image(self):
        return self.image


class TestPycromanagerController:
    """Test the Micro-Manager backend against a fake Core."""

    def test_validate_core_handle(self):
        """A fake Core with the required methods passes validation."""
        validate_core_handle(FakeCore())

    def test_validate_rejects_empty_handle(self):
        """None and objects without Core methods are invalid."""
        with pytest.raises(InvalidHandleError):
            validate_core_handle(None)
        with pytest.raises(InvalidHandleError):
            validate_core_handle(object())

    def test_z_moves(self):
        """Z moves go through the focus device and return the new position."""
        core = FakeCore()
        controller = PycromanagerController(core)

        assert controller.relative_move("z", 2.5) == 12.5
        assert controller.absolute_move("z", 3.0) == 3.0
        assert core.waited == ["ZStage", "ZStage"]

    def test_xy_moves(self):
        """X/Y moves keep the other axis."""
        core = FakeCore()
        core.y = 7.0
        controller = PycromanagerController(core)

        assert controller.absolute_move("x", 5.0) == 5.0
        assert core.y == 7.0
        assert controller.relative_move("y", 1.0) == 8.0

    def test_focus_device_selected(self):
        """A configured focus device is selected at construction."""
        core = FakeCore()
        PycromanagerController(core, z_stage_device="Piezo")

        assert core.focus_device == "Piezo"

    def test_core_errors_become_hardware_errors(self):
        """Exceptions from the Core are wrapped with their cause."""
        core = FakeCore()

        def broken(delta):
            raise RuntimeError("device busy")

        core.set_relative_position = broken
        controller = PycromanagerController(core)

        with pytest.raises(HardwareError) as exc_info:
            controller.relative_move("z", 1.0)
        assert "device busy" in str(exc_info.value)

    def test_unknown_axis(self):
        """Unknown axes raise HardwareError."""
        with pytest.raises(HardwareError):
            PycromanagerController(FakeCore()).get_position("theta")

    def test_snap_frame(self):
        """A snapped frame is reshaped from its tags."""
        frame, ok = PycromanagerController(FakeCore()).capture_frame()

        assert ok
        assert frame.shape == (3, 4)
        assert frame[2, 3] == 11

    def test_live_mode_without_new_frame(self):
        """In live mode an empty circular buffer means no frame."""
        core = FakeCore()
        core.sequence_running = True
        core.remaining = 0

        assert PycromanagerController(core).capture_frame() == (None, False)

    def test_color_frame_drops_alpha(self):
        """BGRA frames are returned as 3-channel images."""
        core = FakeCore()
        core.image = SimpleNamespace(pix=np.zeros(3 * 4 * 4, dtype=np.uint8), tags={"Width": 4, "Height": 3})

        frame, ok = PycromanagerController(core).capture_frame()

        assert frame.shape == (3, 4, 3)

    def test_ping_failure(self):
        """A Core that stops answering fails the ping."""
        core = FakeCore()

        def gone():
            raise ConnectionError("socket closed")

        core.get_version_info = gone

        with pytest.raises(HardwareError):
            PycromanagerController(core).ping()


class TestInitPycromanager:
    """Test the Micro-Manager handshake without a running instance."""

    def test_not_running(self, monkeypatch):
        """No Micro-Manager process raises NotFoundError."""
        monkeypatch.setattr(pm, "is_mm_running", lambda: False)

        with pytest.raises(NotFoundError):
            pm.init_pycromanager(timeout_seconds=0.1)

    def test_handshake_timeout(self, monkeypatch):
        """A Core() that hangs raises ConnectionTimeoutError."""
        pycromanager = pytest.importorskip("pycromanager")
        monkeypatch.setattr(pm, "is_mm_running", lambda: True)
        monkeypatch.setattr(pycromanager, "Core", lambda: time.sleep(1.0))

        with pytest.raises(ConnectionTimeoutError):
            pm.init_pycromanager(timeout_seconds=0.05)

    def test_handshake_success(self, monkeypatch):
        """A responsive Core is validated and returned."""
        pycromanager = pytest.importorskip("pycromanager")
        core = FakeCore()
        core.timeout_ms = None

        def set_timeout_ms(ms):
            core.timeout_ms = ms

        core.set_timeout_ms = set_timeout_ms
        monkeypatch.setattr(pm, "is_mm_running", lambda: True)
        monkeypatch.setattr(pycromanager, "Core", lambda: core)

        assert pm.init_pycromanager(timeout_seconds=2.0) is core
        assert core.timeout_ms == 2000

    def test_is_mm_running_off_windows(self, monkeypatch):
        """Micro-Manager detection only applies on Windows."""
        import platform

        monkeypatch.setattr(platform, "system", lambda: "Linux")

        assert hardware_base.is_mm_running() is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
