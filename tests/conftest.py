"""
Shared pytest fixtures for zstage_control tests.

Provides synthetic images, in-memory stage and frame-source fakes, and
sample configuration dictionaries.
"""

import threading

import numpy as np
import pytest

from zstage_control.errors import HardwareError
from zstage_control.hardware.base import ZStage, FrameSource, Z_AXIS


class FakeStage(ZStage):
    """
    In-memory Z stage that records every command.

    Set fail_on_move / fail_on_read to an exception instance to make the
    corresponding calls raise it.
    """

    def __init__(self, z=0.0):
        self.positions = {"x": 0.0, "y": 0.0, Z_AXIS: float(z)}
        self.moves = []
        self.fail_on_move = None
        self.fail_on_read = None
        self._lock = threading.Lock()

    def relative_move(self, axis, delta_um):
        if self.fail_on_move is not None:
            raise self.fail_on_move
        with self._lock:
            self.positions[axis] += float(delta_um)
            self.moves.append(("relative", axis, float(delta_um)))
            return self.positions[axis]

    def absolute_move(self, axis, target_um):
        if self.fail_on_move is not None:
            raise self.fail_on_move
        with self._lock:
            self.positions[axis] = float(target_um)
            self.moves.append(("absolute", axis, float(target_um)))
            return self.positions[axis]

    def get_position(self, axis):
        if self.fail_on_read is not None:
            raise self.fail_on_read
        with self._lock:
            return self.positions[axis]


class ScriptedFrameSource(FrameSource):
    """
    Frame source that plays back a script of (frame, ok) results.

    Entries may also be exception instances, which are raised. Once the
    script is exhausted the default frame is returned forever.
    """

    def __init__(self, script=None, default_frame=None):
        self.script = list(script or [])
        self.default_frame = default_frame
        self.calls = 0

    def capture_frame(self):
        self.calls += 1
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if self.default_frame is None:
            return None, False
        return self.default_frame, True


@pytest.fixture
def synthetic_focused_image():
    """
    Generate a synthetic focused image with high-frequency content.

    Returns:
        np.ndarray: 512x512 uint8 image with sharp edges and high contrast
    """
    rng = np.random.default_rng(0)
    size = 512
    img = np.zeros((size, size), dtype=np.uint8)

    # Add sharp edges (high frequency content indicates good focus)
    for i in range(0, size, 50):
        img[i:i+10, :] = 255
        img[:, i:i+10] = 255

    # Add some noise for texture
    noise = rng.integers(0, 30, (size, size))
    img = np.clip(img.astype(np.int16) + noise, 0, 255).astype(np.uint8)

    return img


@pytest.fixture
def synthetic_blurred_image():
    """
    Generate a synthetic blurred image with low-frequency content.

    Returns:
        np.ndarray: 512x512 uint8 image with blurred edges and low contrast
    """
    from scipy.ndimage import gaussian_filter

    size = 512
    img = np.zeros((size, size), dtype=np.uint8)

    # Add edges that will be blurred
    for i in range(0, size, 50):
        img[i:i+10, :] = 255
        img[:, i:i+10] = 255

    # Apply strong blur (simulates out-of-focus image)
    img = gaussian_filter(img.astype(float), sigma=15)
    img = np.clip(img, 0, 255).astype(np.uint8)

    return img


@pytest.fixture
def uniform_frame():
    """64x64 uint16 frame with every pixel at 1000."""
    return np.full((64, 64), 1000, dtype=np.uint16)


@pytest.fixture
def fake_stage():
    """FakeStage starting at Z=0."""
    return FakeStage()


@pytest.fixture
def make_stage():
    """Factory for FakeStage at a given Z."""
    return FakeStage


@pytest.fixture
def make_frame_source():
    """Factory for ScriptedFrameSource."""
    return ScriptedFrameSource


@pytest.fixture
def frame_source(uniform_frame):
    """Frame source that always returns the uniform frame."""
    return ScriptedFrameSource(default_frame=uniform_frame)


@pytest.fixture
def sample_focus_config():
    """
    Sample focus-control configuration for testing.

    Returns:
        dict: Complete configuration dictionary
    """
    return {
        'microscope': {
            'name': 'Test Microscope',
            'type': 'widefield'
        },
        'stage': {
            'axis': 'z',
            'z_stage': 'ZDrive',
            'limits': {
                'z_um': {'low': -50.0, 'high': 250.0}
            }
        },
        'connection': {
            'retry': {
                'max_retries': 5,
                'initial_delay_s': 0.5,
                'max_delay_s': 10.0,
                'multiplier': 3.0
            },
            'handshake_timeout_s': 20.0,
            'call_timeout_s': 2.0
        },
        'acquisition': {
            'period_s': 0.1,
            'buffer_capacity': 200,
            'default_metric': 'gradient_energy'
        },
        'scan': {
            'step_size_um': 2.5,
            'pause_time_s': 0.2
        },
        'simulation': {
            'frame_shape': [64, 64],
            'focal_plane_um': 100.0,
            'seed': 7
        }
    }


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create a temporary configuration directory.

    Returns:
        Path: Path to empty directory
    """
    config_dir = tmp_path / "configurations"
    config_dir.mkdir()
    return config_dir
