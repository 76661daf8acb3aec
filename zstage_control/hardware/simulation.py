"""
Simulated stage and frame source.

Used when the imaging controller is unavailable so that acquisition, scanning
and peak detection stay exercisable. The frame source renders a fixed
pseudo-random texture whose sharpness and brightness peak at a configurable
focal plane, so a simulated sweep has a real focus curve to find.
"""

import logging
import threading
from typing import Optional, Tuple, Dict

import numpy as np
from scipy import ndimage

from zstage_control.hardware.base import ZStage, FrameSource, Z_AXIS
from zstage_control.errors import HardwareError

logger = logging.getLogger(__name__)


class SimulatedZStage(ZStage):
    """In-memory stage. All axes start at zero."""

    AXES = ("x", "y", Z_AXIS)

    def __init__(self):
        self._lock = threading.Lock()
        self._positions: Dict[str, float] = {axis: 0.0 for axis in self.AXES}

    def _check_axis(self, axis: str) -> None:
        if axis not in self._positions:
            raise HardwareError(f"Unknown axis '{axis}'", cause=f"expected one of {self.AXES}")

    def relative_move(self, axis: str, delta_um: float) -> float:
        self._check_axis(axis)
        with self._lock:
            old = self._positions[axis]
            self._positions[axis] = old + float(delta_um)
            new = self._positions[axis]
        logger.debug(f"Simulated {axis} movement: {old:.2f} um -> {new:.2f} um")
        return new

    def absolute_move(self, axis: str, target_um: float) -> float:
        self._check_axis(axis)
        with self._lock:
            old = self._positions[axis]
            self._positions[axis] = float(target_um)
        logger.debug(f"Simulated {axis} movement: {old:.2f} um -> {target_um:.2f} um")
        return float(target_um)

    def get_position(self, axis: str) -> float:
        self._check_axis(axis)
        with self._lock:
            return self._positions[axis]

    def reset(self) -> None:
        """Return all axes to zero."""
        with self._lock:
            for axis in self._positions:
                self._positions[axis] = 0.0
        logger.info("Simulated stage reset to origin")


class SimulatedFrameSource(FrameSource):
    """
    Synthetic 16-bit frames whose focus depends on the stage Z position.

    Args:
        stage: Stage whose Z position defines the defocus
        frame_shape: (height, width) of generated frames
        focal_plane_um: Z position of best focus
        depth_of_field_um: Defocus at which blur and dimming become noticeable
        noise_level: Relative amplitude of per-frame Gaussian noise
        seed: Seed for the pseudo-random generator (None for nondeterministic)
    """

    def __init__(
        self,
        stage: ZStage,
        frame_shape: Tuple[int, int] = (128, 128),
        focal_plane_um: float = 50.0,
        depth_of_field_um: float = 10.0,
        noise_level: float = 0.02,
        seed: Optional[int] = None,
    ):
        self.stage = stage
        self.frame_shape = tuple(int(s) for s in frame_shape)
        self.focal_plane_um = float(focal_plane_um)
        self.depth_of_field_um = float(depth_of_field_um)
        self.noise_level = float(noise_level)
        self._rng = np.random.default_rng(seed)
        self._texture = self._rng.random(self.frame_shape)

    def render(self, z: float) -> np.ndarray:
        """Render the frame seen at Z position z."""
        defocus = abs(z - self.focal_plane_um) / self.depth_of_field_um

        # Blur grows with defocus, signal falls off as a Gaussian
        sigma = 0.5 + 3.0 * defocus
        blurred = ndimage.gaussian_filter(self._texture, sigma=sigma)
        signal = np.exp(-0.5 * defocus**2)

        frame = 0.1 + 0.8 * signal * blurred
        frame = frame + self.noise_level * self._rng.standard_normal(self.frame_shape)
        return (np.clip(frame, 0.0, 1.0) * 65535).astype(np.uint16)

    def capture_frame(self) -> Tuple[Optional[np.ndarray], bool]:
        z = self.stage.get_position(Z_AXIS)
        return self.render(z), True
