"""Pycromanager (Micro-Manager) link to the imaging controller."""

from collections import OrderedDict
from typing import Optional, Tuple
import logging

import numpy as np

from zstage_control.hardware.base import (
    ZStage,
    FrameSource,
    Z_AXIS,
    is_mm_running,
    call_with_timeout,
)
from zstage_control.errors import (
    NotFoundError,
    InvalidHandleError,
    ConnectionTimeoutError,
    HardwareError,
    HardwareTimeoutError,
)

logger = logging.getLogger(__name__)


def init_pycromanager(timeout_seconds: float = 30.0):
    """
    Initialize Pycromanager connection to Micro-Manager.

    Args:
        timeout_seconds: Maximum time to wait for connection (default 30s)

    Returns:
        Pycromanager Core object

    Raises:
        NotFoundError: Micro-Manager is not running
        ConnectionTimeoutError: Core() did not answer within timeout_seconds
        InvalidHandleError: A Core object was returned but does not respond
    """
    if not is_mm_running():
        error_msg = (
            "Micro-Manager is not running. "
            "Please start Micro-Manager before connecting."
        )
        logger.error(error_msg)
        raise NotFoundError(error_msg)

    from pycromanager import Core

    logger.info("Connecting to Micro-Manager...")
    try:
        # Core() can hang if MM is locked, pycromanager has no timeout option
        core = call_with_timeout(
            Core,
            timeout_seconds,
            error_cls=ConnectionTimeoutError,
            description="Micro-Manager handshake",
        )
    except ConnectionTimeoutError:
        raise
    except Exception as e:
        error_msg = (
            f"Failed to connect to Micro-Manager ({type(e).__name__}: {e}). "
            f"Micro-Manager may be frozen, in use by another application, "
            f"or its ZMQ port may be blocked."
        )
        logger.error(error_msg)
        raise NotFoundError(error_msg) from e

    validate_core_handle(core)
    core.set_timeout_ms(int(timeout_seconds * 1000))
    logger.info("Successfully connected to Micro-Manager")
    return core


def validate_core_handle(core) -> None:
    """
    Check that a handle behaves like a Micro-Manager Core.

    Raises:
        InvalidHandleError: If the handle is missing required methods or the
            version query fails.
    """
    if core is None:
        raise InvalidHandleError("Micro-Manager handle is empty")

    for name in ("get_version_info", "snap_image", "get_position", "set_position"):
        if not callable(getattr(core, name, None)):
            raise InvalidHandleError(f"Micro-Manager handle is missing '{name}'")

    try:
        version = core.get_version_info()
    except Exception as e:
        raise InvalidHandleError(f"Micro-Manager handle does not respond: {e}") from e

    logger.debug(f"Micro-Manager version: {version}")


class PycromanagerController(ZStage, FrameSource):
    """
    Stage and frame source backed by a live Micro-Manager Core.

    Args:
        core: Pycromanager Core object
        call_timeout_s: Upper bound for each move or capture call
        z_stage_device: Optional focus device name to select before moving
    """

    def __init__(self, core, call_timeout_s: float = 5.0, z_stage_device: Optional[str] = None):
        self.core = core
        self.call_timeout_s = call_timeout_s

        if z_stage_device and self.core.get_focus_device() != z_stage_device:
            self.core.set_focus_device(z_stage_device)
            logger.info(f"Focus device set to {z_stage_device}")

    def _bounded(self, func, *args, description: str):
        try:
            return call_with_timeout(
                func,
                self.call_timeout_s,
                *args,
                error_cls=HardwareTimeoutError,
                description=description,
            )
        except HardwareError:
            raise
        except Exception as e:
            raise HardwareError(f"{description} failed", cause=e) from e

    def ping(self) -> None:
        """Round-trip to the controller, raises HardwareError if it is gone."""
        self._bounded(self.core.get_version_info, description="Controller ping")

    def relative_move(self, axis: str, delta_um: float) -> float:
        def _move():
            if axis == Z_AXIS:
                self.core.set_relative_position(float(delta_um))
                self.core.wait_for_device(self.core.get_focus_device())
            elif axis == "x":
                self.core.set_relative_xy_position(float(delta_um), 0.0)
                self.core.wait_for_device(self.core.get_xy_stage_device())
            elif axis == "y":
                self.core.set_relative_xy_position(0.0, float(delta_um))
                self.core.wait_for_device(self.core.get_xy_stage_device())
            else:
                raise ValueError(f"Unknown axis '{axis}'")

        self._bounded(_move, description=f"Relative {axis} move of {delta_um:.2f} um")
        new_position = self.get_position(axis)
        logger.debug(f"Moved {axis} by {delta_um:.2f} um to {new_position:.2f} um")
        return new_position

    def absolute_move(self, axis: str, target_um: float) -> float:
        def _move():
            if axis == Z_AXIS:
                self.core.set_position(float(target_um))
                self.core.wait_for_device(self.core.get_focus_device())
            elif axis in ("x", "y"):
                x = float(target_um) if axis == "x" else self.core.get_x_position()
                y = float(target_um) if axis == "y" else self.core.get_y_position()
                self.core.set_xy_position(x, y)
                self.core.wait_for_device(self.core.get_xy_stage_device())
            else:
                raise ValueError(f"Unknown axis '{axis}'")

        self._bounded(_move, description=f"Absolute {axis} move to {target_um:.2f} um")
        new_position = self.get_position(axis)
        logger.debug(f"Moved {axis} to {new_position:.2f} um")
        return new_position

    def get_position(self, axis: str) -> float:
        getters = {
            Z_AXIS: self.core.get_position,
            "x": self.core.get_x_position,
            "y": self.core.get_y_position,
        }
        if axis not in getters:
            raise HardwareError(f"Unknown axis '{axis}'")
        return float(self._bounded(getters[axis], description=f"Read {axis} position"))

    def capture_frame(self) -> Tuple[Optional[np.ndarray], bool]:
        """
        Grab the newest frame.

        While a sequence (live mode) is running the last image in the circular
        buffer is used and (None, False) is returned when the buffer is empty.
        Otherwise a single image is snapped.
        """

        def _grab():
            if self.core.is_sequence_running():
                if self.core.get_remaining_image_count() == 0:
                    return None
                return self.core.get_last_tagged_image()
            self.core.snap_image()
            return self.core.get_tagged_image()

        tagged_image = self._bounded(_grab, description="Frame capture")
        if tagged_image is None:
            return None, False

        # Sort tags for consistency
        tags = OrderedDict(sorted(tagged_image.tags.items()))
        pixels = np.asarray(tagged_image.pix)
        height, width = tags["Height"], tags["Width"]
        total_pixels = pixels.shape[0]
        if total_pixels % (height * width) != 0:
            raise HardwareError(
                "Frame capture returned malformed data",
                cause=f"{total_pixels} pixels for {width}x{height} frame",
            )
        nchannels = total_pixels // (height * width)

        if nchannels > 1:
            # BGRA, drop alpha
            pixels = pixels.reshape(height, width, nchannels)[:, :, :3]
        else:
            pixels = pixels.reshape(height, width)

        return pixels, True
