"""Hardware abstraction layer for Z-stage focus control."""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Optional, Tuple, Callable, Any, Type
import logging

import numpy as np

from zstage_control.errors import ConfigurationError, HardwareTimeoutError, ZStageError

logger = logging.getLogger(__name__)

Z_AXIS = "z"


@dataclass(frozen=True)
class ZLimits:
    """Soft limits for the Z axis in micrometers (inclusive)."""

    low: float
    high: float

    def __post_init__(self):
        if not self.low < self.high:
            raise ConfigurationError(
                f"Z limits must satisfy low < high, got [{self.low}, {self.high}]"
            )

    def contains(self, z: float) -> bool:
        """True if z lies within [low, high]."""
        return self.low <= z <= self.high


class ZStage(ABC):
    """Abstract stage collaborator. Positions are in micrometers."""

    @abstractmethod
    def relative_move(self, axis: str, delta_um: float) -> float:
        """Move axis by delta_um and return the new position."""
        pass

    @abstractmethod
    def absolute_move(self, axis: str, target_um: float) -> float:
        """Move axis to target_um and return the new position."""
        pass

    @abstractmethod
    def get_position(self, axis: str) -> float:
        """Get current position of axis."""
        pass


class FrameSource(ABC):
    """Abstract frame collaborator."""

    @abstractmethod
    def capture_frame(self) -> Tuple[Optional[np.ndarray], bool]:
        """
        Return the latest frame.

        Returns:
            (frame, True) when a frame is available, (None, False) when no new
            frame is ready. Implementations do not raise for the no-frame case.
        """
        pass


def is_mm_running() -> bool:
    """Check if Micro-Manager is running as a Windows executable."""
    import platform
    import psutil

    if platform.system() != "Windows":
        return False

    for proc in psutil.process_iter(["name"]):
        try:
            if proc.exe().find("Micro-Manager") > 0:
                return True
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            pass
    return False


def is_z_in_range(limits: ZLimits, z: float) -> bool:
    """
    Check if a Z position is within the configured soft limits.

    Args:
        limits: Z soft limits
        z: Position to check in micrometers

    Returns:
        True if position is within limits, False otherwise
    """
    if z is None or not np.isfinite(z):
        logger.warning(f"Z position {z} is not a finite number")
        return False

    if limits.contains(z):
        return True

    logger.warning(f"Z position {z} out of range [{limits.low}, {limits.high}]")
    return False


def call_with_timeout(
    func: Callable[..., Any],
    timeout_s: Optional[float],
    *args,
    error_cls: Type[ZStageError] = HardwareTimeoutError,
    description: Optional[str] = None,
    **kwargs,
) -> Any:
    """
    Run a blocking hardware call with an upper bound on its duration.

    The call runs on a short-lived worker thread. If it does not finish within
    timeout_s the caller gets error_cls and moves on; the worker is abandoned.

    Args:
        func: Callable to run
        timeout_s: Maximum seconds to wait. None disables the bound.
        error_cls: Exception raised on timeout
        description: Name used in log and error messages

    Returns:
        Whatever func returns. Exceptions raised by func propagate unchanged.
    """
    if timeout_s is None:
        return func(*args, **kwargs)

    name = description or getattr(func, "__name__", "hardware call")
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="zstage-call")
    try:
        future = executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=timeout_s)
        except FutureTimeoutError:
            if future.done():
                # func raised TimeoutError itself
                raise
            logger.error(f"{name} did not complete within {timeout_s:.2f}s")
            raise error_cls(f"{name} timed out after {timeout_s:.2f}s")
    finally:
        executor.shutdown(wait=False)
