"""
Z-Stage Control - Closed-Loop Focus Control Library
===================================================

Focus control for a microscope Z stage via Pycromanager (Micro-Manager).
Provides:

- Connection management with retry/backoff and a simulation fallback
- Periodic acquisition of image focus metrics into a bounded sample buffer
- Automated Z scanning between soft limits
- Best-focus peak detection and positioning
- Position bookmarks
- Configuration management for focus settings

Example Usage:
-------------
from zstage_control import ZStageFocusController

controller = ZStageFocusController.from_config('config_default')
controller.connect()  # falls back to simulation if Micro-Manager is absent

controller.set_metric('gradient_energy')
result = controller.run_focus_sweep(step_size=5.0, pause_time=0.5)
print(result.position, result.value)

controller.shutdown()
"""

__version__ = "1.0.0"

from zstage_control.errors import (
    ZStageError,
    ControllerConnectionError,
    NotFoundError,
    InvalidHandleError,
    ConnectionTimeoutError,
    HardwareError,
    HardwareTimeoutError,
    DataError,
    NoDataError,
    ConfigurationError,
)
from zstage_control.hardware.base import ZLimits, ZStage, FrameSource
from zstage_control.autofocus.metrics import AutofocusMetrics, Metric, SelectedMetric
from zstage_control.autofocus.locator import FocusLocator, FocusResult
from zstage_control.acquisition.buffer import Sample, SampleBuffer
from zstage_control.acquisition.loop import AcquisitionLoop
from zstage_control.connection.manager import ConnectionManager, ConnectionState, RetryPolicy
from zstage_control.scan.controller import ScanController, ScanState, ScanSummary
from zstage_control.bookmarks import Bookmark, BookmarkManager
from zstage_control.config.manager import ConfigManager, FocusSettings
from zstage_control.controller import ZStageFocusController

__all__ = [
    "ZStageError",
    "ControllerConnectionError",
    "NotFoundError",
    "InvalidHandleError",
    "ConnectionTimeoutError",
    "HardwareError",
    "HardwareTimeoutError",
    "DataError",
    "NoDataError",
    "ConfigurationError",
    "ZLimits",
    "ZStage",
    "FrameSource",
    "AutofocusMetrics",
    "Metric",
    "SelectedMetric",
    "FocusLocator",
    "FocusResult",
    "Sample",
    "SampleBuffer",
    "AcquisitionLoop",
    "ConnectionManager",
    "ConnectionState",
    "RetryPolicy",
    "ScanController",
    "ScanState",
    "ScanSummary",
    "Bookmark",
    "BookmarkManager",
    "ConfigManager",
    "FocusSettings",
    "ZStageFocusController",
]
