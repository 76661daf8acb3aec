"""
Hardware package - Z-stage and frame source abstraction.

This package contains the hardware abstraction layer between the focus
control loops and the imaging controller (currently Pycromanager/Micro-Manager).

Modules:
    base: Abstract stage and frame source interfaces, Z limits, bounded calls
    pycromanager: Pycromanager-based stage and frame source
    simulation: Simulated stage and frame source used when no controller is available
"""

from zstage_control.hardware.base import (
    Z_AXIS,
    ZLimits,
    ZStage,
    FrameSource,
    is_mm_running,
    is_z_in_range,
    call_with_timeout,
)
from zstage_control.hardware.simulation import SimulatedZStage, SimulatedFrameSource
from zstage_control.hardware.pycromanager import PycromanagerController, init_pycromanager

__all__ = [
    "Z_AXIS",
    "ZLimits",
    "ZStage",
    "FrameSource",
    "is_mm_running",
    "is_z_in_range",
    "call_with_timeout",
    "SimulatedZStage",
    "SimulatedFrameSource",
    "PycromanagerController",
    "init_pycromanager",
]
