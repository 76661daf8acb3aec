"""
Scan package - Automated Z scanning.

Modules:
    controller: Step/pause/limit-check scan state machine (ScanController)
"""

from zstage_control.scan.controller import ScanController, ScanState, ScanSummary, HaltReason

__all__ = ["ScanController", "ScanState", "ScanSummary", "HaltReason"]
