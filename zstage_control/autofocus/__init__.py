"""
Autofocus package - Focus metrics and peak detection.

Modules:
    metrics: Focus quality metrics (AutofocusMetrics) and the metric table
    locator: Best-focus search over recorded samples (FocusLocator)
"""

from zstage_control.autofocus.metrics import (
    AutofocusMetrics,
    Metric,
    METRIC_TABLE,
    METRIC_NAMES,
    DEFAULT_METRIC,
    SelectedMetric,
    compute_all,
    resolve_metric,
)
from zstage_control.autofocus.locator import FocusLocator, FocusResult

__all__ = [
    "AutofocusMetrics",
    "Metric",
    "METRIC_TABLE",
    "METRIC_NAMES",
    "DEFAULT_METRIC",
    "SelectedMetric",
    "compute_all",
    "resolve_metric",
    "FocusLocator",
    "FocusResult",
]
