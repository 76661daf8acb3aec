from enum import IntEnum
from typing import Callable, Tuple, Union
import logging

import numpy as np
import cv2

from zstage_control.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _as_gray(image: np.ndarray) -> np.ndarray:
    """Reduce an image to a 2-D float64 intensity array."""
    image = np.asarray(image)
    if image.ndim == 3:
        if image.shape[2] == 1:
            image = image[:, :, 0]
        else:
            if image.dtype not in (np.uint8, np.uint16, np.float32):
                image = image.astype(np.float32)
            image = cv2.cvtColor(image[:, :, :3], cv2.COLOR_BGR2GRAY)
    if image.ndim != 2:
        raise ValueError(f"Expected a 2-D frame, got shape {image.shape}")
    if image.size == 0:
        raise ValueError("Cannot compute a focus metric on an empty frame")
    return image.astype(np.float64)


class AutofocusMetrics:
    """
    Library of focus-quality metric calculations.
    Higher metric values typically indicate better focus (or more signal).

    All metrics are pure functions of a single frame and return a float.
    """

    @staticmethod
    def variance(image: np.ndarray) -> float:
        """
        Calculate variance of pixel intensities.
        Simple but effective for many samples.
        """
        return float(np.var(_as_gray(image)))

    @staticmethod
    def std_dev(image: np.ndarray) -> float:
        """Standard deviation of pixel intensities."""
        return float(np.std(_as_gray(image)))

    @staticmethod
    def gradient_energy(image: np.ndarray, ksize: int = 3) -> float:
        """
        Mean squared Sobel gradient magnitude (Tenenbaum gradient per pixel).
        Good balance between noise resistance and sensitivity, and independent
        of frame size.

        Args:
            image: Input image
            ksize: Sobel kernel size

        Returns:
            Gradient energy score
        """
        gray = _as_gray(image)
        sobel_x = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=ksize)
        sobel_y = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=ksize)
        return float(np.mean(sobel_x**2 + sobel_y**2))

    @staticmethod
    def entropy(image: np.ndarray, bins: int = 256) -> float:
        """
        Shannon entropy of the image histogram in bits.

        Integer frames are binned over the full range of their dtype so that
        values are comparable between frames; float frames over their own
        min/max.
        """
        raw = np.asarray(image)
        gray = _as_gray(raw)

        if np.issubdtype(raw.dtype, np.integer):
            info = np.iinfo(raw.dtype)
            value_range = (float(info.min), float(info.max) + 1.0)
        else:
            value_range = (float(gray.min()), float(gray.max()))
            if value_range[0] == value_range[1]:
                return 0.0

        hist, _ = np.histogram(gray.ravel(), bins=bins, range=value_range)
        hist = hist[hist > 0]  # Remove zero bins

        if len(hist) == 0:
            return 0.0

        prob = hist / hist.sum()
        return float(-np.sum(prob * np.log2(prob)) + 0.0)

    @staticmethod
    def mean(image: np.ndarray) -> float:
        """Mean intensity (brightness)."""
        return float(np.mean(_as_gray(image)))

    @staticmethod
    def median(image: np.ndarray) -> float:
        """Median intensity, robust to hot pixels."""
        return float(np.median(_as_gray(image)))

    @staticmethod
    def max(image: np.ndarray) -> float:
        """Brightest pixel value."""
        return float(np.max(_as_gray(image)))

    @staticmethod
    def percentile_95(image: np.ndarray) -> float:
        """95th percentile intensity, a brightness measure that ignores outliers."""
        return float(np.percentile(_as_gray(image), 95))


class Metric(IntEnum):
    """Index of each metric in METRIC_TABLE and in every Sample's metric vector."""

    VARIANCE = 0
    STD_DEV = 1
    GRADIENT_ENERGY = 2
    ENTROPY = 3
    MEAN = 4
    MEDIAN = 5
    MAX = 6
    PERCENTILE_95 = 7


# (display name, function) in Metric order
METRIC_TABLE: Tuple[Tuple[str, Callable[[np.ndarray], float]], ...] = (
    ("Variance", AutofocusMetrics.variance),
    ("Std Dev", AutofocusMetrics.std_dev),
    ("Gradient Energy", AutofocusMetrics.gradient_energy),
    ("Entropy", AutofocusMetrics.entropy),
    ("Mean", AutofocusMetrics.mean),
    ("Median", AutofocusMetrics.median),
    ("Max", AutofocusMetrics.max),
    ("95th Percentile", AutofocusMetrics.percentile_95),
)

METRIC_NAMES: Tuple[str, ...] = tuple(name for name, _ in METRIC_TABLE)

DEFAULT_METRIC = Metric.MEAN

_ALIASES = {
    "stddev": Metric.STD_DEV,
    "std": Metric.STD_DEV,
    "standard_deviation": Metric.STD_DEV,
    "gradient": Metric.GRADIENT_ENERGY,
    "tenenbaum_gradient": Metric.GRADIENT_ENERGY,
    "percentile": Metric.PERCENTILE_95,
    "95th_percentile": Metric.PERCENTILE_95,
    "p95": Metric.PERCENTILE_95,
}


def resolve_metric(metric: Union["Metric", int, str]) -> Metric:
    """
    Resolve an enum member, table index or name to a Metric.

    Names are matched case-insensitively against the enum names, the display
    names in METRIC_TABLE and a few common aliases ("Std Dev", "std_dev" and
    "stddev" all resolve to Metric.STD_DEV).

    Raises:
        ConfigurationError: If the metric is unknown
    """
    if isinstance(metric, Metric):
        return metric

    if isinstance(metric, (int, np.integer)) and not isinstance(metric, bool):
        try:
            return Metric(int(metric))
        except ValueError:
            raise ConfigurationError(
                f"Metric index {metric} out of range 0..{len(METRIC_TABLE) - 1}"
            )

    if isinstance(metric, str):
        key = metric.strip().lower().replace(" ", "_").replace("-", "_")
        for member in Metric:
            if key == member.name.lower():
                return member
        for member, (name, _) in zip(Metric, METRIC_TABLE):
            if key == name.lower().replace(" ", "_"):
                return member
        if key in _ALIASES:
            return _ALIASES[key]

    raise ConfigurationError(f"Unknown metric: {metric!r}. Available: {list(METRIC_NAMES)}")


def compute_all(image: np.ndarray) -> Tuple[float, ...]:
    """
    Evaluate every metric in METRIC_TABLE on one frame.

    Returns:
        Tuple of floats, indexed by Metric
    """
    gray = _as_gray(image)
    values = []
    for name, func in METRIC_TABLE:
        # entropy bins over the dtype range, so it needs the raw frame
        source = image if func is AutofocusMetrics.entropy else gray
        values.append(func(source))
    return tuple(values)


class SelectedMetric:
    """
    The metric currently used to tag the latest value and to pick best focus.

    Args:
        metric: Initial selection (enum, index or name). Defaults to the mean.
    """

    def __init__(self, metric: Union[Metric, int, str] = DEFAULT_METRIC):
        self._metric = resolve_metric(metric)

    @property
    def metric(self) -> Metric:
        return self._metric

    @property
    def index(self) -> int:
        return int(self._metric)

    @property
    def name(self) -> str:
        return METRIC_NAMES[self._metric]

    def select(self, metric: Union[Metric, int, str]) -> Metric:
        """Change the selection; unknown metrics raise ConfigurationError."""
        new_metric = resolve_metric(metric)
        if new_metric != self._metric:
            logger.info(f"Selected metric changed: {self.name} -> {METRIC_NAMES[new_metric]}")
        self._metric = new_metric
        return new_metric

    def __repr__(self):
        return f"SelectedMetric({self.name!r})"
