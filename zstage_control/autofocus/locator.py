"""Best-focus peak detection over the sample buffer."""

from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np

from zstage_control.acquisition.buffer import SampleBuffer
from zstage_control.autofocus.metrics import SelectedMetric, METRIC_NAMES
from zstage_control.errors import NoDataError
from zstage_control.hardware.base import ZStage, Z_AXIS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FocusResult:
    """Location of the best-focus sample."""

    position: float
    value: float
    metric: str


class FocusLocator:
    """
    Finds the sample with the highest selected metric and moves there.

    Args:
        buffer: Sample buffer to search (read-only)
        stage: Stage collaborator used for the absolute move
        selected_metric: Metric column compared between samples
        axis: Stage axis to move
    """

    def __init__(
        self,
        buffer: SampleBuffer,
        stage: ZStage,
        selected_metric: Optional[SelectedMetric] = None,
        axis: str = Z_AXIS,
    ):
        self.buffer = buffer
        self.stage = stage
        self.selected_metric = selected_metric or SelectedMetric()
        self.axis = axis

    def find_best_focus(self) -> FocusResult:
        """
        Search the buffer without moving.

        Ties go to the earliest sample. NaN values are ignored.

        Raises:
            NoDataError: The buffer has no samples with a usable value
        """
        samples = self.buffer.snapshot()
        index = self.selected_metric.index
        name = METRIC_NAMES[index]

        if not samples:
            raise NoDataError("No samples recorded - run a scan first")

        values = np.array([s.metrics[index] for s in samples], dtype=np.float64)
        if np.all(np.isnan(values)):
            raise NoDataError(f"No valid {name} values among {len(samples)} samples")

        # nanargmax returns the first occurrence of the maximum
        best = int(np.nanargmax(values))
        result = FocusResult(position=samples[best].position, value=float(values[best]), metric=name)
        logger.debug(
            f"Best {name}={result.value:.4f} at Z={result.position:.2f} "
            f"(sample {best + 1}/{len(samples)})"
        )
        return result

    def move_to_best_focus(self) -> FocusResult:
        """
        Move the stage to the best-focus sample.

        Returns:
            FocusResult with the position moved to and its metric value

        Raises:
            NoDataError: The buffer has no usable samples
            HardwareError: The absolute move failed
        """
        result = self.find_best_focus()
        moved_to = float(self.stage.absolute_move(self.axis, result.position))
        logger.info(f"Moved to best focus: Z={moved_to:.2f} ({result.metric}={result.value:.4f})")
        return FocusResult(position=moved_to, value=result.value, metric=result.metric)
