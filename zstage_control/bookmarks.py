"""Labelled Z position bookmarks."""

from dataclasses import dataclass
from typing import List, Optional
import logging

from zstage_control.errors import ConfigurationError
from zstage_control.hardware.base import ZStage, Z_AXIS

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 50


@dataclass(frozen=True)
class Bookmark:
    label: str
    position: float
    metric_name: Optional[str] = None
    metric_value: Optional[float] = None


class BookmarkManager:
    """
    Stores named positions together with the metric seen there.

    Adding a bookmark with an existing label replaces the old one.

    Args:
        stage: Stage collaborator used by go_to()
        axis: Stage axis bookmarks refer to
    """

    def __init__(self, stage: Optional[ZStage] = None, axis: str = Z_AXIS):
        self.stage = stage
        self.axis = axis
        self._bookmarks: List[Bookmark] = []

    def __len__(self) -> int:
        return len(self._bookmarks)

    def __iter__(self):
        return iter(list(self._bookmarks))

    @staticmethod
    def _validate_label(label: str) -> str:
        if not isinstance(label, str) or not label.strip():
            raise ConfigurationError("Bookmark label must be a non-empty string")
        label = label.strip()
        if len(label) > MAX_LABEL_LENGTH:
            raise ConfigurationError(
                f"Bookmark label must be at most {MAX_LABEL_LENGTH} characters, got {len(label)}"
            )
        return label

    def add(
        self,
        label: str,
        position: float,
        metric_name: Optional[str] = None,
        metric_value: Optional[float] = None,
    ) -> Bookmark:
        """Add a bookmark, replacing any with the same label."""
        label = self._validate_label(label)
        self._bookmarks = [b for b in self._bookmarks if b.label != label]
        bookmark = Bookmark(label, float(position), metric_name, metric_value)
        self._bookmarks.append(bookmark)
        logger.info(f"Bookmarked '{label}' at Z={bookmark.position:.2f}")
        return bookmark

    def update_max(self, metric_name: str, value: float, position: float) -> Bookmark:
        """
        Keep a single "Max <metric>" bookmark per metric.

        Any bookmark whose label starts with "Max <metric_name>" is dropped
        and a new one labelled "Max <metric_name> (<value>)" is added.
        """
        prefix = f"Max {metric_name}"
        self._bookmarks = [b for b in self._bookmarks if not b.label.startswith(prefix)]
        return self.add(f"{prefix} ({value:.1f})", position, metric_name, value)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._bookmarks):
            raise IndexError(f"Bookmark index {index} out of range (0..{len(self._bookmarks) - 1})")

    def get(self, index: int) -> Bookmark:
        self._check_index(index)
        return self._bookmarks[index]

    def find(self, label: str) -> Optional[Bookmark]:
        for bookmark in self._bookmarks:
            if bookmark.label == label:
                return bookmark
        return None

    def remove(self, index: int) -> Bookmark:
        self._check_index(index)
        bookmark = self._bookmarks.pop(index)
        logger.info(f"Removed bookmark '{bookmark.label}'")
        return bookmark

    def labels(self) -> List[str]:
        return [b.label for b in self._bookmarks]

    def go_to(self, index: int) -> float:
        """
        Move the stage to a bookmark.

        Returns:
            New stage position

        Raises:
            IndexError: Invalid index
            HardwareError: The move failed
        """
        bookmark = self.get(index)
        if self.stage is None:
            raise RuntimeError("BookmarkManager has no stage to move")
        new_position = float(self.stage.absolute_move(self.axis, bookmark.position))
        logger.info(f"Moved to bookmark '{bookmark.label}': Z={new_position:.2f}")
        return new_position
