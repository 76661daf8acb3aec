"""
Z-stage focus controller.

Wires the connection manager, acquisition loop, scan controller, focus
locator and bookmarks together from one FocusSettings object, and fans
progress messages out to registered status listeners.
"""

from typing import Any, Callable, List, Optional, Tuple, Union
import logging
import time

from zstage_control.acquisition.buffer import SampleBuffer
from zstage_control.acquisition.loop import AcquisitionLoop, SampleRecorder
from zstage_control.autofocus.locator import FocusLocator, FocusResult
from zstage_control.autofocus.metrics import Metric, SelectedMetric
from zstage_control.bookmarks import Bookmark, BookmarkManager
from zstage_control.config.manager import ConfigManager, FocusSettings
from zstage_control.connection.manager import ConnectionManager, ConnectionStatus, default_connector
from zstage_control.errors import HardwareError, NoDataError
from zstage_control.scan.controller import HaltReason, ScanController, ScanSummary

logger = logging.getLogger(__name__)


class ZStageFocusController:
    """
    High-level focus control for a single Z stage.

    Args:
        settings: Focus settings; defaults are used if None
        connector: Handshake callable for the connection manager. Defaults to
            the pycromanager connector built from the settings.
        recorder: Optional sample recorder for the acquisition loop
        sleep: Wait function used between connection attempts
    """

    def __init__(
        self,
        settings: Optional[FocusSettings] = None,
        connector: Optional[Callable[[], Any]] = None,
        recorder: Optional[SampleRecorder] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or FocusSettings.from_config()
        s = self.settings

        if connector is None:
            connector = default_connector(
                handshake_timeout_s=s.handshake_timeout_s,
                call_timeout_s=s.call_timeout_s,
                z_stage_device=s.z_stage_device,
            )

        self._listeners: List[Callable[[str], None]] = []

        self.connection = ConnectionManager(
            connector=connector,
            retry_policy=s.retry_policy,
            simulation_options=s.simulation_options,
            sleep=sleep,
        )
        self.selected_metric = SelectedMetric(s.default_metric)
        self.buffer = SampleBuffer(s.buffer_capacity)
        self.acquisition = AcquisitionLoop(
            frame_source=self.connection,
            stage=self.connection,
            buffer=self.buffer,
            selected_metric=self.selected_metric,
            period_s=s.acquisition_period_s,
            axis=s.axis,
            recorder=recorder,
        )
        self.scanner = ScanController(
            stage=self.connection,
            limits=s.z_limits,
            axis=s.axis,
            status_callback=self._notify,
            completion_callback=self._on_scan_complete,
        )
        self.locator = FocusLocator(self.buffer, self.connection, self.selected_metric, axis=s.axis)
        self.bookmarks = BookmarkManager(self.connection, axis=s.axis)
        self.auto_move_on_complete = s.auto_move_on_complete

    @classmethod
    def from_config(
        cls,
        config_name: Optional[str] = None,
        config_dir: Optional[str] = None,
        **kwargs,
    ) -> "ZStageFocusController":
        """Build a controller from a named YAML configuration."""
        manager = ConfigManager(config_dir)
        return cls(manager.get_focus_settings(config_name), **kwargs)

    # ------------------------------------------------------------------
    # Status channel
    # ------------------------------------------------------------------

    def add_status_listener(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def remove_status_listener(self, callback: Callable[[str], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, message: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.warning(f"Status listener {listener!r} failed: {e}")

    def get_status(self) -> ConnectionStatus:
        return self.connection.get_status()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> Tuple[bool, str]:
        """
        Connect to the imaging controller, falling back to simulation.

        Returns:
            (ok, message) from ConnectionManager.connect_with_retry()
        """
        self._notify("Connecting to imaging controller...")
        ok, message = self.connection.connect_with_retry()
        self._notify(message)
        return ok, message

    # ------------------------------------------------------------------
    # Monitoring and scanning
    # ------------------------------------------------------------------

    def start_monitoring(self) -> bool:
        started = self.acquisition.start()
        if started:
            self._notify(f"Monitoring started ({self.selected_metric.name})")
        return started

    def stop_monitoring(self) -> None:
        """Stop acquisition. A running scan is stopped first."""
        if self.scanner.is_scanning():
            self.stop_scan()
        if self.acquisition.is_running():
            self.acquisition.stop()
            self._notify(f"Monitoring stopped ({len(self.buffer)} samples)")

    def start_scan(
        self,
        step_size: Optional[float] = None,
        pause_time: Optional[float] = None,
        max_steps: Optional[int] = None,
    ) -> bool:
        """
        Start a Z scan, starting monitoring first if it is not running.

        Args:
            step_size: Relative move per step in um (settings default if None)
            pause_time: Settle time per step in seconds (settings default if None)
            max_steps: Optional number of steps

        Returns:
            True if the scan started, False if one is already running

        Raises:
            ConfigurationError: Invalid scan parameters
            HardwareError: The starting position could not be read
        """
        if step_size is None:
            step_size = self.settings.scan_step_size_um
        if pause_time is None:
            pause_time = self.settings.scan_pause_time_s

        ScanController.validate_parameters(step_size, pause_time, max_steps)
        if not self.acquisition.is_running():
            self.start_monitoring()
        return self.scanner.start(step_size, pause_time, max_steps)

    def stop_scan(self) -> None:
        self.scanner.stop()

    def _on_scan_complete(self, summary: ScanSummary) -> None:
        self._notify(
            f"Scan summary: {summary.total_steps} steps in {summary.duration_s:.1f}s, "
            f"Z {summary.start_position:.2f} -> {summary.end_position:.2f}"
        )
        if summary.halt_reason is HaltReason.HARDWARE_ERROR:
            return

        if self.auto_move_on_complete:
            try:
                self.move_to_best_focus()
            except (NoDataError, HardwareError) as e:
                logger.warning(f"Automatic move to best focus failed: {e}")
                self._notify(f"Could not move to best focus: {e}")
            return

        try:
            result = self.locator.find_best_focus()
        except NoDataError as e:
            logger.debug(f"No best focus to bookmark after scan: {e}")
            return
        self.bookmarks.update_max(result.metric, result.value, result.position)

    # ------------------------------------------------------------------
    # Focus and bookmarks
    # ------------------------------------------------------------------

    def set_metric(self, metric: Union[Metric, int, str]) -> Metric:
        """Change the metric used for peak detection and reporting."""
        selected = self.selected_metric.select(metric)
        self._notify(f"Focus metric set to {self.selected_metric.name}")
        return selected

    def move_to_best_focus(self) -> FocusResult:
        """
        Move to the sample with the highest selected metric.

        Raises:
            NoDataError: No usable samples have been recorded
            HardwareError: The move failed
        """
        result = self.locator.move_to_best_focus()
        self.bookmarks.update_max(result.metric, result.value, result.position)
        self._notify(f"Moved to best focus: Z={result.position:.2f} ({result.metric}={result.value:.4f})")
        return result

    def bookmark_current(self, label: str) -> Bookmark:
        """Bookmark the current position with the latest metric value."""
        position = self.connection.get_position(self.settings.axis)
        return self.bookmarks.add(
            label, position, self.selected_metric.name, self.acquisition.latest_value
        )

    def bookmark_best_focus(self, label: str) -> Bookmark:
        """Bookmark the best-focus sample without moving there."""
        result = self.locator.find_best_focus()
        return self.bookmarks.add(label, result.position, result.metric, result.value)

    def go_to_bookmark(self, index: int) -> float:
        position = self.bookmarks.go_to(index)
        self._notify(f"Moved to bookmark '{self.bookmarks.get(index).label}': Z={position:.2f}")
        return position

    def run_focus_sweep(
        self,
        step_size: Optional[float] = None,
        pause_time: Optional[float] = None,
        timeout: Optional[float] = None,
        max_steps: Optional[int] = None,
    ) -> FocusResult:
        """
        Scan until a halt condition and move to the best focus found.

        Monitoring is restarted so only samples from this sweep are
        considered. If the scan is still running after `timeout` seconds it
        is stopped and the best sample recorded so far is used.

        Raises:
            RuntimeError: A scan is already running
            NoDataError: No usable samples were recorded
            HardwareError: The scan or the final move failed
        """
        if self.scanner.is_scanning():
            raise RuntimeError("A scan is already in progress")
        if self.acquisition.is_running():
            self.acquisition.stop()

        if not self.start_scan(step_size, pause_time, max_steps):
            raise RuntimeError("A scan is already in progress")

        if not self.scanner.wait(timeout):
            logger.warning(f"Focus sweep did not finish within {timeout}s, stopping scan")
            self.stop_scan()

        if self.scanner.last_halt_reason is HaltReason.HARDWARE_ERROR:
            raise HardwareError("Focus sweep halted by a stage error")

        if self.auto_move_on_complete:
            # The completion callback already moved
            result = self.locator.find_best_focus()
            position = self.connection.get_position(self.settings.axis)
            return FocusResult(position=position, value=result.value, metric=result.metric)
        return self.move_to_best_focus()

    def shutdown(self) -> None:
        """Stop scanning and monitoring and release the controller."""
        self.stop_scan()
        self.stop_monitoring()
        self.connection.disconnect()
        logger.info("ZStageFocusController shut down")


# Example usage and testing
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    controller = ZStageFocusController()
    controller.add_status_listener(lambda message: print(f"[status] {message}"))

    # Run against the simulated stage; focal plane is at 50 um by default
    controller.connection.enable_simulation_mode()
    controller.connection.set_simulated_position(20.0)

    for metric in ("mean", "gradient_energy"):
        controller.set_metric(metric)
        result = controller.run_focus_sweep(step_size=5.0, pause_time=0.3, max_steps=12, timeout=30.0)
        print(f"{result.metric}: best focus Z={result.position:.2f} (value {result.value:.4f})")
        controller.bookmark_current(f"best {metric}")
        controller.connection.set_simulated_position(20.0)

    print("Bookmarks:", controller.bookmarks.labels())
    controller.shutdown()
