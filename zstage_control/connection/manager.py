"""
Connection management for the imaging controller.

ConnectionManager owns the link to the external controller (Micro-Manager via
pycromanager by default). Failed handshakes are retried with exponential
backoff; once the retries are used up the manager switches to a simulated
stage and frame source so the focus loops keep running. Simulation is only
left through an explicit reset().

The manager is also the stage and frame-source collaborator handed to the
acquisition loop, scan controller and focus locator: calls are routed to the
real controller when connected and to the simulation otherwise.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple
import logging
import threading
import time

import numpy as np

from zstage_control.errors import (
    ConfigurationError,
    ControllerConnectionError,
    HardwareError,
    InvalidHandleError,
)
from zstage_control.hardware.base import FrameSource, ZStage, Z_AXIS
from zstage_control.hardware.simulation import SimulatedFrameSource, SimulatedZStage

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SIMULATION = "simulation"
    ERROR = "error"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings for connection attempts."""

    # Failed attempts before falling back to simulation
    max_retries: int = 3

    # Delay after the first failure, in seconds
    initial_delay: float = 1.0

    # Upper bound for any single delay, in seconds
    max_delay: float = 30.0

    # Factor applied to the delay after each failure
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_retries < 1:
            raise ConfigurationError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.initial_delay < 0:
            raise ConfigurationError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.max_delay < self.initial_delay:
            raise ConfigurationError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        if self.multiplier < 1.0:
            raise ConfigurationError(f"multiplier must be >= 1.0, got {self.multiplier}")

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after failed attempt number `attempt` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


@dataclass(frozen=True)
class ConnectionStatus:
    """Immutable snapshot of the connection state."""

    state: ConnectionState
    retry_count: int
    last_attempt_time: Optional[float]
    last_error: Optional[str]

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_simulation(self) -> bool:
        return self.state is ConnectionState.SIMULATION


def default_connector(
    handshake_timeout_s: float = 30.0,
    call_timeout_s: float = 5.0,
    z_stage_device: Optional[str] = None,
) -> Callable[[], Any]:
    """Connector that opens a pycromanager link to Micro-Manager."""

    def _connect():
        from zstage_control.hardware.pycromanager import PycromanagerController, init_pycromanager

        core = init_pycromanager(timeout_seconds=handshake_timeout_s)
        return PycromanagerController(core, call_timeout_s=call_timeout_s, z_stage_device=z_stage_device)

    return _connect


class ConnectionManager(ZStage, FrameSource):
    """
    Establishes and supervises the link to the imaging controller.

    Args:
        connector: Callable performing one handshake. Returns a backend that
            implements ZStage and FrameSource, or raises a
            ControllerConnectionError. Defaults to pycromanager.
        retry_policy: Backoff settings for connect_with_retry()
        simulation_options: Keyword arguments for SimulatedFrameSource
        sleep: Function used to wait between attempts, injectable for tests
    """

    _REQUIRED_BACKEND_METHODS = ("relative_move", "absolute_move", "get_position", "capture_frame")

    def __init__(
        self,
        connector: Optional[Callable[[], Any]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        simulation_options: Optional[Dict[str, Any]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._connector = connector or default_connector()
        self.retry_policy = retry_policy or RetryPolicy()
        self.simulation_options = dict(simulation_options or {})
        self._sleep = sleep

        # _lock guards state, _connect_lock serialises handshakes
        self._lock = threading.Lock()
        self._connect_lock = threading.Lock()

        self._state = ConnectionState.DISCONNECTED
        self._retry_count = 0
        self._last_attempt_time: Optional[float] = None
        self._last_error: Optional[str] = None

        self._backend = None
        self._sim_stage: Optional[SimulatedZStage] = None
        self._sim_source: Optional[SimulatedFrameSource] = None

        logger.info("ConnectionManager initialized")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> ConnectionStatus:
        """Snapshot of the current state; never blocks on a handshake."""
        with self._lock:
            return ConnectionStatus(
                state=self._state,
                retry_count=self._retry_count,
                last_attempt_time=self._last_attempt_time,
                last_error=self._last_error,
            )

    def is_connected(self) -> bool:
        with self._lock:
            return self._state is ConnectionState.CONNECTED

    def is_simulation(self) -> bool:
        with self._lock:
            return self._state is ConnectionState.SIMULATION

    def set_retry_policy(self, policy: RetryPolicy) -> None:
        self.retry_policy = policy
        logger.info(
            f"Retry configuration updated: max={policy.max_retries}, "
            f"initial={policy.initial_delay:.1f}s, max_delay={policy.max_delay:.1f}s, "
            f"multiplier={policy.multiplier:.1f}"
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> Tuple[bool, str]:
        """
        Attempt a single handshake with the imaging controller.

        Returns:
            (True, message) on success. (False, message) without attempting
            anything if simulation mode is active.

        Raises:
            NotFoundError: Controller process/handle absent
            InvalidHandleError: Handle obtained but malformed
            ConnectionTimeoutError: Handshake exceeded its time bound
        """
        with self._connect_lock:
            if self.is_simulation():
                return False, "Simulation mode active - reset() before reconnecting"
            return self._handshake()

    def connect_with_retry(self) -> Tuple[bool, str]:
        """
        Connect, retrying with exponential backoff.

        After retry_policy.max_retries consecutive failures the manager
        switches to simulation mode and returns (False, reason). That outcome
        is expected when no controller is attached and is not an error.
        """
        with self._connect_lock:
            status = self.get_status()
            if status.is_simulation:
                return False, "Simulation mode active - reset() before reconnecting"
            if status.is_connected:
                return True, "Already connected"

            with self._lock:
                self._retry_count = 0

            policy = self.retry_policy
            last_error: Optional[ControllerConnectionError] = None
            while True:
                try:
                    return self._handshake()
                except ControllerConnectionError as e:
                    last_error = e
                    with self._lock:
                        self._retry_count += 1
                        attempt = self._retry_count
                    delay = policy.delay_for(attempt)
                    logger.warning(
                        f"Connection attempt {attempt}/{policy.max_retries} failed "
                        f"({type(e).__name__}: {e}). Waiting {delay:.1f} seconds..."
                    )
                    self._sleep(delay)
                    if attempt >= policy.max_retries:
                        break

            self.enable_simulation_mode()
            reason = (
                f"Imaging controller unavailable after {policy.max_retries} attempts "
                f"({type(last_error).__name__}: {last_error}) - running in simulation mode"
            )
            logger.warning(reason)
            return False, reason

    def _handshake(self) -> Tuple[bool, str]:
        with self._lock:
            self._state = ConnectionState.CONNECTING
            self._last_attempt_time = time.time()

        try:
            backend = self._connector()
            self._validate_backend(backend)
        except ControllerConnectionError as e:
            self._fail(e)
            raise
        except Exception as e:
            error = ControllerConnectionError(f"Connection failed: {type(e).__name__}: {e}")
            self._fail(error)
            raise error from e

        with self._lock:
            self._backend = backend
            self._sim_stage = None
            self._sim_source = None
            self._state = ConnectionState.CONNECTED
            self._retry_count = 0
            self._last_error = None
        logger.info("Successfully connected to imaging controller")
        return True, "Connected to imaging controller"

    def _validate_backend(self, backend) -> None:
        if backend is None:
            raise InvalidHandleError("Controller handle is empty")
        for name in self._REQUIRED_BACKEND_METHODS:
            if not callable(getattr(backend, name, None)):
                raise InvalidHandleError(f"Controller handle is missing '{name}'")

    def _fail(self, error: Exception) -> None:
        with self._lock:
            self._state = ConnectionState.ERROR
            self._last_error = f"{type(error).__name__}: {error}"
            self._backend = None
        logger.debug(f"Handshake failed: {type(error).__name__}: {error}")

    def enable_simulation_mode(self) -> None:
        """
        Switch to the simulated stage and frame source.

        Idempotent: calling it again while in simulation keeps the existing
        simulated position and retry history.
        """
        with self._lock:
            if self._state is ConnectionState.SIMULATION:
                logger.debug("Simulation mode already enabled")
                return
            stage = SimulatedZStage()
            source = SimulatedFrameSource(stage, **self.simulation_options)
            self._backend = None
            self._sim_stage = stage
            self._sim_source = source
            self._state = ConnectionState.SIMULATION
        logger.info("Simulation mode enabled")

    def disconnect(self) -> None:
        """Release the controller (or simulation) and return to Disconnected."""
        with self._lock:
            previous = self._state
            self._backend = None
            self._sim_stage = None
            self._sim_source = None
            self._state = ConnectionState.DISCONNECTED
        if previous is not ConnectionState.DISCONNECTED:
            logger.info(f"Disconnected (was {previous.value})")

    def reset(self) -> None:
        """User reset: leave simulation or error and clear the retry history."""
        self.disconnect()
        with self._lock:
            self._retry_count = 0
            self._last_error = None
        logger.info("Connection state reset")

    def check_connection(self) -> bool:
        """
        Verify the live link.

        Returns:
            True if connected and the controller answers, or in simulation.
            A connected controller that fails to answer moves the manager to
            the Error state and False is returned.
        """
        with self._lock:
            state = self._state
            backend = self._backend

        if state is ConnectionState.SIMULATION:
            return True
        if state is not ConnectionState.CONNECTED:
            return False

        ping = getattr(backend, "ping", None)
        if ping is None:
            return True
        try:
            ping()
        except HardwareError as e:
            logger.error(f"Lost connection to imaging controller: {e}")
            self._fail(e)
            return False
        return True

    # ------------------------------------------------------------------
    # Stage and frame source routing
    # ------------------------------------------------------------------

    def _active(self):
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return self._backend, self._backend
            if self._state is ConnectionState.SIMULATION:
                return self._sim_stage, self._sim_source
            return None, None

    def _stage(self) -> ZStage:
        stage, _ = self._active()
        if stage is None:
            raise HardwareError("No imaging controller connected", cause=f"state is {self.get_status().state.value}")
        return stage

    def relative_move(self, axis: str, delta_um: float) -> float:
        return self._stage().relative_move(axis, delta_um)

    def absolute_move(self, axis: str, target_um: float) -> float:
        return self._stage().absolute_move(axis, target_um)

    def get_position(self, axis: str) -> float:
        return self._stage().get_position(axis)

    def capture_frame(self) -> Tuple[Optional[np.ndarray], bool]:
        _, source = self._active()
        if source is None:
            return None, False
        return source.capture_frame()

    def set_simulated_position(self, z_um: float, axis: str = Z_AXIS) -> None:
        """Place the simulated stage at z_um (simulation mode only)."""
        with self._lock:
            stage = self._sim_stage if self._state is ConnectionState.SIMULATION else None
        if stage is None:
            logger.warning("set_simulated_position called but not in simulation mode")
            return
        old = stage.get_position(axis)
        stage.absolute_move(axis, z_um)
        logger.info(f"Simulated {axis} position changed: {old:.1f} -> {z_um:.1f} um")
