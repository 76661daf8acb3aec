"""
Error taxonomy for Z-stage focus control.

Every failure the control loops can encounter maps onto one of four kinds:

- ControllerConnectionError: the link to the imaging controller could not be
  established. Recovered locally (retry, then simulation).
- HardwareError: a move or capture failed. A bad capture is skipped, a failed
  scan step halts the scan cleanly.
- DataError: an operation needed data that is not there (e.g. no samples).
  Surfaced to the caller.
- ConfigurationError: an invalid parameter, rejected before any state changes.
"""


class ZStageError(Exception):
    """Base class for all errors raised by zstage_control."""

    pass


class ControllerConnectionError(ZStageError):
    """Raised when connection to the imaging controller fails."""

    pass


class NotFoundError(ControllerConnectionError):
    """The controller process or handle is not available."""

    pass


class InvalidHandleError(ControllerConnectionError):
    """A controller handle was obtained but does not behave like one."""

    pass


class ConnectionTimeoutError(ControllerConnectionError):
    """The handshake with the controller did not complete in time."""

    pass


class HardwareError(ZStageError):
    """
    A stage move or frame capture failed.

    Args:
        message: Human-readable description of the failed operation
        cause: Optional underlying cause (string or exception)
    """

    def __init__(self, message: str, cause=None):
        super().__init__(message)
        self.cause = str(cause) if cause is not None else None

    def __str__(self):
        base = super().__str__()
        if self.cause:
            return f"{base} (cause: {self.cause})"
        return base


class HardwareTimeoutError(HardwareError):
    """A hardware call exceeded its time bound."""

    pass


class DataError(ZStageError):
    """Requested data is missing or unusable."""

    pass


class NoDataError(DataError):
    """The sample buffer holds no valid entries."""

    pass


class ConfigurationError(ZStageError, ValueError):
    """An invalid configuration value or call parameter."""

    pass
