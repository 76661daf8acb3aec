"""
Connection package - Imaging controller link management.

Modules:
    manager: ConnectionManager with retry/backoff and simulation fallback
"""

from zstage_control.connection.manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
    RetryPolicy,
    default_connector,
)

__all__ = ["ConnectionManager", "ConnectionState", "ConnectionStatus", "RetryPolicy", "default_connector"]
