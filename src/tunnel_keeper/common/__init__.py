"""Common utilities shared across tunnel-keeper modules."""

from .exceptions import (
    ConfigurationError,
    HostKeyMismatchError,
    InvalidTransitionError,
    TransportError,
    TunnelKeeperError,
)
from .logging import connection_context, get_logger, setup_logging
from .utils import (
    format_duration,
    join_host_port,
    parse_duration,
    split_host_port,
)

__all__ = [
    "TunnelKeeperError",
    "ConfigurationError",
    "TransportError",
    "HostKeyMismatchError",
    "InvalidTransitionError",
    "connection_context",
    "get_logger",
    "setup_logging",
    "format_duration",
    "join_host_port",
    "parse_duration",
    "split_host_port",
]
