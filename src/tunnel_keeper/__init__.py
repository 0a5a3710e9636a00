"""tunnel-keeper - persistent SSH port-forwarding tunnels with automatic reconnect."""

from .common.exceptions import (
    ConfigurationError,
    HostKeyMismatchError,
    InvalidTransitionError,
    TransportError,
    TunnelKeeperError,
)
from .common.logging import get_logger, setup_logging
from .config import get_config_path, load_config, parse_config
from .forwarder import TunnelForwarder
from .models import (
    Connection,
    Direction,
    Endpoint,
    InlineKeyCredential,
    KeyFileCredential,
    PasswordCredential,
    Side,
    Tunnel,
)
from .pipe import StreamPipe
from .probe import LivenessProbe, ProbeResult
from .service import TunnelService
from .state import Backoff, ConnectionEvent, ConnectionState
from .status import StatusCell, StatusReporter
from .supervisor import ConnectionSupervisor
from .transport import ParamikoSession, TransportSession, open_session

# Setup logging on package initialization
setup_logging(level="INFO")

__version__ = "0.1.0"

__all__ = [
    # Models
    "Connection",
    "Tunnel",
    "Endpoint",
    "Side",
    "Direction",
    "InlineKeyCredential",
    "KeyFileCredential",
    "PasswordCredential",
    # Config
    "load_config",
    "parse_config",
    "get_config_path",
    # Runtime
    "TunnelService",
    "ConnectionSupervisor",
    "ConnectionState",
    "ConnectionEvent",
    "Backoff",
    "TunnelForwarder",
    "StreamPipe",
    "LivenessProbe",
    "ProbeResult",
    "StatusCell",
    "StatusReporter",
    "TransportSession",
    "ParamikoSession",
    "open_session",
    # Exceptions
    "TunnelKeeperError",
    "ConfigurationError",
    "TransportError",
    "HostKeyMismatchError",
    "InvalidTransitionError",
    # Logging
    "get_logger",
    "setup_logging",
]
