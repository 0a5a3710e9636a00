"""Connection lifecycle state machine and reconnect backoff."""

from datetime import timedelta
from enum import Enum

from .common.exceptions import InvalidTransitionError

BACKOFF_FLOOR = timedelta(seconds=1)


class ConnectionState(str, Enum):
    """Lifecycle states of a supervised connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    TUNNEL_SETUP = "tunnel_setup"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ConnectionEvent(str, Enum):
    """Events that drive the connection state machine."""

    CONNECT = "connect"
    SESSION_UP = "session_up"
    TUNNELS_READY = "tunnels_ready"
    CONNECT_FAILED = "connect_failed"
    PROBE_FAILED = "probe_failed"
    BACKOFF = "backoff"
    CLOSE = "close"


TRANSITIONS: dict[tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.DISCONNECTED, ConnectionEvent.PROBE_FAILED): ConnectionState.DISCONNECTED,
    (ConnectionState.DISCONNECTED, ConnectionEvent.BACKOFF): ConnectionState.RECONNECTING,
    (ConnectionState.RECONNECTING, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.SESSION_UP): ConnectionState.TUNNEL_SETUP,
    (ConnectionState.CONNECTING, ConnectionEvent.CONNECT_FAILED): ConnectionState.DISCONNECTED,
    (ConnectionState.TUNNEL_SETUP, ConnectionEvent.TUNNELS_READY): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTED, ConnectionEvent.PROBE_FAILED): ConnectionState.DISCONNECTED,
    (ConnectionState.RECONNECTING, ConnectionEvent.PROBE_FAILED): ConnectionState.DISCONNECTED,
    # Teardown is allowed from anywhere
    **{(state, ConnectionEvent.CLOSE): ConnectionState.DISCONNECTED for state in ConnectionState},
}


def transition(state: ConnectionState, event: ConnectionEvent) -> ConnectionState:
    """Look up the state that follows ``state`` on ``event``.

    Raises:
        InvalidTransitionError: If the table has no entry for the pair
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"no transition from {state.value} on {event.value}"
        ) from None


class Backoff:
    """Exponential reconnect delay.

    The n-th consecutive failure waits ``min(floor * 2**(n-1), cap)``; a
    success (or a continuously alive session) resets it to the floor.
    """

    def __init__(self, cap: timedelta, floor: timedelta = BACKOFF_FLOOR):
        self.cap = cap
        self.floor = floor
        self.failures = 0
        self.delay = floor

    def failure(self) -> timedelta:
        """Record a failed attempt and return how long to wait before the next."""
        self.failures += 1
        if self.failures == 1:
            self.delay = min(self.floor, self.cap)
        else:
            self.delay = min(self.delay * 2, self.cap)
        return self.delay

    def reset(self) -> None:
        self.failures = 0
        self.delay = self.floor
