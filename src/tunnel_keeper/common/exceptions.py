"""Custom exceptions for tunnel-keeper."""


class TunnelKeeperError(Exception):
    """Base exception for all tunnel-keeper errors."""

    pass


class ConfigurationError(TunnelKeeperError):
    """Raised when configuration is invalid."""

    pass


class TransportError(TunnelKeeperError):
    """Raised when the SSH transport fails to connect, dial, or listen."""

    pass


class HostKeyMismatchError(TransportError):
    """Raised when the server presents a key that does not match the pinned fingerprint."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"host key mismatch: expected {expected}, got {actual}")


class InvalidTransitionError(TunnelKeeperError):
    """Raised when a connection state machine receives an event it cannot handle."""

    pass
