"""Utility functions for tunnel-keeper."""

import re
from datetime import timedelta

from pydantic import TypeAdapter, ValidationError

_GO_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_GO_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_GO_DURATION = re.compile(r"^(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|ms|s|m|h))+$")

_timedelta_adapter: TypeAdapter[timedelta] = TypeAdapter(timedelta)


def split_host_port(address: str) -> tuple[str, str]:
    """Split ``host:port`` (or ``[v6host]:port``) into host and port.

    The host may be empty (``":8080"`` listens on all interfaces) and the
    port may be empty (``"host:"``); callers decide whether that is allowed.

    Args:
        address: Address to split

    Returns:
        Tuple of (host, port) strings

    Raises:
        ValueError: If the address has no port separator or is malformed
    """
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"address {address}: missing ']' in address")
        if end + 1 == len(address):
            raise ValueError(f"address {address}: missing port in address")
        if address[end + 1] != ":":
            raise ValueError(f"address {address}: unexpected characters after ']'")
        host = address[1:end]
        port = address[end + 2 :]
    else:
        colon = address.rfind(":")
        if colon < 0:
            raise ValueError(f"address {address}: missing port in address")
        host = address[:colon]
        port = address[colon + 1 :]
        if ":" in host:
            raise ValueError(f"address {address}: too many colons in address")

    if "[" in port or "]" in port or ":" in port:
        raise ValueError(f"address {address}: malformed port")
    return host, port


def join_host_port(host: str, port: str | int) -> str:
    """Combine host and port, bracketing IPv6 literals."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def parse_duration(value: timedelta | int | float | str) -> timedelta:
    """Parse a duration from config.

    Accepts Go style strings (``"30s"``, ``"1m30s"``, ``"500ms"``), ISO 8601
    (``"PT30S"``), ``HH:MM:SS`` and plain numbers of seconds.

    Raises:
        ValueError: If the value cannot be interpreted as a duration
    """
    if isinstance(value, str):
        text = value.strip()
        if _GO_DURATION.match(text):
            seconds = sum(
                float(amount) * _GO_DURATION_UNITS[unit]
                for amount, unit in _GO_DURATION_PART.findall(text)
            )
            return timedelta(seconds=seconds)
        value = text
    try:
        return _timedelta_adapter.validate_python(value)
    except ValidationError as e:
        raise ValueError(f"invalid duration {value!r}") from e


def _trim_decimal(value: float) -> str:
    return f"{value:.9f}".rstrip("0").rstrip(".") or "0"


def format_duration(value: timedelta | float) -> str:
    """Format a duration the way status lines show it: ``1s``, ``1m0s``, ``500ms``."""
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    seconds = round(seconds, 9)
    if seconds == 0:
        return "0s"

    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)

    if seconds < 1:
        if seconds >= 1e-3:
            return f"{sign}{_trim_decimal(seconds * 1e3)}ms"
        if seconds >= 1e-6:
            return f"{sign}{_trim_decimal(seconds * 1e6)}µs"
        return f"{sign}{round(seconds * 1e9)}ns"

    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    text = ""
    if hours:
        text += f"{int(hours)}h"
    if hours or minutes:
        text += f"{int(minutes)}m"
    return f"{sign}{text}{_trim_decimal(secs)}s"
