"""Connection and tunnel models using Pydantic for type safety and validation."""

from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .common.utils import join_host_port, parse_duration, split_host_port

DEFAULT_SSH_PORT = 22
MAX_PORT = 65535
DEFAULT_KEEPALIVE_INTERVAL = timedelta(minutes=1)
DEFAULT_MAX_RECONNECT_DELAY = timedelta(minutes=1)


class Side(str, Enum):
    """Which end of the SSH connection an endpoint lives on."""

    LOCAL = "Local"
    REMOTE = "Remote"


class Direction(str, Enum):
    """Where the publicly bound listener of a tunnel lives."""

    EXPOSED_LOCALLY = "exposed_locally"
    EXPOSED_ON_SERVER = "exposed_on_server"


def infer_direction(from_side: Side, to_side: Side) -> Direction:
    """Derive tunnel direction from its endpoint sides.

    Args:
        from_side: Side of the listening endpoint
        to_side: Side of the dialed endpoint

    Returns:
        EXPOSED_LOCALLY for Local->Remote, EXPOSED_ON_SERVER for Remote->Local

    Raises:
        ValueError: For Local->Local or Remote->Remote
    """
    if from_side == Side.LOCAL and to_side == Side.REMOTE:
        return Direction.EXPOSED_LOCALLY
    if from_side == Side.REMOTE and to_side == Side.LOCAL:
        return Direction.EXPOSED_ON_SERVER
    raise ValueError("tunnel should be Local->Remote or Remote->Local")


class Endpoint(BaseModel):
    """One end of a tunnel: a side tag and an ``address:port``."""

    model_config = ConfigDict(
        frozen=True, populate_by_name=True, str_strip_whitespace=True
    )

    side: Side = Field(alias="Side", description="Local or Remote")
    address: str = Field(alias="Address", min_length=1, description="host:port")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Ensure the address splits into host and a non-empty port."""
        try:
            _, port = split_host_port(v)
        except ValueError as e:
            raise ValueError(f"address is invalid: {e}") from e
        if not port:
            raise ValueError(f"address {v} is missing port number")
        if not port.isdigit() or int(port) > MAX_PORT:
            raise ValueError(f"address {v} has invalid port {port}")
        return v

    @property
    def host(self) -> str:
        return split_host_port(self.address)[0]

    @property
    def port(self) -> int:
        return int(split_host_port(self.address)[1])

    def __str__(self) -> str:
        return f"{self.address} ({self.side.value})"


class Tunnel(BaseModel):
    """A port forward between a listening endpoint and a dialed endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    from_: Endpoint = Field(alias="From", description="Listening endpoint")
    to: Endpoint = Field(alias="To", description="Dialed endpoint")
    direction: Direction | None = Field(
        default=None, exclude=True, description="Derived at validation time"
    )

    @model_validator(mode="after")
    def derive_direction(self) -> "Tunnel":
        self.direction = infer_direction(self.from_.side, self.to.side)
        return self

    def __str__(self) -> str:
        return f"{self.from_} -> {self.to}"


class InlineKeyCredential(BaseModel):
    """Private key material embedded in the configuration."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["key"] = "key"
    key: SecretStr
    passphrase: SecretStr | None = None


class KeyFileCredential(BaseModel):
    """Private key read from a file."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["key_file"] = "key_file"
    path: Path
    passphrase: SecretStr | None = None


class PasswordCredential(BaseModel):
    """Plain password authentication."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["password"] = "password"
    password: SecretStr


Credential = Annotated[
    InlineKeyCredential | KeyFileCredential | PasswordCredential,
    Field(discriminator="kind"),
]


class Connection(BaseModel):
    """A validated SSH connection and the tunnels multiplexed over it."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=1, description="Connection identifier")
    host: str = Field(min_length=1, description="SSH server host:port")
    username: str = Field(min_length=1, description="SSH login user")
    credential: Credential
    fingerprint: str = Field(default="", description="Pinned host key fingerprint")
    keepalive_interval: timedelta = Field(default=DEFAULT_KEEPALIVE_INTERVAL)
    max_reconnect_delay: timedelta = Field(default=DEFAULT_MAX_RECONNECT_DELAY)
    tunnels: list[Tunnel] = Field(min_length=1)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Default the port to 22 when the host has none."""
        try:
            host, port = split_host_port(v)
        except ValueError:
            if v.startswith("[") and v.endswith("]"):
                return f"{v}:{DEFAULT_SSH_PORT}"
            return join_host_port(v, DEFAULT_SSH_PORT)
        if not host:
            raise ValueError(f"host {v} has no hostname")
        if not port:
            return join_host_port(host, DEFAULT_SSH_PORT)
        if not port.isdigit() or int(port) > MAX_PORT:
            raise ValueError(f"host {v} has invalid port {port}")
        return v

    @field_validator("fingerprint")
    @classmethod
    def validate_fingerprint(cls, v: str) -> str:
        """Only SHA256 and MD5 fingerprints can be pinned."""
        if v and not (v.startswith("SHA256:") or v.upper().startswith("MD5:")):
            raise ValueError(
                f"fingerprint {v} must start with 'SHA256:' or 'MD5:'"
            )
        return v

    @field_validator("keepalive_interval", "max_reconnect_delay", mode="before")
    @classmethod
    def validate_duration(cls, v: object, info: ValidationInfo) -> timedelta:
        """Parse durations, replacing unset or zero values with the default."""
        defaults = {
            "keepalive_interval": DEFAULT_KEEPALIVE_INTERVAL,
            "max_reconnect_delay": DEFAULT_MAX_RECONNECT_DELAY,
        }
        if v is None or v == "":
            return defaults[info.field_name]
        if not isinstance(v, (timedelta, int, float, str)):
            raise ValueError(f"invalid duration {v!r}")
        duration = parse_duration(v)
        if duration < timedelta(0):
            raise ValueError(f"{info.field_name} cannot be negative")
        if duration == timedelta(0):
            return defaults[info.field_name]
        return duration

    @property
    def hostname(self) -> str:
        return split_host_port(self.host)[0]

    @property
    def port(self) -> int:
        return int(split_host_port(self.host)[1])
