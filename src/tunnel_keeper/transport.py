"""SSH transport boundary.

The supervisor and forwarders only see the ``Stream``, ``Listener`` and
``TransportSession`` protocols. ``ParamikoSession`` implements them over a
``paramiko.Transport``; ``listen_local`` and ``dial_local`` provide the
plain-TCP side.
"""

import base64
import hashlib
import io
import queue
import socket
import threading
from collections.abc import Callable
from typing import Protocol

import paramiko

from .common.exceptions import HostKeyMismatchError, TransportError
from .common.logging import get_logger
from .common.utils import join_host_port, split_host_port
from .models import (
    Connection,
    Credential,
    InlineKeyCredential,
    KeyFileCredential,
    PasswordCredential,
)

logger = get_logger(__name__)

CONNECT_TIMEOUT = 15.0
DIAL_TIMEOUT = 15.0
KEEPALIVE_REQUEST = "keepalive@openssh.com"

_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


class Stream(Protocol):
    """A duplex byte stream: a TCP socket or an SSH channel."""

    def recv(self, bufsize: int) -> bytes: ...

    def sendall(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class Listener(Protocol):
    """Source of accepted streams."""

    @property
    def address(self) -> str: ...

    def accept(self) -> Stream: ...

    def close(self) -> None: ...


class TransportSession(Protocol):
    """An authenticated SSH session, treated as an opaque capability."""

    def open_outbound_stream(self, address: str) -> Stream: ...

    def open_remote_listener(self, address: str) -> Listener: ...

    def send_keepalive(self) -> None: ...

    def close(self) -> None: ...


Dialer = Callable[[str], Stream]
SessionFactory = Callable[[Connection], TransportSession]
LocalListen = Callable[[str], Listener]


def close_quietly(stream: Stream) -> None:
    """Shut down and close a stream, ignoring errors.

    Shutting down first wakes any thread blocked in ``recv`` on it.
    """
    shutdown = getattr(stream, "shutdown", None)
    if shutdown is not None:
        try:
            shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
    try:
        stream.close()
    except OSError:
        pass


# Host key verification


def sha256_fingerprint(key: paramiko.PKey) -> str:
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def md5_fingerprint(key: paramiko.PKey) -> str:
    digest = hashlib.md5(key.asbytes()).hexdigest()
    return "MD5:" + ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def fingerprint_matches(fingerprint: str, key: paramiko.PKey) -> bool:
    """Check a presented host key against a pinned fingerprint.

    Args:
        fingerprint: ``SHA256:<base64>`` or ``MD5:<hex pairs>``
        key: Key presented by the server

    Returns:
        True if the key matches the fingerprint
    """
    fingerprint = fingerprint.strip()
    if fingerprint.startswith("SHA256:"):
        return fingerprint.rstrip("=") == sha256_fingerprint(key)
    if fingerprint.upper().startswith("MD5:"):
        return fingerprint[4:].lower() == md5_fingerprint(key)[4:]
    return False


def verify_host_key(fingerprint: str, hostname: str, key: paramiko.PKey) -> None:
    """Accept or reject the key a server presented.

    An empty fingerprint accepts any key.

    Raises:
        HostKeyMismatchError: If the key does not match the fingerprint
    """
    if not fingerprint:
        logger.warning(
            "No fingerprint pinned, accepting host key",
            host=hostname,
            fingerprint=sha256_fingerprint(key),
        )
        return
    if not fingerprint_matches(fingerprint, key):
        raise HostKeyMismatchError(fingerprint, sha256_fingerprint(key))


# Credentials


def _parse_key(read: Callable[[type[paramiko.PKey]], paramiko.PKey]) -> paramiko.PKey:
    errors = []
    for key_class in _KEY_CLASSES:
        try:
            return read(key_class)
        except paramiko.PasswordRequiredException:
            raise
        except (paramiko.SSHException, ValueError) as e:
            errors.append(f"{key_class.__name__}: {e}")
    raise paramiko.SSHException("unsupported private key: " + "; ".join(errors))


def load_private_key(credential: Credential) -> paramiko.PKey | None:
    """Build the paramiko key for a key-based credential.

    Returns:
        The parsed key, or None for password credentials

    Raises:
        OSError: If a key file cannot be read
        UnicodeDecodeError: If a key file is not UTF-8 text
        paramiko.SSHException: If the key cannot be parsed or decrypted
    """
    if isinstance(credential, PasswordCredential):
        return None

    passphrase = (
        credential.passphrase.get_secret_value() if credential.passphrase else None
    )
    if isinstance(credential, InlineKeyCredential):
        material = credential.key.get_secret_value()
        return _parse_key(
            lambda cls: cls.from_private_key(io.StringIO(material), password=passphrase)
        )
    if isinstance(credential, KeyFileCredential):
        material = credential.path.expanduser().read_text(encoding="utf-8")
        return _parse_key(
            lambda cls: cls.from_private_key(io.StringIO(material), password=passphrase)
        )
    raise TypeError(f"unknown credential {type(credential).__name__}")


def _authenticate(transport: paramiko.Transport, connection: Connection) -> None:
    credential = connection.credential
    if isinstance(credential, PasswordCredential):
        transport.auth_password(
            connection.username, credential.password.get_secret_value()
        )
        return
    pkey = load_private_key(credential)
    transport.auth_publickey(connection.username, pkey)


# Remote side


class RemoteListener:
    """Listener for connections the SSH server forwards back to us."""

    _CLOSED = object()

    def __init__(self, session: "ParamikoSession", host: str, port: int):
        self._session = session
        self.host = host
        self.port = port
        self._queue: queue.Queue[object] = queue.Queue()
        self._closed = threading.Event()

    @property
    def address(self) -> str:
        return join_host_port(self.host, self.port)

    def deliver(self, channel: paramiko.Channel) -> None:
        """Hand over a channel opened by the server; runs on paramiko's thread."""
        if self._closed.is_set():
            channel.close()
            return
        self._queue.put(channel)

    def accept(self) -> Stream:
        item = self._queue.get()
        if item is self._CLOSED:
            # Keep waking other accept() callers
            self._queue.put(self._CLOSED)
            raise TransportError(f"listener on {self.address} (Remote) closed")
        return item  # type: ignore[return-value]

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._session.release_listener(self)
        self._queue.put(self._CLOSED)


class ParamikoSession:
    """TransportSession over a connected, authenticated ``paramiko.Transport``."""

    def __init__(self, transport: paramiko.Transport, name: str = ""):
        self._transport = transport
        self.name = name
        self._listeners: dict[int, RemoteListener] = {}
        self._lock = threading.Lock()

    @property
    def transport(self) -> paramiko.Transport:
        return self._transport

    def open_outbound_stream(self, address: str) -> Stream:
        host, port = split_host_port(address)
        try:
            return self._transport.open_channel(
                "direct-tcpip",
                (host, int(port)),
                ("127.0.0.1", 0),
                timeout=DIAL_TIMEOUT,
            )
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(str(e) or type(e).__name__) from e

    def open_remote_listener(self, address: str) -> Listener:
        host, port = split_host_port(address)
        try:
            bound = self._transport.request_port_forward(
                host, int(port), handler=self._dispatch
            )
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(str(e) or type(e).__name__) from e

        listener = RemoteListener(self, host, bound)
        with self._lock:
            self._listeners[bound] = listener
        logger.debug("Remote listener opened", session=self.name, address=address)
        return listener

    def _dispatch(
        self,
        channel: paramiko.Channel,
        origin: tuple[str, int],
        server: tuple[str, int],
    ) -> None:
        # paramiko keeps a single forward handler per transport, so route by port
        with self._lock:
            listener = self._listeners.get(server[1])
        if listener is None:
            logger.warning(
                "Forwarded connection for unknown port", session=self.name, port=server[1]
            )
            channel.close()
            return
        listener.deliver(channel)

    def release_listener(self, listener: RemoteListener) -> None:
        with self._lock:
            if self._listeners.get(listener.port) is listener:
                del self._listeners[listener.port]
        if self._transport.is_active():
            try:
                self._transport.global_request(
                    "cancel-tcpip-forward", (listener.host, listener.port), wait=False
                )
            except (paramiko.SSHException, OSError, EOFError) as e:
                logger.debug("Cancel forward failed", address=listener.address, error=str(e))

    def send_keepalive(self) -> None:
        """Send a keepalive request and block until the server replies.

        A denied request still counts as a reply: OpenSSH answers
        ``keepalive@openssh.com`` with a failure message.

        Raises:
            TransportError: If the transport is gone before a reply arrives
        """
        if not self._transport.is_active():
            raise TransportError("transport is not active")
        self._transport.global_request(KEEPALIVE_REQUEST, wait=True)
        if not self._transport.is_active():
            raise TransportError("transport closed while waiting for keepalive reply")

    def close(self) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            listener.close()
        self._transport.close()


def open_session(
    connection: Connection, timeout: float = CONNECT_TIMEOUT
) -> ParamikoSession:
    """Connect, verify the host key and authenticate.

    Args:
        connection: Validated connection record
        timeout: Timeout for the TCP connect and SSH handshake

    Returns:
        Ready-to-use session

    Raises:
        TransportError: If any step fails
    """
    try:
        sock = socket.create_connection(
            (connection.hostname, connection.port), timeout=timeout
        )
    except OSError as e:
        raise TransportError(str(e)) from e

    transport = paramiko.Transport(sock)
    try:
        transport.start_client(timeout=timeout)
        verify_host_key(
            connection.fingerprint,
            connection.hostname,
            transport.get_remote_server_key(),
        )
        _authenticate(transport, connection)
    except HostKeyMismatchError:
        transport.close()
        raise
    except (paramiko.SSHException, OSError, EOFError, ValueError) as e:
        # ValueError covers undecodable or malformed key material
        transport.close()
        raise TransportError(str(e) or type(e).__name__) from e

    if not transport.is_authenticated():
        transport.close()
        raise TransportError("authentication failed")

    logger.debug("SSH session established", connection=connection.name)
    return ParamikoSession(transport, connection.name)


# Local side


class LocalListener:
    """Plain TCP listening socket."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        host, port = sock.getsockname()[:2]
        self._address = join_host_port(host, port)

    @property
    def address(self) -> str:
        return self._address

    @property
    def port(self) -> int:
        return int(self._sock.getsockname()[1])

    def accept(self) -> Stream:
        conn, _ = self._sock.accept()
        return conn

    def close(self) -> None:
        close_quietly(self._sock)


def listen_local(address: str) -> LocalListener:
    """Bind a TCP listener on ``host:port`` (empty host binds all interfaces).

    Raises:
        OSError: If the address cannot be bound
    """
    host, port = split_host_port(address)
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.create_server((host, int(port)), family=family)
    return LocalListener(sock)


def dial_local(address: str) -> Stream:
    """Open a plain TCP connection to ``host:port``.

    Raises:
        OSError: If the connection fails
    """
    host, port = split_host_port(address)
    sock = socket.create_connection((host, int(port)), timeout=DIAL_TIMEOUT)
    sock.settimeout(None)
    return sock
