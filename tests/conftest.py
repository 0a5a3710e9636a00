"""Shared pytest fixtures and transport fakes for tunnel-keeper tests."""

import queue
import socket
import threading
import time
from collections.abc import Callable
from typing import Any

import pytest

from tunnel_keeper.models import Connection


class FakeListener:
    """Listener fed by the test; ``close()`` makes ``accept()`` raise."""

    def __init__(self, address: str = "127.0.0.1:0"):
        self._address = address
        self._queue: queue.Queue[Any] = queue.Queue()
        self.closed = threading.Event()

    @property
    def address(self) -> str:
        return self._address

    def push(self, stream: Any) -> None:
        self._queue.put(stream)

    def fail(self, error: BaseException) -> None:
        self._queue.put(error)

    def accept(self) -> Any:
        item = self._queue.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed.set()
        self._queue.put(OSError("use of closed listener"))


class CountingStream:
    """Socket wrapper that counts ``close()`` calls."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.close_calls = 0
        self._lock = threading.Lock()

    def recv(self, bufsize: int) -> bytes:
        return self.sock.recv(bufsize)

    def sendall(self, data: bytes) -> None:
        self.sock.sendall(data)

    def shutdown(self, how: int) -> None:
        self.sock.shutdown(how)

    def close(self) -> None:
        with self._lock:
            self.close_calls += 1
        self.sock.close()


class FakeSession:
    """In-memory TransportSession.

    Outbound streams are socketpairs; the far end of each is kept in
    ``remote_ends`` so tests can play the remote service.
    """

    def __init__(self) -> None:
        self.dialed: list[str] = []
        self.remote_ends: list[socket.socket] = []
        self.listeners: dict[str, FakeListener] = {}
        self.listen_errors: dict[str, BaseException] = {}
        self.dial_error: BaseException | None = None
        self.keepalive_error: BaseException | None = None
        self.keepalive_delay = 0.0
        self.keepalives = 0
        self.closed = threading.Event()

    def open_outbound_stream(self, address: str) -> socket.socket:
        if self.dial_error is not None:
            raise self.dial_error
        ours, theirs = socket.socketpair()
        self.dialed.append(address)
        self.remote_ends.append(theirs)
        return ours

    def open_remote_listener(self, address: str) -> FakeListener:
        if address in self.listen_errors:
            raise self.listen_errors[address]
        listener = FakeListener(address)
        self.listeners[address] = listener
        return listener

    def send_keepalive(self) -> None:
        self.keepalives += 1
        if self.keepalive_delay:
            time.sleep(self.keepalive_delay)
        if self.keepalive_error is not None:
            raise self.keepalive_error

    def close(self) -> None:
        self.closed.set()
        for sock in self.remote_ends:
            sock.close()


class ScriptedSessionFactory:
    """Session factory that replays a script of errors and sessions.

    Once the script runs out every call returns a fresh FakeSession.
    """

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.sessions: list[FakeSession] = []

    def __call__(self, connection: Connection) -> FakeSession:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else FakeSession()
        if isinstance(outcome, BaseException):
            raise outcome
        self.sessions.append(outcome)
        return outcome


def _wait_until(
    predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01
) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def _recv_exactly(sock: socket.socket, size: int, timeout: float = 5.0) -> bytes:
    sock.settimeout(timeout)
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout passes.

    Returns:
        Callable: wait_until(predicate, timeout=5.0) -> bool
    """
    return _wait_until


@pytest.fixture
def recv_exactly():
    """Read an exact number of bytes from a socket with a timeout."""
    return _recv_exactly


@pytest.fixture
def fake_session():
    """A fresh in-memory TransportSession."""
    session = FakeSession()
    yield session
    session.close()


@pytest.fixture
def fake_listener():
    """A listener the test feeds with streams."""
    listener = FakeListener()
    yield listener
    listener.close()


@pytest.fixture
def local_listen():
    """A listen callable handing out FakeListeners.

    ``listen.listeners`` maps address to listener; put an exception in
    ``listen.errors`` to make binding that address fail.
    """
    listeners: dict[str, FakeListener] = {}
    errors: dict[str, BaseException] = {}

    def listen(address: str) -> FakeListener:
        if address in errors:
            raise errors[address]
        listener = FakeListener(address)
        listeners[address] = listener
        return listener

    listen.listeners = listeners  # type: ignore[attr-defined]
    listen.errors = errors  # type: ignore[attr-defined]
    yield listen
    for listener in listeners.values():
        listener.close()


@pytest.fixture
def counting_pair():
    """Two connected CountingStreams plus their raw peers.

    Returns:
        tuple: (left, left_peer, right, right_peer)
    """
    left_sock, left_peer = socket.socketpair()
    right_sock, right_peer = socket.socketpair()
    left = CountingStream(left_sock)
    right = CountingStream(right_sock)
    yield left, left_peer, right, right_peer
    for sock in (left_sock, left_peer, right_sock, right_peer):
        sock.close()


@pytest.fixture
def session_factory():
    """Build a ScriptedSessionFactory from a list of outcomes."""
    return ScriptedSessionFactory


@pytest.fixture
def make_connection():
    """Build a validated Connection with sensible test defaults.

    Returns:
        Callable: make_connection(**overrides) -> Connection
    """

    def _make(**overrides: Any) -> Connection:
        data: dict[str, Any] = {
            "name": "test-connection",
            "host": "127.0.0.1:22",
            "username": "root",
            "credential": {"kind": "password", "password": "secret"},
            "keepalive_interval": 0.2,
            "max_reconnect_delay": 60,
            "tunnels": [
                {
                    "From": {"Side": "Local", "Address": "127.0.0.1:0"},
                    "To": {"Side": "Remote", "Address": "127.0.0.1:3306"},
                }
            ],
        }
        data.update(overrides)
        return Connection.model_validate(data)

    return _make


@pytest.fixture
def echo_server():
    """A loopback TCP server that echoes every byte back.

    Returns:
        str: The server's host:port
    """
    server = socket.create_server(("127.0.0.1", 0))
    connections: list[socket.socket] = []

    def handle(conn: socket.socket) -> None:
        with conn:
            while True:
                try:
                    data = conn.recv(4096)
                except OSError:
                    return
                if not data:
                    return
                conn.sendall(data)

    def serve() -> None:
        while True:
            try:
                conn, _ = server.accept()
            except OSError:
                return
            connections.append(conn)
            threading.Thread(target=handle, args=(conn,), daemon=True).start()

    threading.Thread(target=serve, daemon=True).start()
    yield f"127.0.0.1:{server.getsockname()[1]}"
    try:
        server.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    server.close()
    for conn in connections:
        try:
            conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
