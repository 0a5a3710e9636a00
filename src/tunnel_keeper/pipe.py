"""Bidirectional byte relay between two streams."""

import socket
import threading
from collections.abc import Callable

from .common.logging import get_logger
from .transport import Stream, close_quietly

logger = get_logger(__name__)

CHUNK_SIZE = 32 * 1024


def _describe(stream: Stream) -> str:
    # An SSH channel's getpeername() is the SSH server, not the tunnel peer
    if isinstance(stream, socket.socket):
        try:
            return str(stream.getpeername())
        except OSError:
            return "closed"
    origin = getattr(stream, "origin_addr", None)
    if origin:
        return str(origin)
    return type(stream).__name__


class StreamPipe:
    """Couples two duplex streams until either side ends.

    One thread copies each direction. The first copy to finish closes both
    streams; each stream is closed at most once no matter how many paths
    call ``close()``.
    """

    def __init__(self, left: Stream, right: Stream, name: str = ""):
        self.left = left
        self.right = right
        self.name = name or f"{_describe(left)} <-> {_describe(right)}"
        self._lock = threading.Lock()
        self._closing = False
        self._done = threading.Event()
        self._on_close: list[Callable[[StreamPipe], None]] = []
        self._threads = [
            threading.Thread(
                target=self._copy, args=(left, right), name=f"pipe-{self.name}-tx", daemon=True
            ),
            threading.Thread(
                target=self._copy, args=(right, left), name=f"pipe-{self.name}-rx", daemon=True
            ),
        ]

    def start(self) -> "StreamPipe":
        logger.debug("Connecting streams", pipe=self.name)
        for thread in self._threads:
            thread.start()
        return self

    def add_close_callback(self, callback: Callable[["StreamPipe"], None]) -> None:
        """Run ``callback(pipe)`` once both streams are closed."""
        with self._lock:
            if not self._done.is_set():
                self._on_close.append(callback)
                return
        callback(self)

    def _copy(self, source: Stream, sink: Stream) -> None:
        try:
            while True:
                data = source.recv(CHUNK_SIZE)
                if not data:
                    break
                sink.sendall(data)
        except (OSError, EOFError) as e:
            logger.debug("Pipe copy ended with error", pipe=self.name, error=str(e))
        finally:
            self.close()

    def close(self) -> None:
        """Close both streams; safe to call any number of times from any thread."""
        with self._lock:
            if self._closing:
                return
            self._closing = True

        close_quietly(self.left)
        close_quietly(self.right)

        with self._lock:
            callbacks, self._on_close = self._on_close, []
            self._done.set()
        for callback in callbacks:
            callback(self)

    @property
    def closed(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for both copy threads to finish.

        Returns:
            True if both finished within the timeout
        """
        for thread in self._threads:
            if thread.ident is not None:
                thread.join(timeout)
        return not any(thread.is_alive() for thread in self._threads)


def connect_streams(left: Stream, right: Stream) -> StreamPipe:
    """Start relaying bytes between two streams."""
    return StreamPipe(left, right).start()
