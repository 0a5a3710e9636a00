"""Accept-dial-pipe loop for a single tunnel."""

import threading
from collections.abc import Callable

from .common.exceptions import TunnelKeeperError
from .common.logging import get_logger
from .pipe import StreamPipe
from .transport import Dialer, Listener, Stream, close_quietly

logger = get_logger(__name__)

ErrorReporter = Callable[[str], None]


def _log_error(message: str) -> None:
    logger.warning(message)


class TunnelForwarder:
    """Forwards every connection accepted on ``listener`` to ``target``.

    Each accepted stream is dialed through ``dial`` on its own thread and
    bridged with a ``StreamPipe``. A failed dial only drops that one
    stream; an accept error ends the forwarder, leaving recovery to the
    supervisor's next reconnect.
    """

    def __init__(
        self,
        listener: Listener,
        target: str,
        dial: Dialer,
        report: ErrorReporter | None = None,
        name: str = "",
    ):
        """Initialize forwarder.

        Args:
            listener: Source of accepted streams
            target: ``host:port`` to dial for each accepted stream
            dial: Dial capability for the side opposite the listener
            report: Receives human-readable error lines
            name: Label used in logs and thread names
        """
        self.listener = listener
        self.target = target
        self.dial = dial
        self.report = report or _log_error
        self.name = name or f"{listener.address} -> {target}"
        self._pipes: set[StreamPipe] = set()
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def pipes(self) -> list[StreamPipe]:
        """Pipes currently relaying data."""
        with self._lock:
            return list(self._pipes)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> "TunnelForwarder":
        self._thread = threading.Thread(
            target=self.serve, name=f"forward-{self.name}", daemon=True
        )
        self._thread.start()
        return self

    def serve(self) -> None:
        """Accept until the listener fails or is closed."""
        while True:
            try:
                conn = self.listener.accept()
            except (OSError, EOFError, TunnelKeeperError) as e:
                message = f"error listening on {self.listener.address}: {e}"
                if self._closed.is_set():
                    logger.debug(message)
                else:
                    self.report(message)
                return

            if self._closed.is_set():
                close_quietly(conn)
                return

            threading.Thread(
                target=self._bridge,
                args=(conn,),
                name=f"dial-{self.target}",
                daemon=True,
            ).start()

    def _bridge(self, conn: Stream) -> None:
        try:
            target_conn = self.dial(self.target)
        except (OSError, TunnelKeeperError) as e:
            close_quietly(conn)
            self.report(f"failed to connect to {self.target}: {e}")
            return

        pipe = StreamPipe(conn, target_conn)
        with self._lock:
            if self._closed.is_set():
                pipe.close()
                return
            self._pipes.add(pipe)
        pipe.add_close_callback(self._discard)
        pipe.start()

    def _discard(self, pipe: StreamPipe) -> None:
        with self._lock:
            self._pipes.discard(pipe)

    def close(self) -> None:
        """Stop accepting and close every live pipe; idempotent."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            pipes = list(self._pipes)
            self._pipes.clear()

        self.listener.close()
        for pipe in pipes:
            pipe.close()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
