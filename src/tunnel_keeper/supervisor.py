"""Lifecycle management for a single SSH connection and its tunnels."""

import threading
import time

from .common.exceptions import TunnelKeeperError
from .common.logging import connection_context, get_logger
from .common.utils import format_duration
from .forwarder import TunnelForwarder
from .models import Connection, Direction, Tunnel
from .probe import LivenessProbe
from .state import Backoff, ConnectionEvent, ConnectionState, transition
from .status import StatusCell
from .transport import (
    Dialer,
    Listener,
    LocalListen,
    SessionFactory,
    TransportSession,
    dial_local,
    listen_local,
    open_session,
)

logger = get_logger(__name__)

PROBE_DEADLINE_RATIO = 0.9


def _close_in_background(resource: TransportSession | TunnelForwarder, name: str) -> None:
    def close() -> None:
        try:
            resource.close()
        except (OSError, EOFError, TunnelKeeperError) as e:
            logger.debug("Error during close", resource=name, error=str(e))

    threading.Thread(target=close, name=f"close-{name}", daemon=True).start()


class ConnectionSupervisor:
    """Keeps one connection up: connect, set up tunnels, probe, reconnect.

    The session handle and forwarder list are only written from the
    supervisor's own thread. ``status`` may be read from anywhere.
    """

    def __init__(
        self,
        connection: Connection,
        session_factory: SessionFactory = open_session,
        listen: LocalListen = listen_local,
        dial: Dialer = dial_local,
        probe: LivenessProbe | None = None,
        status: StatusCell | None = None,
    ):
        """Initialize supervisor.

        Args:
            connection: Validated connection record
            session_factory: Opens a TransportSession for the connection
            listen: Binds local listeners for locally exposed tunnels
            dial: Dials local targets for server-exposed tunnels
            probe: Liveness probe (a fresh LivenessProbe if None)
            status: Status cell to publish into (created if None)
        """
        self.connection = connection
        self.session_factory = session_factory
        self.listen = listen
        self.dial = dial
        self.probe = probe or LivenessProbe()
        self.status = status or StatusCell(connection.name)
        self.backoff = Backoff(cap=connection.max_reconnect_delay)
        self.session: TransportSession | None = None
        self.forwarders: list[TunnelForwarder] = []
        self._state = ConnectionState.DISCONNECTED
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def name(self) -> str:
        return self.connection.name

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def listeners(self) -> list[Listener]:
        """Listeners opened by the current session."""
        return [forwarder.listener for forwarder in self.forwarders]

    @property
    def keepalive_interval(self) -> float:
        return self.connection.keepalive_interval.total_seconds()

    def _fire(self, event: ConnectionEvent) -> None:
        new_state = transition(self._state, event)
        logger.debug(
            "State transition",
            connection=self.name,
            trigger=event.value,
            old=self._state.value,
            new=new_state.value,
        )
        self._state = new_state

    def _set_status(self, status: str) -> None:
        self.status.set(status)

    # Connect / close

    def connect(self) -> bool:
        """Open the session and start a forwarder per tunnel.

        Returns:
            True if the session is up (even if some tunnels failed to listen)
        """
        if self.session is not None:
            self._set_status("already connected")
            return True

        self._fire(ConnectionEvent.CONNECT)
        self._set_status("connecting")
        try:
            session = self.session_factory(self.connection)
        except (OSError, EOFError, TunnelKeeperError) as e:
            self._set_status(f"failed to connect to {self.connection.host}: {e}")
            self._fire(ConnectionEvent.CONNECT_FAILED)
            return False

        self.session = session
        self._fire(ConnectionEvent.SESSION_UP)
        self._set_status("configuring tunnels")
        for tunnel in self.connection.tunnels:
            forwarder = self._open_tunnel(session, tunnel)
            if forwarder is not None:
                self.forwarders.append(forwarder)
                forwarder.start()

        self._fire(ConnectionEvent.TUNNELS_READY)
        self._set_status("ok")
        return True

    def _open_tunnel(
        self, session: TransportSession, tunnel: Tunnel
    ) -> TunnelForwarder | None:
        address = tunnel.from_.address
        try:
            if tunnel.direction == Direction.EXPOSED_LOCALLY:
                listener = self.listen(address)
                dial = session.open_outbound_stream
            elif tunnel.direction == Direction.EXPOSED_ON_SERVER:
                listener = session.open_remote_listener(address)
                dial = self.dial
            else:
                raise ValueError(f"invalid tunnel direction {tunnel.direction}")
        except (OSError, EOFError, TunnelKeeperError) as e:
            self._set_status(
                f"failed to listen on {address} ({tunnel.from_.side.value}): {e}"
            )
            return None

        return TunnelForwarder(
            listener,
            tunnel.to.address,
            dial,
            report=self._set_status,
            name=f"{self.name}:{tunnel}",
        )

    def close(self) -> None:
        """Tear down the session and every tunnel; idempotent.

        Closes run on background threads; the handles are cleared right
        away so a second call finds nothing to do. The state always ends
        up DISCONNECTED, so a later ``connect()`` starts from scratch.
        """
        session, self.session = self.session, None
        forwarders, self.forwarders = self.forwarders, []
        self._fire(ConnectionEvent.CLOSE)

        for forwarder in forwarders:
            _close_in_background(forwarder, forwarder.name)
        if session is not None:
            _close_in_background(session, self.name)

    # Liveness

    def is_alive(self) -> bool:
        deadline = self.keepalive_interval * PROBE_DEADLINE_RATIO
        return self.probe.check(self.session, deadline)

    # Main loop

    def run(self) -> None:
        """Supervise the connection until ``stop()`` is called.

        An unexpected error in one iteration is logged, the connection is
        torn down and retried after the usual backoff; it never ends the
        loop.
        """
        interval = self.keepalive_interval
        next_tick = time.monotonic() + interval

        with connection_context(self.name):
            while not self._stop.is_set():
                try:
                    next_tick = self._supervise(next_tick, interval)
                except Exception as e:
                    logger.exception("Supervisor iteration failed", error=str(e))
                    self.close()
                    delay = self.backoff.failure()
                    self._set_status(f"reconnecting in {format_duration(delay)}")
                    if self._sleep(delay.total_seconds()):
                        break
                    next_tick = time.monotonic() + interval

    def _supervise(self, next_tick: float, interval: float) -> float:
        """Check liveness once, then wait for the next tick or reconnect.

        Returns:
            Monotonic time of the following tick
        """
        if self.is_alive():
            self.backoff.reset()
            now = time.monotonic()
            if next_tick <= now:
                # Missed ticks are dropped rather than replayed
                next_tick = now + interval
            self._sleep(next_tick - now)
            return next_tick + interval

        if self._stop.is_set():
            return next_tick
        self._set_status("disconnected")
        self._fire(ConnectionEvent.PROBE_FAILED)
        self.close()
        self._reconnect()
        return time.monotonic() + interval

    def _reconnect(self) -> None:
        """Connect, backing off between failures until it works or we stop."""
        while not self._stop.is_set():
            if self.connect():
                self.backoff.reset()
                return
            delay = self.backoff.failure()
            self._fire(ConnectionEvent.BACKOFF)
            self._set_status(f"reconnecting in {format_duration(delay)}")
            if self._sleep(delay.total_seconds()):
                return

    def _sleep(self, seconds: float) -> bool:
        """Wait unless stopped first; True means stop was requested."""
        return self._stop.wait(seconds)

    def start(self) -> "ConnectionSupervisor":
        """Run the supervisor loop on a daemon thread."""
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run, name=f"supervisor-{self.name}", daemon=True
        )
        self._thread.start()
        return self

    def stop(self, timeout: float | None = None) -> None:
        """Stop the loop and tear down the connection."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self.close()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
