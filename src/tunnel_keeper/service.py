"""Runs one supervisor per configured connection."""

import signal
import threading
from types import FrameType, TracebackType
from typing import Literal

from .common.logging import get_logger
from .models import Connection
from .status import StatusReporter
from .supervisor import ConnectionSupervisor
from .transport import SessionFactory, open_session

logger = get_logger(__name__)


class TunnelService:
    """Owns the supervisors for a set of connections.

    Supervisors share nothing but the status registry, so one connection
    stalling or failing never blocks another.
    """

    def __init__(
        self,
        connections: list[Connection],
        session_factory: SessionFactory = open_session,
        reporter: StatusReporter | None = None,
    ):
        self.reporter = reporter or StatusReporter()
        self.supervisors = [
            ConnectionSupervisor(
                connection,
                session_factory=session_factory,
                status=self.reporter.cell(connection.name),
            )
            for connection in connections
        ]
        self._stopped = threading.Event()
        self._shutdown = threading.Event()

    def start(self) -> None:
        logger.info("Starting tunnel service", connections=len(self.supervisors))
        self._stopped.clear()
        for supervisor in self.supervisors:
            supervisor.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop every supervisor and close their sessions."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        logger.info("Stopping tunnel service")
        for supervisor in self.supervisors:
            supervisor.stop(timeout)

    def statuses(self) -> dict[str, str]:
        return self.reporter.snapshot()

    def run_forever(self) -> None:
        """Start and block until interrupted or terminated."""

        def handle_signal(signum: int, _frame: FrameType | None) -> None:
            logger.info("Received signal", signal=signal.Signals(signum).name)
            self._shutdown.set()

        previous = signal.signal(signal.SIGTERM, handle_signal)
        self.start()
        try:
            while not self._shutdown.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            signal.signal(signal.SIGTERM, previous)
            self.stop()

    def __enter__(self) -> "TunnelService":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.stop()
        return False
