"""Bounded-time liveness check over a transport session."""

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum

from .common.logging import get_logger
from .transport import TransportSession

logger = get_logger(__name__)


class ProbeResult(str, Enum):
    """Outcome of a single liveness probe."""

    ALIVE = "alive"
    ERROR = "error"
    TIMEOUT = "timeout"


class LivenessProbe:
    """Races a keepalive round trip against a deadline.

    The keepalive runs on a daemon thread that resolves a future; the
    caller waits on that future with the deadline. When the deadline wins,
    the future is simply abandoned: the late reply (or error) still lands
    in it, but nobody reads it and nothing waits for the thread.
    """

    def run(self, session: TransportSession, deadline: float) -> ProbeResult:
        """Probe ``session``, giving up after ``deadline`` seconds."""
        outcome: Future[None] = Future()

        def request() -> None:
            try:
                session.send_keepalive()
            except Exception as e:
                outcome.set_exception(e)
            else:
                outcome.set_result(None)

        threading.Thread(target=request, name="keepalive-probe", daemon=True).start()

        try:
            outcome.result(timeout=deadline)
        except FutureTimeoutError:
            logger.debug("Keepalive timed out", deadline=deadline)
            return ProbeResult.TIMEOUT
        except Exception as e:
            logger.debug("Keepalive failed", error=str(e))
            return ProbeResult.ERROR
        return ProbeResult.ALIVE

    def check(self, session: TransportSession | None, deadline: float) -> bool:
        """True only if ``session`` answered a keepalive within ``deadline``."""
        if session is None:
            return False
        return self.run(session, deadline) is ProbeResult.ALIVE
