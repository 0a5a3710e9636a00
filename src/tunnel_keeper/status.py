"""Thread-safe status reporting for connections."""

import threading
from collections import deque

from .common.logging import get_logger

logger = get_logger(__name__)


class StatusCell:
    """Holds the human-readable status of one connection.

    Written only by the owning supervisor (and the forwarders it spawns),
    read freely by observers from any thread.
    """

    def __init__(self, name: str, history_size: int = 100):
        self.name = name
        self._value = ""
        self._lock = threading.Lock()
        self._history: deque[str] = deque(maxlen=history_size)

    def set(self, status: str) -> None:
        """Store a new status and emit it as a log line."""
        logger.info(f"{self.name}: {status}", connection=self.name, status=status)
        with self._lock:
            self._value = status
            self._history.append(status)

    def get(self) -> str:
        """Current status, empty string before the first update."""
        with self._lock:
            return self._value

    @property
    def history(self) -> list[str]:
        """Most recent statuses, oldest first."""
        with self._lock:
            return list(self._history)

    def __str__(self) -> str:
        return self.get()


class StatusReporter:
    """Registry of status cells keyed by connection name."""

    def __init__(self) -> None:
        self._cells: dict[str, StatusCell] = {}
        self._lock = threading.Lock()

    def cell(self, name: str) -> StatusCell:
        """Get or create the status cell for a connection."""
        with self._lock:
            if name not in self._cells:
                self._cells[name] = StatusCell(name)
            return self._cells[name]

    def snapshot(self) -> dict[str, str]:
        """Current status of every known connection."""
        with self._lock:
            cells = list(self._cells.values())
        return {cell.name: cell.get() for cell in cells}
