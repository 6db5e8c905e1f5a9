"""
Debug-mode tracker for connections that stay registered too long.

A handler that never returns keeps its connection registered forever and
holds one of the limited admission slots. With ServerConfig.leak_threshold
set, the server runs a LeakTracker that periodically logs every connection
older than the threshold, once per connection.
"""

import logging
import threading
from typing import Callable, List, Optional, Set

from .connection import Connection


logger = logging.getLogger(__name__)


class LeakTracker:
    """
    Background thread that reports long-lived connections.

    Args:
        connections: Returns the currently registered connections.
        threshold: Age in seconds after which a connection is reported.
        interval: Seconds between checks (defaults to threshold / 2).
    """

    def __init__(
        self,
        connections: Callable[[], List[Connection]],
        threshold: float,
        interval: Optional[float] = None,
    ):
        self._connections = connections
        self.threshold = threshold
        self.interval = interval or max(threshold / 2, 0.05)

        self._reported: Set[str] = set()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="coolsocket-leak-tracker", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1.0)
            self._thread = None

    def _run(self):
        while not self._stop.wait(self.interval):
            self.check()

    def check(self) -> List[Connection]:
        """Log and return connections outstanding past the threshold."""
        active = self._connections()
        outstanding = [c for c in active if c.age > self.threshold]

        for conn in outstanding:
            if conn.id in self._reported:
                continue
            self._reported.add(conn.id)
            logger.warning(
                f"[{conn.id}] Connection from {conn.remote_host}:{conn.remote_port} "
                f"outstanding for {conn.age:.1f}s (state: {conn.state.value}); "
                f"is the handler stuck or missing a close()?"
            )

        # Forget connections that have since been released
        live_ids = {c.id for c in active}
        self._reported &= live_ids

        return outstanding
