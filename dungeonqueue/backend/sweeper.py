"""Background sweep that purges expired entries and re-runs matchmaking."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from dungeonqueue.backend.models import QueueStoreError
from dungeonqueue.backend.service import QueueService

logger = logging.getLogger(__name__)


class QueueSweeper:
    """Runs sweep_once on a fixed interval in a daemon thread."""

    def __init__(
        self,
        service: QueueService,
        interval_seconds: float,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._service = service
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep_once(self) -> int:
        """Expire stale entries, then return the number of groups formed."""
        self._service.expire_entries(self._clock())
        return self._service.run_all_passes()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Queue sweeper already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="queue-sweeper", daemon=True)
        self._thread.start()
        logger.info("Queue sweeper started, interval %.1fs", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.sweep_once()
            except QueueStoreError:
                logger.exception("Queue sweep failed")
