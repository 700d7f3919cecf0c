"""Bounded progress event channel between a crawl and its observer."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Iterator

from src.core.models import ProgressEvent

logger = logging.getLogger(__name__)


class ProgressChannel:
    """Thread-safe queue of ProgressEvent objects.

    ``emit`` waits at most ``put_timeout`` seconds for room; an event that
    still does not fit is dropped so a stalled consumer cannot stall the
    crawl. Iterating drains the queue and stops once the channel is closed
    and empty.
    """

    def __init__(self, maxsize: int = 1000, *, put_timeout: float = 0.5, poll_interval: float = 0.2) -> None:
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._put_timeout = put_timeout
        self._poll_interval = poll_interval
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def emit(self, event: ProgressEvent) -> None:
        if self.closed:
            logger.warning("Progress channel closed; discarding event: %s", event.message)
            return
        try:
            self._queue.put(event, timeout=self._put_timeout)
        except queue.Full:
            self.dropped += 1
            logger.warning("Progress channel full; dropped event: %s", event.message)

    def close(self) -> None:
        if self.closed:
            logger.warning("Progress channel already closed")
            return
        self._closed.set()

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            try:
                yield self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                if self.closed and self._queue.empty():
                    return
