"""Bounded delivery queue between the result aggregator and the sink."""

import logging
import threading
import time
from collections import deque
from typing import Deque, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Wake-up interval while blocked, to notice cancellation.
_POLL_INTERVAL_SEC = 0.1


class QueueClosedError(RuntimeError):
    """Enqueue on a delivery queue that was already closed."""


class DeliveryQueue(Generic[T]):
    """Fixed-capacity FIFO with an explicit close.

    put() returns immediately while there is room and blocks otherwise
    (back-pressure). Items enqueued before close() stay available to get().

    Args:
        maxsize: Capacity (>= 1).

    Example:
        >>> queue = DeliveryQueue(maxsize=10)
        >>> queue.put(artifact)
        True
        >>> queue.get(timeout=1.0)
        Artifact(...)
        >>> queue.close()
    """

    def __init__(self, maxsize: int = 10):
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        self._maxsize = maxsize
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._delivered = 0
        self._discarded = 0

    def put(
        self,
        item: T,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        """Enqueue an item, blocking while the queue is full.

        Args:
            item: Item to enqueue.
            timeout: Maximum seconds to wait for room. None waits indefinitely.
            cancel_event: Abandon the wait once this event is set.

        Returns:
            True if enqueued. False if the wait was abandoned because the
            queue closed, the event was set, or the timeout elapsed.

        Raises:
            QueueClosedError: If the queue was already closed.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None

        with self._cond:
            if self._closed:
                raise QueueClosedError("enqueue on closed delivery queue")

            while len(self._items) >= self._maxsize:
                if self._closed:
                    return self._discard("queue closed while waiting")
                if cancel_event is not None and cancel_event.is_set():
                    return self._discard("cancelled while waiting")

                wait = _POLL_INTERVAL_SEC
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return self._discard(f"queue full after {timeout}s")
                    wait = min(wait, remaining)
                self._cond.wait(wait)

            self._items.append(item)
            self._delivered += 1
            self._cond.notify_all()
            return True

    def _discard(self, reason: str) -> bool:
        self._discarded += 1
        logger.warning(f"Discarded undelivered item: {reason}")
        return False

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Dequeue the next item.

        Args:
            timeout: Maximum seconds to wait. None waits until an item arrives
                or the queue is closed.

        Returns:
            The next item, or None on timeout or when closed and drained.
        """
        with self._cond:
            if not self._cond.wait_for(
                lambda: self._items or self._closed, timeout
            ):
                return None
            if not self._items:
                return None
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def close(self) -> None:
        """Reject further puts and wake every waiter. Idempotent."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        logger.debug("Delivery queue closed")

    def qsize(self) -> int:
        """Number of items waiting."""
        with self._cond:
            return len(self._items)

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def delivered(self) -> int:
        """Items accepted by put()."""
        return self._delivered

    @property
    def discarded(self) -> int:
        """Items whose put() was abandoned."""
        return self._discarded
