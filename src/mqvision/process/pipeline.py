"""Reading pipeline: the composition root for broadcasts.

The pipeline owns everything shared between broadcasts (the consumer
clients, the delivery queue, the cancel event and the in-flight bound) and
hands each inbound image stream to a fresh FanoutCoordinator.

Example:
    >>> pipeline = ReadingPipeline(
    ...     archive=concierge.post_image,
    ...     extract=gemini.read_gauge,
    ... )
    >>> result = pipeline.process(open("gauge.jpg", "rb"))
    >>> pipeline.shutdown()
"""

import logging
import threading
import time
from typing import BinaryIO, Callable, Optional, Set

from mqvision.core.delivery import DeliveryQueue
from mqvision.core.reading import Reading
from mqvision.streaming.aggregator import ResultAggregator
from mqvision.streaming.fanout import (
    DEFAULT_CHUNK_SIZE,
    BroadcastResult,
    BroadcastState,
    ConsumerSpec,
    FanoutCoordinator,
)

logger = logging.getLogger(__name__)

ARCHIVE = "archive"
READING = "reading"

# Upper bound for cancelled broadcasts to unwind after the grace period.
_CANCEL_JOIN_SEC = 5.0


class PipelineClosedError(RuntimeError):
    """Submitting to a pipeline that is shutting down."""


class ReadingPipeline:
    """Broadcast image streams to the archive and reading consumers.

    Args:
        archive: ``archive(stream, mime_type) -> url``. Best effort.
        extract: ``extract(stream) -> Reading``. Required.
        queue: Delivery queue for artifacts. Created if not given.
        queue_size: Capacity of the created queue.
        max_inflight: Maximum broadcasts running at once.
        shutdown_grace_sec: How long shutdown() waits for in-flight broadcasts.
        chunk_size: Bytes per broadcast write.
        mime_type: MIME type passed to the archive consumer.
    """

    def __init__(
        self,
        archive: Callable[[BinaryIO, str], str],
        extract: Callable[[BinaryIO], Optional[Reading]],
        queue: Optional[DeliveryQueue] = None,
        queue_size: int = 10,
        max_inflight: int = 4,
        shutdown_grace_sec: float = 5.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        mime_type: str = "image/jpeg",
    ):
        if max_inflight < 1:
            raise ValueError(f"max_inflight must be >= 1, got {max_inflight}")

        self._archive = archive
        self._extract = extract
        self._queue: DeliveryQueue = queue or DeliveryQueue(maxsize=queue_size)
        self._max_inflight = max_inflight
        self._shutdown_grace_sec = shutdown_grace_sec
        self._chunk_size = chunk_size
        self._mime_type = mime_type

        self._cancel = threading.Event()
        self._slots = threading.BoundedSemaphore(max_inflight)
        self._inflight: Set[threading.Event] = set()
        self._lock = threading.Lock()
        self._closing = False

        self._aggregator = ResultAggregator(
            self._queue,
            reading_name=READING,
            archive_name=ARCHIVE,
            cancel_event=self._cancel,
        )

        # Stats
        self._submitted = 0
        self._aggregated = 0
        self._abandoned = 0
        self._errors = 0

    @property
    def queue(self) -> DeliveryQueue:
        """Queue the artifacts are delivered to."""
        return self._queue

    @property
    def cancel_event(self) -> threading.Event:
        """Process-wide cancellation signal shared by every broadcast."""
        return self._cancel

    @property
    def inflight_count(self) -> int:
        with self._lock:
            return len(self._inflight)

    @property
    def is_closed(self) -> bool:
        return self._closing

    def new_broadcast(self) -> FanoutCoordinator:
        """Create a coordinator bound to a fresh broadcast set."""
        return FanoutCoordinator(
            consumers=[
                ConsumerSpec(ARCHIVE, self._archive_stream),
                ConsumerSpec(READING, self._extract, required=True),
            ],
            aggregator=self._aggregator,
            cancel_event=self._cancel,
            chunk_size=self._chunk_size,
        )

    def _archive_stream(self, stream: BinaryIO) -> str:
        return self._archive(stream, self._mime_type)

    def process(self, stream: BinaryIO) -> BroadcastResult:
        """Run one broadcast synchronously.

        The stream is closed when the broadcast ends. The broadcast counts as
        in flight, so shutdown() from another thread waits for it and
        cancels it after the grace period.

        Raises:
            PipelineClosedError: If shutdown() was called.
        """
        done = threading.Event()
        with self._lock:
            if self._closing:
                stream.close()
                raise PipelineClosedError("pipeline is shut down")
            self._submitted += 1
            self._inflight.add(done)
        try:
            return self._run_broadcast(stream)
        finally:
            self._release(done)

    def submit(
        self,
        stream: BinaryIO,
        timeout: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> bool:
        """Run one broadcast in a background thread.

        Blocks while ``max_inflight`` broadcasts are running.

        Args:
            stream: Image stream; closed when its broadcast ends.
            timeout: Maximum seconds to wait for a free slot.
            stop_event: Give up waiting for a slot once this event is set.

        Returns:
            True if the broadcast started. False if no slot freed up in time,
            ``stop_event`` was set or the pipeline started shutting down
            meanwhile (the stream is closed then).

        Raises:
            PipelineClosedError: If shutdown() was already called.
        """
        if self._closing:
            stream.close()
            raise PipelineClosedError("pipeline is shut down")

        deadline = time.monotonic() + timeout if timeout is not None else None
        while not self._slots.acquire(timeout=0.1):
            expired = deadline is not None and time.monotonic() >= deadline
            stopped = stop_event is not None and stop_event.is_set()
            if self._closing or expired or stopped:
                logger.warning("No broadcast slot available, dropping image")
                stream.close()
                return False

        done = threading.Event()
        thread = threading.Thread(
            target=self._run_in_slot,
            args=(stream, done),
            daemon=True,
        )
        with self._lock:
            if self._closing:
                self._slots.release()
                stream.close()
                return False
            self._submitted += 1
            self._inflight.add(done)
        thread.start()
        return True

    def _run_in_slot(self, stream: BinaryIO, done: threading.Event) -> None:
        try:
            self._run_broadcast(stream)
        except Exception as e:
            logger.exception(f"Broadcast failed: {e}")
        finally:
            self._release(done)
            self._slots.release()

    def _release(self, done: threading.Event) -> None:
        with self._lock:
            self._inflight.discard(done)
        done.set()

    def _run_broadcast(self, stream: BinaryIO) -> BroadcastResult:
        coordinator = self.new_broadcast()
        try:
            result = coordinator.run(stream)
        except Exception:
            with self._lock:
                self._errors += 1
            raise
        finally:
            stream.close()

        with self._lock:
            if result.state is BroadcastState.AGGREGATED:
                self._aggregated += 1
            else:
                self._abandoned += 1
        return result

    def shutdown(self) -> None:
        """Stop accepting images and close the delivery queue.

        Waits up to ``shutdown_grace_sec`` for in-flight broadcasts, then
        cancels the rest. Idempotent.
        """
        with self._lock:
            if self._closing:
                return
            self._closing = True
            pending = list(self._inflight)

        if pending:
            logger.info(f"Waiting for {len(pending)} in-flight broadcast(s)")
        deadline = time.monotonic() + self._shutdown_grace_sec
        for done in pending:
            done.wait(max(0.0, deadline - time.monotonic()))

        with self._lock:
            remaining = [d for d in self._inflight if not d.is_set()]

        if remaining:
            logger.warning(
                f"Grace period of {self._shutdown_grace_sec}s elapsed, "
                f"cancelling {len(remaining)} broadcast(s)"
            )
            self._cancel.set()
            deadline = time.monotonic() + _CANCEL_JOIN_SEC
            for done in remaining:
                done.wait(max(0.0, deadline - time.monotonic()))

        self._queue.close()

        if self._queue.discarded:
            logger.warning(f"{self._queue.discarded} artifact(s) discarded at shutdown")
        logger.info(
            f"Pipeline stopped: {self._submitted} submitted, "
            f"{self._aggregated} aggregated, {self._abandoned} abandoned"
        )

    def get_stats(self) -> dict:
        """Get pipeline statistics."""
        with self._lock:
            return {
                "submitted": self._submitted,
                "aggregated": self._aggregated,
                "abandoned": self._abandoned,
                "errors": self._errors,
                "inflight": len(self._inflight),
                "max_inflight": self._max_inflight,
                "queued": self._queue.qsize(),
                "delivered": self._queue.delivered,
                "discarded": self._queue.discarded,
            }
