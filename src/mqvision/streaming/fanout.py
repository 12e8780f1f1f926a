"""Fan-out coordinator running concurrent consumers over one broadcast.

The FanoutCoordinator takes a single source stream, broadcasts it to one
read-endpoint per consumer, runs every consumer in its own thread and joins
them all before deciding the broadcast outcome.

Architecture:
    source ──copy thread──> BroadcastWriter
                              │
                              ├─→ consumer "archive" (best effort)
                              └─→ consumer "reading" (required)
                                      │
                              join ───┴─→ ResultAggregator ──> DeliveryQueue

Lifecycle of one broadcast:
    CREATED → STREAMING → JOINED → AGGREGATED | ABANDONED
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Callable, Dict, List, Optional, TYPE_CHECKING

from mqvision.core.broadcast import (
    BroadcastCloseError,
    BroadcastReader,
    BroadcastWriteError,
    BroadcastWriter,
    ClosedPipeError,
    create_broadcast,
)
from mqvision.core.reading import Artifact

if TYPE_CHECKING:
    from mqvision.streaming.aggregator import ResultAggregator

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 32 * 1024

_broadcast_ids = itertools.count(1)


class BroadcastState(Enum):
    """Lifecycle states of one broadcast."""

    CREATED = "created"
    STREAMING = "streaming"
    JOINED = "joined"
    AGGREGATED = "aggregated"
    ABANDONED = "abandoned"


class BroadcastCancelled(Exception):
    """The broadcast was cancelled by the process-wide cancel event."""


@dataclass
class ConsumerSpec:
    """A consumer of one broadcast read-endpoint.

    Args:
        name: Identifier used for outcomes and logs (e.g., "archive").
        func: Called with the read-endpoint; its return value is the outcome.
        required: If True, a failed or None outcome abandons the broadcast.
    """

    name: str
    func: Callable[[BinaryIO], Any]
    required: bool = False


@dataclass
class ConsumerOutcome:
    """Result of one consumer task: a value or an error."""

    name: str
    value: Any = None
    error: Optional[BaseException] = None
    elapsed_sec: float = 0.0

    @property
    def ok(self) -> bool:
        """True if the consumer returned without raising."""
        return self.error is None


@dataclass
class BroadcastResult:
    """Final record of one broadcast.

    Attributes:
        broadcast_id: Identifier used in logs.
        state: Terminal state (AGGREGATED or ABANDONED).
        outcomes: Consumer outcomes by consumer name.
        artifact: Artifact built by the aggregator, if any.
        delivered: Whether the artifact reached the delivery queue.
        bytes_copied: Bytes read from the source and broadcast.
        source_error: Error raised by the source, if any.
        cancelled: Whether the cancel event interrupted the broadcast.
    """

    broadcast_id: str
    state: BroadcastState
    outcomes: Dict[str, ConsumerOutcome] = field(default_factory=dict)
    artifact: Optional[Artifact] = None
    delivered: bool = False
    bytes_copied: int = 0
    source_error: Optional[BaseException] = None
    cancelled: bool = False


class FanoutCoordinator:
    """Run a fixed set of consumers over copies of one source stream.

    Each coordinator handles a single broadcast; create a new one per source
    stream.

    Args:
        consumers: Consumers, one read-endpoint each.
        aggregator: Builds and delivers the artifact after the join. If None,
            the broadcast ends JOINED-then-ABANDONED unless a caller inspects
            the outcomes itself.
        cancel_event: Process-wide cancellation signal.
        chunk_size: Bytes read from the source per write.
        join_poll_sec: How often the join checks the cancel event.

    Example:
        >>> coordinator = FanoutCoordinator(
        ...     consumers=[
        ...         ConsumerSpec("archive", archive_fn),
        ...         ConsumerSpec("reading", extract_fn, required=True),
        ...     ],
        ...     aggregator=aggregator,
        ... )
        >>> result = coordinator.run(open("gauge.jpg", "rb"))
        >>> result.state
        <BroadcastState.AGGREGATED: 'aggregated'>
    """

    def __init__(
        self,
        consumers: List[ConsumerSpec],
        aggregator: Optional["ResultAggregator"] = None,
        cancel_event: Optional[threading.Event] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        join_poll_sec: float = 0.1,
    ):
        if not consumers:
            raise ValueError("At least one consumer is required")
        names = [c.name for c in consumers]
        if len(set(names)) != len(names):
            raise ValueError(f"Consumer names must be unique: {names}")

        self._consumers = consumers
        self._aggregator = aggregator
        self._cancel_event = cancel_event or threading.Event()
        self._chunk_size = chunk_size
        self._join_poll_sec = join_poll_sec

        self._id = f"b{next(_broadcast_ids)}"
        self._state = BroadcastState.CREATED
        self._outcomes: Dict[str, ConsumerOutcome] = {}
        self._outcomes_lock = threading.Lock()
        self._bytes_copied = 0
        self._source_error: Optional[BaseException] = None
        self._cancelled = False
        self._ran = False

    @property
    def broadcast_id(self) -> str:
        return self._id

    @property
    def state(self) -> BroadcastState:
        return self._state

    def run(self, source: BinaryIO) -> BroadcastResult:
        """Broadcast the source to every consumer and join them.

        Blocks until the copy thread and every consumer thread finished.
        Never raises for source or consumer failures; they are reported in
        the result.

        Args:
            source: Readable binary stream. Not closed by the coordinator.

        Returns:
            BroadcastResult with the terminal state.

        Raises:
            RuntimeError: If this coordinator already ran.
        """
        if self._ran:
            raise RuntimeError(f"Broadcast {self._id} already ran")
        self._ran = True

        writer, readers = create_broadcast(len(self._consumers))

        copy_thread = threading.Thread(
            target=self._copy,
            args=(source, writer),
            name=f"{self._id}-copy",
            daemon=True,
        )
        consumer_threads = [
            threading.Thread(
                target=self._consume,
                args=(spec, reader),
                name=f"{self._id}-{spec.name}",
                daemon=True,
            )
            for spec, reader in zip(self._consumers, readers)
        ]

        self._state = BroadcastState.STREAMING
        logger.debug(f"[{self._id}] Streaming to {len(readers)} consumers")
        start = time.monotonic()

        try:
            copy_thread.start()
            for thread in consumer_threads:
                thread.start()
            self._join(consumer_threads + [copy_thread], writer, readers)
        finally:
            self._close_endpoints(writer, readers)

        self._state = BroadcastState.JOINED
        logger.debug(
            f"[{self._id}] Joined after {time.monotonic() - start:.3f}s, "
            f"{self._bytes_copied} bytes"
        )

        return self._finish()

    def _join(
        self,
        threads: List[threading.Thread],
        writer: BroadcastWriter,
        readers: List[BroadcastReader],
    ) -> None:
        """Wait for every thread, unwinding them if cancellation arrives."""
        for thread in threads:
            while thread.is_alive():
                thread.join(self._join_poll_sec)
                if self._cancel_event.is_set() and not self._cancelled:
                    self._cancel(writer, readers)

    def _cancel(self, writer: BroadcastWriter, readers: List[BroadcastReader]) -> None:
        self._cancelled = True
        logger.warning(f"[{self._id}] Cancelled, closing all endpoints")
        # Readers first: a write blocked on a stalled reader holds the writer lock.
        for reader in readers:
            reader.close()
        writer.abort(BroadcastCancelled(f"broadcast {self._id} cancelled"))

    def _close_endpoints(
        self, writer: BroadcastWriter, readers: List[BroadcastReader]
    ) -> None:
        for reader in readers:
            reader.close()
        try:
            writer.close()
        except BroadcastCloseError as e:
            logger.error(f"[{self._id}] {e}")

    def _copy(self, source: BinaryIO, writer: BroadcastWriter) -> None:
        """Drain the source into the writer, then close it."""
        reported: set = set()

        while True:
            try:
                chunk = source.read(self._chunk_size)
            except Exception as e:
                self._source_error = e
                logger.error(
                    f"[{self._id}] Source error after {self._bytes_copied} bytes: {e}"
                )
                writer.abort(e)
                return

            if not chunk:
                break

            try:
                writer.write(chunk)
            except BroadcastWriteError as e:
                for index, error in e.errors:
                    if index not in reported:
                        reported.add(index)
                        name = self._consumers[index].name
                        logger.warning(f"[{self._id}] Pipe to '{name}' failed: {error}")
                if writer.live_count == 0:
                    logger.debug(f"[{self._id}] No live readers, stopping copy")
                    return
            except ClosedPipeError:
                # Writer closed by cancellation.
                return

            self._bytes_copied += len(chunk)

        try:
            writer.close()
        except BroadcastCloseError as e:
            logger.error(f"[{self._id}] {e}")

    def _consume(self, spec: ConsumerSpec, reader: BroadcastReader) -> None:
        start = time.monotonic()
        try:
            value = spec.func(reader)
            outcome = ConsumerOutcome(spec.name, value=value)
        except Exception as e:
            logger.warning(f"[{self._id}] Consumer '{spec.name}' failed: {e}")
            outcome = ConsumerOutcome(spec.name, error=e)
        finally:
            reader.close()

        outcome.elapsed_sec = time.monotonic() - start
        with self._outcomes_lock:
            self._outcomes[spec.name] = outcome

    def _finish(self) -> BroadcastResult:
        result = BroadcastResult(
            broadcast_id=self._id,
            state=BroadcastState.ABANDONED,
            outcomes=dict(self._outcomes),
            bytes_copied=self._bytes_copied,
            source_error=self._source_error,
            cancelled=self._cancelled,
        )

        for spec in self._consumers:
            outcome = result.outcomes.get(spec.name)
            if not spec.required:
                continue
            if outcome is None or not outcome.ok:
                logger.warning(
                    f"[{self._id}] Abandoned: required consumer '{spec.name}' failed"
                )
                return self._terminal(result)
            if outcome.value is None:
                logger.warning(
                    f"[{self._id}] Abandoned: required consumer '{spec.name}' "
                    "returned no result"
                )
                return self._terminal(result)

        if self._cancelled:
            logger.warning(f"[{self._id}] Abandoned: cancelled")
            return self._terminal(result)

        if self._aggregator is None:
            return self._terminal(result)

        artifact = self._aggregator.aggregate(result.outcomes, broadcast_id=self._id)
        if artifact is None:
            return self._terminal(result)

        result.delivered = self._aggregator.deliver(artifact)
        result.artifact = artifact
        result.state = BroadcastState.AGGREGATED
        return self._terminal(result)

    def _terminal(self, result: BroadcastResult) -> BroadcastResult:
        self._state = result.state
        logger.info(
            f"[{self._id}] Broadcast {result.state.value}: "
            + ", ".join(
                f"{name}={'ok' if o.ok else 'error'} ({o.elapsed_sec:.2f}s)"
                for name, o in result.outcomes.items()
            )
        )
        return result
