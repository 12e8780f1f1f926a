"""Latest-value sink: turns delivered artifacts into the current sensor value."""

import logging
import threading
from typing import Callable, Optional

from mqvision.core.delivery import DeliveryQueue
from mqvision.core.reading import Artifact
from mqvision.core.store import SensorStore

logger = logging.getLogger(__name__)

# resolver(previous_value, ambiguous_read) -> completed read
AmbiguityResolver = Callable[[float, str], str]


class LatestValueSink:
    """Consume artifacts from the delivery queue and update the store.

    Readings with uncertain ("?") digits are completed by ``resolver`` using
    the previous stored value, when both are available.

    Args:
        queue: Queue to consume.
        store: Store holding the latest value.
        resolver: Optional ambiguity resolver (e.g.,
            GeminiGaugeReader.parse_ambiguous_digits).
        poll_sec: Queue poll interval while waiting.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        store: SensorStore,
        resolver: Optional[AmbiguityResolver] = None,
        poll_sec: float = 0.2,
    ):
        self._queue = queue
        self._store = store
        self._resolver = resolver
        self._poll_sec = poll_sec
        self._thread: Optional[threading.Thread] = None

        # Stats
        self._updated = 0
        self._skipped = 0

    def start(self) -> None:
        """Start consuming in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="sink", daemon=True)
        self._thread.start()
        logger.info("Latest-value sink started")

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the sink to drain a closed queue.

        Returns:
            True if the sink thread finished.
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        while True:
            artifact = self._queue.get(timeout=self._poll_sec)
            if artifact is None:
                if self._queue.closed and self._queue.qsize() == 0:
                    break
                continue
            try:
                self.handle(artifact)
            except Exception as e:
                self._skipped += 1
                logger.error(f"Failed to handle artifact {artifact.broadcast_id}: {e}")

        logger.info(
            f"Latest-value sink stopped: {self._updated} updates, {self._skipped} skipped"
        )

    def handle(self, artifact: Artifact) -> bool:
        """Parse the artifact's reading and store it.

        Returns:
            True if the store was updated.
        """
        read = artifact.reading.read
        value = _parse_float(read)

        if value is None and artifact.reading.is_ambiguous:
            value = self._resolve(read)

        if value is None:
            self._skipped += 1
            logger.warning(f"Error parsing read value: {read!r}")
            return False

        self._store.set(value, artifact)
        self._updated += 1
        logger.info(f"Updated sensor value: {read} ({value:.3f})")
        return True

    def _resolve(self, read: str) -> Optional[float]:
        previous = self._store.get()
        if self._resolver is None or previous is None:
            return None

        try:
            resolved = self._resolver(previous.value, read)
        except (ValueError, RuntimeError) as e:
            logger.warning(f"Could not resolve ambiguous reading {read!r}: {e}")
            return None

        logger.info(f"Resolved ambiguous reading {read!r} -> {resolved!r}")
        return _parse_float(resolved)

    @property
    def updated_count(self) -> int:
        return self._updated

    @property
    def skipped_count(self) -> int:
        return self._skipped


def _parse_float(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None
