"""Result aggregation for joined broadcasts."""

import logging
import threading
from typing import Dict, Optional

from mqvision.core.delivery import DeliveryQueue
from mqvision.core.reading import Artifact, Reading
from mqvision.streaming.fanout import ConsumerOutcome

logger = logging.getLogger(__name__)


class ResultAggregator:
    """Combine consumer outcomes into an Artifact and enqueue it.

    The reading outcome is required; the archive outcome is best effort and
    becomes an empty ``src_image_url`` when it failed.

    Args:
        queue: Bounded delivery queue the artifacts go to.
        reading_name: Consumer name of the extraction consumer.
        archive_name: Consumer name of the archival consumer.
        cancel_event: Abandons a blocked enqueue when set.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        reading_name: str = "reading",
        archive_name: str = "archive",
        cancel_event: Optional[threading.Event] = None,
    ):
        self._queue = queue
        self._reading_name = reading_name
        self._archive_name = archive_name
        self._cancel_event = cancel_event

    def aggregate(
        self,
        outcomes: Dict[str, ConsumerOutcome],
        broadcast_id: str = "",
    ) -> Optional[Artifact]:
        """Build an artifact from the joined outcomes.

        Returns:
            Artifact, or None if there is no usable reading.
        """
        reading_outcome = outcomes.get(self._reading_name)
        if reading_outcome is None or not reading_outcome.ok:
            logger.warning(f"[{broadcast_id}] No reading outcome, nothing to aggregate")
            return None

        reading = reading_outcome.value
        if not isinstance(reading, Reading) or reading.is_empty:
            logger.warning(f"[{broadcast_id}] Empty reading result: {reading!r}")
            return None

        src_image_url = ""
        archive_outcome = outcomes.get(self._archive_name)
        if archive_outcome is not None and archive_outcome.ok and archive_outcome.value:
            src_image_url = str(archive_outcome.value)
        else:
            logger.info(f"[{broadcast_id}] Archive unavailable, artifact has no image URL")

        return Artifact(
            reading=reading,
            src_image_url=src_image_url,
            broadcast_id=broadcast_id,
        )

    def deliver(self, artifact: Artifact) -> bool:
        """Enqueue the artifact, blocking while the queue is full.

        Returns:
            True if enqueued, False if abandoned during shutdown.

        Raises:
            QueueClosedError: If the queue was already closed.
        """
        delivered = self._queue.put(artifact, cancel_event=self._cancel_event)
        if delivered:
            logger.info(
                f"[{artifact.broadcast_id}] Delivered reading {artifact.reading.read!r}"
            )
        else:
            logger.warning(
                f"[{artifact.broadcast_id}] Reading {artifact.reading.read!r} "
                "discarded during shutdown"
            )
        return delivered
