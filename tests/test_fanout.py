"""Tests for FanoutCoordinator and ResultAggregator."""

import io
import os
import threading
import time

import pytest

from mqvision.core.broadcast import StreamAbortedError
from mqvision.core.delivery import DeliveryQueue, QueueClosedError
from mqvision.core.reading import Artifact, Reading
from mqvision.streaming.aggregator import ResultAggregator
from mqvision.streaming.fanout import (
    BroadcastState,
    ConsumerOutcome,
    ConsumerSpec,
    FanoutCoordinator,
)


class RecordingConsumer:
    """Consumer that drains its stream and returns a fixed value."""

    def __init__(self, value=None, error: Exception = None, chunk: int = 100):
        self.value = value
        self.error = error
        self.chunk = chunk
        self.received = b""

    def __call__(self, stream):
        parts = []
        while True:
            data = stream.read(self.chunk)
            if not data:
                break
            parts.append(data)
        self.received = b"".join(parts)
        if self.error is not None:
            raise self.error
        return self.value


class FailingSource:
    """Source that yields some bytes, then raises."""

    def __init__(self, data: bytes):
        self._data = io.BytesIO(data)

    def read(self, size: int = -1) -> bytes:
        chunk = self._data.read(size)
        if not chunk:
            raise IOError("camera disconnected")
        return chunk


class EndlessSource:
    """Source that never ends."""

    def read(self, size: int = -1) -> bytes:
        return b"z" * min(size, 64)


def _coordinator(archive, reading, queue, **kwargs):
    aggregator = ResultAggregator(queue, cancel_event=kwargs.get("cancel_event"))
    return FanoutCoordinator(
        consumers=[
            ConsumerSpec("archive", archive),
            ConsumerSpec("reading", reading, required=True),
        ],
        aggregator=aggregator,
        **kwargs,
    )


class TestFanoutCoordinator:
    """Tests for one broadcast lifecycle."""

    def test_both_consumers_succeed(self):
        """Test one artifact combining the reading and the archive URL."""
        payload = os.urandom(1024)
        archive = RecordingConsumer("https://store/abc")
        reading = RecordingConsumer(Reading(read="123.4", date="2024-01-02"))
        queue = DeliveryQueue(maxsize=10)

        coordinator = _coordinator(archive, reading, queue, chunk_size=100)
        result = coordinator.run(io.BytesIO(payload))

        assert result.state is BroadcastState.AGGREGATED
        assert coordinator.state is BroadcastState.AGGREGATED
        assert result.delivered
        assert result.bytes_copied == 1024
        assert archive.received == payload
        assert reading.received == payload

        assert queue.qsize() == 1
        artifact = queue.get(timeout=1.0)
        assert artifact == Artifact(
            reading=Reading(read="123.4", date="2024-01-02"),
            src_image_url="https://store/abc",
        )
        assert artifact.broadcast_id == coordinator.broadcast_id

    def test_extraction_failure_abandons(self):
        """Test a failed required consumer yields zero artifacts."""
        archive = RecordingConsumer("https://store/abc")
        reading = RecordingConsumer(error=RuntimeError("model unavailable"))
        queue = DeliveryQueue()

        result = _coordinator(archive, reading, queue).run(io.BytesIO(b"image"))

        assert result.state is BroadcastState.ABANDONED
        assert result.artifact is None
        assert not result.outcomes["reading"].ok
        assert result.outcomes["archive"].ok
        assert queue.qsize() == 0

    def test_extraction_without_result_abandons(self):
        archive = RecordingConsumer("https://store/abc")
        reading = RecordingConsumer(None)
        queue = DeliveryQueue()

        result = _coordinator(archive, reading, queue).run(io.BytesIO(b"image"))

        assert result.state is BroadcastState.ABANDONED
        assert queue.qsize() == 0

    def test_archive_failure_gives_empty_url(self):
        """Test the archive is best effort."""
        archive = RecordingConsumer(error=IOError("concierge down"))
        reading = RecordingConsumer(Reading(read="123.4"))
        queue = DeliveryQueue()

        result = _coordinator(archive, reading, queue).run(io.BytesIO(b"image"))

        assert result.state is BroadcastState.AGGREGATED
        artifact = queue.get(timeout=1.0)
        assert artifact.reading.read == "123.4"
        assert artifact.src_image_url == ""

    def test_consumer_ignoring_stream_does_not_block(self):
        """Test a consumer returning without reading cannot stall the others."""
        payload = os.urandom(200_000)
        reading = RecordingConsumer(Reading(read="1.0"), chunk=4096)
        queue = DeliveryQueue()

        result = _coordinator(lambda stream: "https://store/x", reading, queue).run(
            io.BytesIO(payload)
        )

        assert result.state is BroadcastState.AGGREGATED
        assert reading.received == payload

    def test_source_error_abandons_within_bound(self):
        """Test a source failure reaches both consumers and the join ends."""
        archive = RecordingConsumer("https://store/abc", chunk=3)
        reading = RecordingConsumer(Reading(read="123.4"), chunk=3)
        queue = DeliveryQueue()

        start = time.monotonic()
        result = _coordinator(archive, reading, queue, chunk_size=10).run(
            FailingSource(b"0123456789")
        )
        elapsed = time.monotonic() - start

        assert elapsed < 5.0
        assert result.state is BroadcastState.ABANDONED
        assert isinstance(result.source_error, IOError)
        assert result.bytes_copied == 10
        assert isinstance(result.outcomes["reading"].error, StreamAbortedError)
        assert isinstance(result.outcomes["archive"].error, StreamAbortedError)
        assert queue.qsize() == 0

    def test_cancellation_unwinds_broadcast(self):
        """Test setting the cancel event ends a broadcast on an endless source."""
        cancel = threading.Event()
        archive = RecordingConsumer("https://store/abc")
        reading = RecordingConsumer(Reading(read="123.4"))
        queue = DeliveryQueue()

        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            start = time.monotonic()
            result = _coordinator(
                archive, reading, queue, cancel_event=cancel, join_poll_sec=0.05
            ).run(EndlessSource())
            elapsed = time.monotonic() - start
        finally:
            timer.cancel()

        assert elapsed < 5.0
        assert result.cancelled
        assert result.state is BroadcastState.ABANDONED
        assert queue.qsize() == 0

    def test_closed_queue_raises(self):
        """Test delivering into a closed queue is a loud lifecycle error."""
        queue = DeliveryQueue()
        queue.close()
        coordinator = _coordinator(
            RecordingConsumer("https://store/abc"), RecordingConsumer(Reading(read="1")), queue
        )

        with pytest.raises(QueueClosedError):
            coordinator.run(io.BytesIO(b"abc"))
        assert coordinator.state is not BroadcastState.AGGREGATED
        assert queue.discarded == 0

    def test_run_once(self):
        coordinator = _coordinator(
            RecordingConsumer("u"), RecordingConsumer(Reading(read="1")), DeliveryQueue()
        )
        coordinator.run(io.BytesIO(b"a"))
        with pytest.raises(RuntimeError):
            coordinator.run(io.BytesIO(b"a"))

    def test_unique_ids(self):
        a = _coordinator(RecordingConsumer(), RecordingConsumer(), DeliveryQueue())
        b = _coordinator(RecordingConsumer(), RecordingConsumer(), DeliveryQueue())
        assert a.broadcast_id != b.broadcast_id

    def test_invalid_consumers(self):
        with pytest.raises(ValueError):
            FanoutCoordinator(consumers=[])
        with pytest.raises(ValueError):
            FanoutCoordinator(
                consumers=[ConsumerSpec("a", len), ConsumerSpec("a", len)]
            )


class TestResultAggregator:
    """Tests for ResultAggregator."""

    def test_aggregate(self):
        aggregator = ResultAggregator(DeliveryQueue())
        artifact = aggregator.aggregate(
            {
                "reading": ConsumerOutcome("reading", value=Reading(read="42.0")),
                "archive": ConsumerOutcome("archive", value="https://store/k"),
            },
            broadcast_id="b1",
        )
        assert artifact.src_image_url == "https://store/k"
        assert artifact.broadcast_id == "b1"

    def test_empty_reading(self):
        """Test an empty read value produces no artifact."""
        aggregator = ResultAggregator(DeliveryQueue())
        artifact = aggregator.aggregate(
            {"reading": ConsumerOutcome("reading", value=Reading(read="  "))}
        )
        assert artifact is None

    def test_missing_reading(self):
        aggregator = ResultAggregator(DeliveryQueue())
        assert aggregator.aggregate({}) is None
        assert aggregator.aggregate(
            {"reading": ConsumerOutcome("reading", value="not a reading")}
        ) is None

    def test_failed_archive(self):
        aggregator = ResultAggregator(DeliveryQueue())
        artifact = aggregator.aggregate(
            {
                "reading": ConsumerOutcome("reading", value=Reading(read="42.0")),
                "archive": ConsumerOutcome("archive", error=IOError("down")),
            }
        )
        assert artifact.src_image_url == ""

    def test_deliver_during_shutdown(self):
        """Test a blocked delivery is abandoned when cancellation arrives."""
        queue = DeliveryQueue(maxsize=1)
        cancel = threading.Event()
        aggregator = ResultAggregator(queue, cancel_event=cancel)

        assert aggregator.deliver(Artifact(reading=Reading(read="1")))

        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            assert not aggregator.deliver(Artifact(reading=Reading(read="2")))
        finally:
            timer.cancel()
        assert queue.discarded == 1
