"""Tests for DeliveryQueue."""

import threading
import time

import pytest

from mqvision.core.delivery import DeliveryQueue, QueueClosedError


class TestDeliveryQueue:
    """Tests for the bounded delivery queue."""

    def test_fifo(self):
        queue = DeliveryQueue(maxsize=3)
        for i in range(3):
            assert queue.put(i)
        assert [queue.get(timeout=0.1) for _ in range(3)] == [0, 1, 2]
        assert queue.delivered == 3

    def test_invalid_maxsize(self):
        with pytest.raises(ValueError):
            DeliveryQueue(maxsize=0)

    def test_get_timeout(self):
        """Test get() returns None when nothing arrives."""
        queue = DeliveryQueue()
        start = time.monotonic()
        assert queue.get(timeout=0.1) is None
        assert time.monotonic() - start >= 0.09

    def test_put_blocks_until_room(self):
        """Test back-pressure: a full queue blocks put() until a get()."""
        queue = DeliveryQueue(maxsize=1)
        queue.put("first")

        done = threading.Event()

        def producer():
            queue.put("second")
            done.set()

        t = threading.Thread(target=producer, daemon=True)
        t.start()

        assert not done.wait(timeout=0.2)
        assert queue.get(timeout=1.0) == "first"
        assert done.wait(timeout=2.0)
        assert queue.get(timeout=1.0) == "second"

    def test_put_timeout_discards(self):
        queue = DeliveryQueue(maxsize=1)
        queue.put("first")
        assert not queue.put("second", timeout=0.1)
        assert queue.discarded == 1
        assert queue.qsize() == 1

    def test_close_wakes_blocked_put(self):
        """Test close() abandons a put() blocked on a full queue."""
        queue = DeliveryQueue(maxsize=1)
        queue.put("first")
        results = []

        t = threading.Thread(target=lambda: results.append(queue.put("second")), daemon=True)
        t.start()
        time.sleep(0.1)
        queue.close()
        t.join(timeout=2.0)

        assert results == [False]
        assert queue.discarded == 1

    def test_put_after_close(self):
        queue = DeliveryQueue()
        queue.close()
        with pytest.raises(QueueClosedError):
            queue.put("late")

    def test_drain_after_close(self):
        """Test items enqueued before close() remain available."""
        queue = DeliveryQueue()
        queue.put("a")
        queue.close()
        queue.close()
        assert queue.closed
        assert queue.get(timeout=0.1) == "a"
        assert queue.get(timeout=0.1) is None

    def test_get_wakes_on_close(self):
        queue = DeliveryQueue()
        results = []
        t = threading.Thread(target=lambda: results.append(queue.get()), daemon=True)
        t.start()
        time.sleep(0.1)
        queue.close()
        t.join(timeout=2.0)
        assert not t.is_alive()
        assert results == [None]
