"""ZeroMQ image bus.

Images travel as two-part PUB/SUB messages: [topic, image bytes]. Every
received message becomes one source stream, i.e. one broadcast.

Example:
    >>> # Camera side
    >>> pub = ZMQImagePublisher("tcp://*:5560")
    >>> pub.open()
    >>> pub.publish(jpeg_bytes)
    >>> pub.close()

    >>> # Service side
    >>> with ZMQImageSource("tcp://localhost:5560") as source:
    ...     stream = source.read()
"""

import io
import logging
import time
from typing import BinaryIO, Optional

import zmq

from mqvision.sources.base import BaseSource

logger = logging.getLogger(__name__)


def _topic_bytes(topic) -> bytes:
    return topic.encode("utf-8") if isinstance(topic, str) else topic


class ZMQImageSource(BaseSource):
    """Image source subscribing to a ZMQ PUB socket.

    Args:
        address: ZMQ connect address (e.g., "tcp://localhost:5560").
        topic: Topic prefix to subscribe to. Default: "gauge".
        hwm: High water mark (max queued images). Default: 10.
        timeout_ms: Receive timeout in milliseconds. Default: 500.
    """

    def __init__(
        self,
        address: str,
        topic="gauge",
        hwm: int = 10,
        timeout_ms: int = 500,
    ):
        self._address = address
        self._topic = _topic_bytes(topic)
        self._hwm = hwm
        self._timeout_ms = timeout_ms
        self._socket: Optional[zmq.Socket] = None
        self._received = 0

    def open(self) -> None:
        """Connect to the publisher."""
        if self._socket is not None:
            return

        context = zmq.Context.instance()
        self._socket = context.socket(zmq.SUB)
        self._socket.setsockopt(zmq.RCVHWM, self._hwm)
        self._socket.setsockopt(zmq.LINGER, 0)
        self._socket.setsockopt(zmq.RCVTIMEO, self._timeout_ms)
        self._socket.setsockopt(zmq.SUBSCRIBE, self._topic)
        self._socket.connect(self._address)
        logger.info(f"ZMQ image source connected to {self._address}")

    def read(self) -> Optional[BinaryIO]:
        """Receive the next image.

        Returns:
            BytesIO with the image, or None on timeout or malformed message.
        """
        if self._socket is None:
            return None

        try:
            parts = self._socket.recv_multipart()
        except zmq.Again:
            return None
        except zmq.ZMQError as e:
            logger.error(f"ZMQ receive error: {e}")
            return None

        if len(parts) < 2:
            logger.warning(f"Invalid message parts: {len(parts)}")
            return None

        payload = b"".join(parts[1:])
        if not payload:
            logger.warning("Received empty image message")
            return None

        self._received += 1
        logger.debug(f"Received image #{self._received} ({len(payload)} bytes)")
        return io.BytesIO(payload)

    def close(self) -> None:
        """Close the subscriber socket."""
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        logger.debug("ZMQ image source closed")

    @property
    def is_live(self) -> bool:
        return True

    @property
    def received_count(self) -> int:
        """Number of images received."""
        return self._received


class ZMQImagePublisher:
    """Publish images on a ZMQ PUB socket.

    Args:
        address: ZMQ bind address (e.g., "tcp://*:5560").
        topic: Topic prefix. Default: "gauge".
        hwm: High water mark. Default: 10.
    """

    def __init__(self, address: str, topic="gauge", hwm: int = 10):
        self._address = address
        self._topic = _topic_bytes(topic)
        self._hwm = hwm
        self._socket: Optional[zmq.Socket] = None

    def open(self) -> None:
        """Bind the publisher socket."""
        if self._socket is not None:
            return

        context = zmq.Context.instance()
        self._socket = context.socket(zmq.PUB)
        self._socket.setsockopt(zmq.SNDHWM, self._hwm)
        self._socket.setsockopt(zmq.LINGER, 1000)
        self._socket.bind(self._address)

        # Small delay to allow subscribers to connect
        time.sleep(0.1)
        logger.info(f"ZMQ image publisher bound to {self._address}")

    def publish(self, image: bytes) -> bool:
        """Publish one image.

        Returns:
            True if queued for sending, False on error.
        """
        if self._socket is None:
            return False

        try:
            self._socket.send_multipart([self._topic, image], flags=zmq.NOBLOCK)
            return True
        except zmq.Again:
            logger.warning("Image dropped: publisher queue full")
            return False
        except zmq.ZMQError as e:
            logger.error(f"ZMQ send error: {e}")
            return False

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def __enter__(self) -> "ZMQImagePublisher":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
