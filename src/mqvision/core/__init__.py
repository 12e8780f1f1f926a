from mqvision.core.broadcast import (
    BroadcastCloseError,
    BroadcastError,
    BroadcastReader,
    BroadcastWriteError,
    BroadcastWriter,
    ClosedPipeError,
    ShortWriteError,
    StreamAbortedError,
    create_broadcast,
)
from mqvision.core.delivery import DeliveryQueue, QueueClosedError
from mqvision.core.reading import Artifact, Reading
from mqvision.core.store import SensorStore, SensorValue

__all__ = [
    "BroadcastCloseError",
    "BroadcastError",
    "BroadcastReader",
    "BroadcastWriteError",
    "BroadcastWriter",
    "ClosedPipeError",
    "ShortWriteError",
    "StreamAbortedError",
    "create_broadcast",
    "DeliveryQueue",
    "QueueClosedError",
    "Artifact",
    "Reading",
    "SensorStore",
    "SensorValue",
]
