from mqvision.sources.base import BaseSource
from mqvision.sources.file import FileSource
from mqvision.sources.zmq import ZMQImagePublisher, ZMQImageSource

__all__ = [
    "BaseSource",
    "FileSource",
    "ZMQImagePublisher",
    "ZMQImageSource",
]
