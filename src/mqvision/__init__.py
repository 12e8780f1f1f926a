from mqvision.core.broadcast import (
    BroadcastReader,
    BroadcastWriter,
    create_broadcast,
)
from mqvision.core.delivery import DeliveryQueue
from mqvision.core.reading import Artifact, Reading
from mqvision.core.store import SensorStore, SensorValue
from mqvision.sources.base import BaseSource
from mqvision.sources.file import FileSource

# Broadcast lifecycle
from mqvision.streaming import (
    BroadcastResult,
    BroadcastState,
    ConsumerSpec,
    FanoutCoordinator,
    ResultAggregator,
)
from mqvision.process import LatestValueSink, PipelineClosedError, ReadingPipeline
from mqvision.config import Config, ConfigError, load_config

__all__ = [
    # Broadcast
    "BroadcastReader",
    "BroadcastWriter",
    "create_broadcast",
    # Data
    "Artifact",
    "Reading",
    "SensorStore",
    "SensorValue",
    "DeliveryQueue",
    # Sources
    "BaseSource",
    "FileSource",
    # Streaming
    "BroadcastResult",
    "BroadcastState",
    "ConsumerSpec",
    "FanoutCoordinator",
    "ResultAggregator",
    # Process
    "LatestValueSink",
    "PipelineClosedError",
    "ReadingPipeline",
    # Config
    "Config",
    "ConfigError",
    "load_config",
]
