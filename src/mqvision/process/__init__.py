"""Process module wiring broadcasts into a running service.

This module provides:
- ReadingPipeline: Composition root that runs one broadcast per image
- LatestValueSink: Consumes delivered artifacts into the sensor store
"""

from mqvision.process.pipeline import PipelineClosedError, ReadingPipeline
from mqvision.process.sink import LatestValueSink

__all__ = [
    "PipelineClosedError",
    "ReadingPipeline",
    "LatestValueSink",
]
