"""Streaming module for broadcasting one image stream to several consumers.

This module provides:
- FanoutCoordinator: Run consumers concurrently over copies of one stream
- ResultAggregator: Join consumer outcomes into an artifact and deliver it
"""

from mqvision.streaming.fanout import (
    BroadcastCancelled,
    BroadcastResult,
    BroadcastState,
    ConsumerOutcome,
    ConsumerSpec,
    FanoutCoordinator,
)
from mqvision.streaming.aggregator import ResultAggregator

__all__ = [
    "BroadcastCancelled",
    "BroadcastResult",
    "BroadcastState",
    "ConsumerOutcome",
    "ConsumerSpec",
    "FanoutCoordinator",
    "ResultAggregator",
]
