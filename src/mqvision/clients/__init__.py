"""Clients for the consumers of a broadcast.

- ConciergeClient: archives the raw image and returns its URL
- GeminiGaugeReader: extracts the meter reading from the image
"""

from mqvision.clients.concierge import ArchiveError, ConciergeClient
from mqvision.clients.gemini import ExtractionError, GeminiGaugeReader

__all__ = [
    "ArchiveError",
    "ConciergeClient",
    "ExtractionError",
    "GeminiGaugeReader",
]
