"""Gauge reading and aggregated artifact data classes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class Reading:
    """Structured reading extracted from a gauge image.

    Attributes:
        read: Meter value as printed on the gauge. Uncertain digits are "?".
        date: Date shown on the gauge (or in the image), as reported.
        read_at: When the extraction finished.
        it_takes: How long the extraction took, e.g. "2.314s".
    """

    read: str
    date: str = ""
    read_at: Optional[datetime] = None
    it_takes: str = ""

    @property
    def is_empty(self) -> bool:
        """True if no meter value was extracted."""
        return not self.read.strip()

    @property
    def is_ambiguous(self) -> bool:
        """True if the value contains uncertain digits."""
        return "?" in self.read

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"read": self.read, "date": self.date}
        if self.read_at is not None:
            data["read_at"] = self.read_at.isoformat()
        if self.it_takes:
            data["it_takes"] = self.it_takes
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reading":
        read_at = data.get("read_at")
        return cls(
            read=str(data.get("read", "")),
            date=str(data.get("date", "")),
            read_at=datetime.fromisoformat(read_at) if read_at else None,
            it_takes=str(data.get("it_takes", "")),
        )


@dataclass
class Artifact:
    """Aggregated result of one successful broadcast.

    Attributes:
        reading: Reading from the extraction consumer.
        src_image_url: Where the archived image is stored. Empty if archival
            failed.
        broadcast_id: Identifier of the broadcast that produced it.
    """

    reading: Reading
    src_image_url: str = ""
    broadcast_id: str = field(default="", compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Flat JSON-ready representation."""
        data = self.reading.to_dict()
        data["src_image_url"] = self.src_image_url
        return data
