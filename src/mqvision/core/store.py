"""Latest sensor value store."""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from mqvision.core.reading import Artifact


@dataclass(frozen=True)
class SensorValue:
    """Most recent parsed meter value.

    Attributes:
        value: Meter value as a number.
        artifact: Artifact the value was parsed from.
        updated_at: When the value was stored (UTC).
    """

    value: float
    artifact: Artifact
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "updated_at": self.updated_at.isoformat(),
            "luggage": self.artifact.to_dict(),
        }


class SensorStore:
    """Thread-safe holder of the latest sensor value."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: Optional[SensorValue] = None
        self._updates = 0

    def set(self, value: float, artifact: Artifact) -> SensorValue:
        entry = SensorValue(
            value=value,
            artifact=artifact,
            updated_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._latest = entry
            self._updates += 1
        return entry

    def get(self) -> Optional[SensorValue]:
        with self._lock:
            return self._latest

    @property
    def update_count(self) -> int:
        return self._updates
