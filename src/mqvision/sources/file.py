"""Single image file source."""

from pathlib import Path
from typing import BinaryIO, Optional, Union

from mqvision.sources.base import BaseSource


class FileSource(BaseSource):
    """Source yielding one local image file, once.

    Args:
        path: Path to the image file.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._opened = False
        self._consumed = False

    def open(self) -> None:
        """Check the image file exists."""
        if not self._path.is_file():
            raise IOError(f"Image file not found: {self._path}")
        self._opened = True
        self._consumed = False

    def read(self) -> Optional[BinaryIO]:
        """Open the image file for reading, the first time only."""
        if not self._opened:
            raise RuntimeError("Source not opened. Call open() first.")
        if self._consumed:
            return None
        self._consumed = True
        return self._path.open("rb")

    def close(self) -> None:
        self._opened = False

    @property
    def is_live(self) -> bool:
        """File sources are exhausted after one image."""
        return False

    @property
    def path(self) -> Path:
        """Path to the image file."""
        return self._path
