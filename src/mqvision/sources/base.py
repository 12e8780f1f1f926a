"""Base source abstract class."""

from abc import ABC, abstractmethod
from typing import BinaryIO, Optional


class BaseSource(ABC):
    """Abstract base class for image stream sources.

    A source hands out one readable binary stream per image. The caller
    owns each returned stream and closes it when done.
    """

    @abstractmethod
    def open(self) -> None:
        """Open the source.

        Raises:
            IOError: If the source cannot be opened.
        """
        ...

    @abstractmethod
    def read(self) -> Optional[BinaryIO]:
        """Return the stream of the next image.

        Returns:
            Readable binary stream, or None if no image is available (end of
            source, or a receive timeout for live sources).
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the source and release resources."""
        ...

    @property
    @abstractmethod
    def is_live(self) -> bool:
        """Whether None from read() means "nothing yet" rather than "exhausted"."""
        ...

    def __enter__(self) -> "BaseSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
