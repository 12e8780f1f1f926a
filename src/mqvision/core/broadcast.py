"""Single-writer, multi-reader byte stream broadcasting.

A broadcast set turns one write-endpoint into N independently consumable
read-endpoints. Every reader is backed by its own unbuffered pipe, so a chunk
handed to the writer is released only after every live reader consumed it.

Architecture:
    source ──write()──> BroadcastWriter
                          │
                          ├─→ _Pipe 0 ──> BroadcastReader 0 (archive)
                          └─→ _Pipe 1 ──> BroadcastReader 1 (reading)

Example:
    >>> writer, readers = create_broadcast(2)
    >>> # producer thread
    >>> with writer:
    ...     for chunk in iter(lambda: src.read(8192), b""):
    ...         writer.write(chunk)
    >>> # consumer threads
    >>> data = readers[0].read()
"""

import io
import logging
import threading
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class BroadcastError(IOError):
    """Base class for broadcast stream errors."""


class ClosedPipeError(BroadcastError):
    """Read or write on a closed pipe.

    Attributes:
        written: Bytes accepted before the pipe was found closed.
    """

    def __init__(self, message: str = "read/write on closed pipe", written: int = 0):
        super().__init__(message)
        self.written = written


class ShortWriteError(BroadcastError):
    """A pipe accepted fewer bytes than requested."""


class StreamAbortedError(BroadcastError):
    """The producer aborted the stream before reaching its end."""


class BroadcastWriteError(BroadcastError):
    """One or more pipes failed during a broadcast write.

    The chunk still counts as accepted: ``written`` is the full chunk length.

    Attributes:
        written: Length of the chunk handed to write().
        errors: (pipe_index, exception) pairs in the order they occurred.
    """

    def __init__(self, written: int, errors: List[Tuple[int, BaseException]]):
        index, first = errors[0]
        super().__init__(
            f"broadcast write failed on {len(errors)} pipe(s), "
            f"first: pipe {index}: {first}"
        )
        self.written = written
        self.errors = errors

    @property
    def first_error(self) -> BaseException:
        """First per-pipe failure encountered."""
        return self.errors[0][1]

    @property
    def failed_pipes(self) -> List[int]:
        """Indices of the pipes that failed."""
        return [index for index, _ in self.errors]


class BroadcastCloseError(BroadcastError):
    """One or more pipes failed to close."""

    def __init__(self, errors: List[Tuple[int, BaseException]]):
        index, first = errors[0]
        super().__init__(
            f"errors closing {len(errors)} pipe(s), first: pipe {index}: {first}"
        )
        self.errors = errors


class _Pipe:
    """Unbuffered in-memory pipe between one writer and one reader.

    write() offers a chunk and blocks until the reader has taken all of it,
    or until the reader closes its end.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._chunk: Optional[memoryview] = None
        self._pos = 0
        self._write_closed = False
        self._abort_error: Optional[BaseException] = None
        self._read_closed = False

    def write(self, data: bytes) -> int:
        with self._cond:
            if self._read_closed or self._write_closed:
                raise ClosedPipeError()
            if not data:
                return 0

            self._chunk = memoryview(data)
            self._pos = 0
            self._cond.notify_all()
            try:
                while self._pos < len(self._chunk):
                    if self._read_closed:
                        raise ClosedPipeError(written=self._pos)
                    self._cond.wait()
                return self._pos
            finally:
                self._chunk = None
                self._pos = 0

    def close_write(self, error: Optional[BaseException] = None) -> None:
        with self._cond:
            if self._write_closed:
                return
            self._write_closed = True
            self._abort_error = error
            self._cond.notify_all()

    def readinto(self, buffer) -> int:
        with self._cond:
            while True:
                if self._read_closed:
                    raise ClosedPipeError()
                if self._chunk is not None and self._pos < len(self._chunk):
                    n = min(len(buffer), len(self._chunk) - self._pos)
                    buffer[:n] = self._chunk[self._pos:self._pos + n]
                    self._pos += n
                    self._cond.notify_all()
                    return n
                if self._write_closed:
                    if self._abort_error is not None:
                        raise StreamAbortedError(
                            f"stream aborted: {self._abort_error}"
                        ) from self._abort_error
                    return 0
                self._cond.wait()

    def close_read(self) -> None:
        with self._cond:
            self._read_closed = True
            self._cond.notify_all()

    @property
    def read_closed(self) -> bool:
        return self._read_closed


class BroadcastReader(io.RawIOBase):
    """Read-endpoint of a broadcast set.

    Behaves like an unseekable binary file. Closing it affects only its own
    pipe; the writer's next forward to this pipe fails fast.
    """

    def __init__(self, pipe: _Pipe, index: int):
        super().__init__()
        self._pipe = pipe
        self._index = index

    @property
    def index(self) -> int:
        """Position of this reader in its broadcast set."""
        return self._index

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ClosedPipeError()
        return self._pipe.readinto(memoryview(buffer).cast("B"))

    def close(self) -> None:
        if not self.closed:
            self._pipe.close_read()
        super().close()


class BroadcastWriter:
    """Write-endpoint of a broadcast set.

    write(), close() and abort() are mutually exclusive. A stalled reader
    blocks write() until it reads or closes.

    Args:
        pipes: Internal pipes, one per reader.
    """

    def __init__(self, pipes: List[_Pipe]):
        self._pipes = pipes
        self._lock = threading.Lock()
        self._closed = False

    def write(self, data: bytes) -> int:
        """Forward a chunk to every pipe.

        Args:
            data: Chunk to broadcast.

        Returns:
            Length of the chunk.

        Raises:
            ClosedPipeError: If the writer is already closed. Nothing is written.
            BroadcastWriteError: If one or more pipes failed. The remaining
                pipes still received the chunk.
        """
        with self._lock:
            if self._closed:
                raise ClosedPipeError("write on closed broadcast writer")

            errors: List[Tuple[int, BaseException]] = []
            for index, pipe in enumerate(self._pipes):
                try:
                    n = pipe.write(data)
                except BroadcastError as e:
                    errors.append((index, e))
                    continue
                if n != len(data):
                    errors.append((index, ShortWriteError(
                        f"short write: {n} of {len(data)} bytes"
                    )))

            if errors:
                raise BroadcastWriteError(len(data), errors)
            return len(data)

    def close(self) -> None:
        """Close every pipe; readers see end of stream after draining.

        Idempotent.

        Raises:
            BroadcastCloseError: If any pipe failed to close. All pipes were
                still attempted.
        """
        self._close_all(None)

    def abort(self, error: BaseException) -> None:
        """Close every pipe so readers raise StreamAbortedError.

        Does nothing if the writer is already closed.

        Args:
            error: Cause reported to the readers.
        """
        self._close_all(error)

    def _close_all(self, error: Optional[BaseException]) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

            errors: List[Tuple[int, BaseException]] = []
            for index, pipe in enumerate(self._pipes):
                try:
                    pipe.close_write(error)
                except Exception as e:
                    errors.append((index, e))

        if errors:
            raise BroadcastCloseError(errors)

    @property
    def closed(self) -> bool:
        """Whether close() or abort() was called."""
        return self._closed

    @property
    def live_count(self) -> int:
        """Number of pipes whose reader is still open."""
        return sum(1 for pipe in self._pipes if not pipe.read_closed)

    def __len__(self) -> int:
        return len(self._pipes)

    def __enter__(self) -> "BroadcastWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_val is not None:
            self.abort(exc_val)
        else:
            self.close()


def create_broadcast(reader_count: int) -> Tuple[BroadcastWriter, List[BroadcastReader]]:
    """Create a writer broadcasting to ``reader_count`` independent readers.

    Args:
        reader_count: Number of read-endpoints (>= 1).

    Returns:
        (writer, readers) tuple.

    Raises:
        ValueError: If reader_count is less than 1.
    """
    if reader_count < 1:
        raise ValueError(f"reader_count must be >= 1, got {reader_count}")

    pipes = [_Pipe() for _ in range(reader_count)]
    readers = [BroadcastReader(pipe, i) for i, pipe in enumerate(pipes)]
    logger.debug(f"Created broadcast set with {reader_count} readers")
    return BroadcastWriter(pipes), readers
