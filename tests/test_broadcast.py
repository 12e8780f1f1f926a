"""Tests for the stream broadcaster."""

import os
import threading

import pytest

from mqvision.core.broadcast import (
    BroadcastWriteError,
    ClosedPipeError,
    StreamAbortedError,
    create_broadcast,
)


def _drain(reader, out: list, errors: list, chunk: int = 7):
    """Read a reader to the end, collecting bytes or the raised error."""
    try:
        while True:
            data = reader.read(chunk)
            if not data:
                break
            out.append(data)
    except Exception as e:
        errors.append(e)


def _start_readers(readers, chunk: int = 7):
    results = [[] for _ in readers]
    errors = [[] for _ in readers]
    threads = [
        threading.Thread(target=_drain, args=(r, results[i], errors[i], chunk), daemon=True)
        for i, r in enumerate(readers)
    ]
    for t in threads:
        t.start()
    return threads, results, errors


class TestCreateBroadcast:
    """Tests for create_broadcast()."""

    def test_reader_count(self):
        """Test one reader per requested endpoint."""
        writer, readers = create_broadcast(3)
        assert len(readers) == 3
        assert len(writer) == 3
        assert [r.index for r in readers] == [0, 1, 2]

    def test_zero_readers_rejected(self):
        """Test that an empty broadcast set is rejected."""
        with pytest.raises(ValueError):
            create_broadcast(0)

    def test_readers_are_file_like(self):
        writer, readers = create_broadcast(1)
        assert readers[0].readable()
        assert not readers[0].seekable()
        writer.close()


class TestBroadcastCopies:
    """Tests for byte-identical delivery to every reader."""

    @pytest.mark.parametrize("reader_count", [1, 2, 5])
    def test_every_reader_gets_all_bytes(self, reader_count):
        """Test n readers each receive the full sequence in order."""
        payload = os.urandom(4096)
        writer, readers = create_broadcast(reader_count)
        threads, results, errors = _start_readers(readers, chunk=100)

        for i in range(0, len(payload), 333):
            assert writer.write(payload[i:i + 333]) == len(payload[i:i + 333])
        writer.close()

        for t in threads:
            t.join(timeout=5.0)
            assert not t.is_alive()

        for result, error in zip(results, errors):
            assert error == []
            assert b"".join(result) == payload

    def test_eof_after_close(self):
        """Test readers see end of stream only after their bytes."""
        writer, readers = create_broadcast(2)
        threads, results, errors = _start_readers(readers)

        writer.write(b"hello")
        writer.close()

        for t in threads:
            t.join(timeout=5.0)
        assert [b"".join(r) for r in results] == [b"hello", b"hello"]
        assert readers[0].read(10) == b""

    def test_close_is_idempotent(self):
        writer, readers = create_broadcast(1)
        writer.close()
        writer.close()
        assert writer.closed

    def test_empty_write(self):
        writer, readers = create_broadcast(1)
        assert writer.write(b"") == 0
        writer.close()


class TestWriterErrors:
    """Tests for writer error semantics."""

    def test_write_after_close(self):
        """Test a write on a closed writer fails with nothing written."""
        writer, readers = create_broadcast(2)
        writer.close()

        with pytest.raises(ClosedPipeError) as exc_info:
            writer.write(b"late")
        assert exc_info.value.written == 0

    def test_closed_reader_does_not_block_others(self):
        """Test an early reader close leaves the other reader unaffected."""
        payload = os.urandom(2048)
        writer, readers = create_broadcast(2)
        readers[0].close()

        threads, results, errors = _start_readers(readers[1:], chunk=64)

        failures = []
        for i in range(0, len(payload), 256):
            try:
                n = writer.write(payload[i:i + 256])
                assert n == len(payload[i:i + 256])
            except BroadcastWriteError as e:
                assert e.written == len(payload[i:i + 256])
                assert e.failed_pipes == [0]
                failures.append(e)
        writer.close()

        threads[0].join(timeout=5.0)
        assert not threads[0].is_alive()
        assert b"".join(results[0]) == payload
        assert failures
        assert isinstance(failures[0].first_error, ClosedPipeError)
        assert writer.live_count == 1

    def test_reader_closing_mid_write_unblocks_writer(self):
        """Test a reader that stops consuming cannot deadlock the writer."""
        writer, readers = create_broadcast(2)
        threads, results, errors = _start_readers(readers[1:])

        done = threading.Event()
        caught = []

        def write_big():
            try:
                writer.write(b"x" * 100_000)
            except BroadcastWriteError as e:
                caught.append(e)
            done.set()

        t = threading.Thread(target=write_big, daemon=True)
        t.start()

        # Reader 0 never reads, then gives up.
        readers[0].read(10)
        readers[0].close()

        assert done.wait(timeout=5.0)
        assert caught and caught[0].failed_pipes == [0]
        writer.close()
        threads[0].join(timeout=5.0)
        assert len(b"".join(results[0])) == 100_000

    def test_read_after_own_close(self):
        writer, readers = create_broadcast(1)
        readers[0].close()
        with pytest.raises((ValueError, OSError)):
            readers[0].read(1)
        writer.close()


class TestAbort:
    """Tests for writer abort."""

    def test_abort_raises_in_readers(self):
        """Test readers raise StreamAbortedError instead of seeing EOF."""
        writer, readers = create_broadcast(2)
        threads, results, errors = _start_readers(readers)

        writer.write(b"0123456789")
        writer.abort(IOError("camera disconnected"))

        for t in threads:
            t.join(timeout=5.0)
            assert not t.is_alive()

        for result, error in zip(results, errors):
            assert b"".join(result) == b"0123456789"
            assert len(error) == 1
            assert isinstance(error[0], StreamAbortedError)
            assert "camera disconnected" in str(error[0])

    def test_abort_after_close_is_ignored(self):
        writer, readers = create_broadcast(1)
        writer.close()
        writer.abort(IOError("too late"))
        assert readers[0].read(1) == b""

    def test_context_manager_aborts_on_error(self):
        writer, readers = create_broadcast(1)
        with pytest.raises(RuntimeError):
            with writer:
                raise RuntimeError("boom")
        with pytest.raises(StreamAbortedError):
            readers[0].read(1)
