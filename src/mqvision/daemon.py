"""Daemon mode: feed images from a source into the reading pipeline.

The daemon reads image streams from a source (ZMQ bus or a single file),
starts one broadcast per image, and keeps the latest reading available over
HTTP until it is stopped.

Example:
    >>> # Start daemon
    >>> mqvision serve -c config.yaml

    >>> # Programmatic usage
    >>> from mqvision.daemon import MeterDaemon
    >>> daemon = MeterDaemon(
    ...     source=ZMQImageSource("tcp://localhost:5560"),
    ...     pipeline=pipeline,
    ...     sink=sink,
    ...     server=server,
    ... )
    >>> daemon.run()  # Blocks until SIGINT/SIGTERM
"""

import logging
import signal
import threading
import time
from typing import Optional

from mqvision.process.pipeline import ReadingPipeline
from mqvision.process.sink import LatestValueSink
from mqvision.server import SensorServer
from mqvision.sources.base import BaseSource

logger = logging.getLogger(__name__)


class MeterDaemon:
    """Gas meter reading daemon.

    Args:
        source: Image source to read from.
        pipeline: Pipeline running one broadcast per image.
        sink: Sink consuming the pipeline's delivery queue.
        server: Optional HTTP server. With a server, the daemon keeps serving
            after a non-live source is exhausted.
        sink_drain_sec: How long to wait for the sink at shutdown.
    """

    def __init__(
        self,
        source: BaseSource,
        pipeline: ReadingPipeline,
        sink: LatestValueSink,
        server: Optional[SensorServer] = None,
        sink_drain_sec: float = 5.0,
    ):
        self._source = source
        self._pipeline = pipeline
        self._sink = sink
        self._server = server
        self._sink_drain_sec = sink_drain_sec

        # State
        self._stop = threading.Event()
        self._running = False
        self._image_count = 0
        self._start_time: Optional[float] = None

    @property
    def source(self) -> BaseSource:
        return self._source

    @property
    def is_running(self) -> bool:
        """Check if daemon is running."""
        return self._running

    @property
    def image_count(self) -> int:
        """Number of images submitted to the pipeline."""
        return self._image_count

    def get_stats(self) -> dict:
        """Get daemon statistics."""
        elapsed = time.time() - self._start_time if self._start_time else 0
        return {
            "image_count": self._image_count,
            "elapsed_sec": elapsed,
            "pipeline": self._pipeline.get_stats(),
        }

    def run(self) -> None:
        """Run the daemon until stopped.

        Blocks until SIGINT/SIGTERM is received, stop() is called, or a
        non-live source is exhausted without a server attached.
        """
        self._running = True
        self._stop.clear()
        self._image_count = 0
        self._start_time = time.time()

        # Setup signal handlers (only in main thread)
        in_main_thread = threading.current_thread() is threading.main_thread()
        original_sigint = None
        original_sigterm = None
        if in_main_thread:
            original_sigint = signal.signal(signal.SIGINT, self._handle_signal)
            original_sigterm = signal.signal(signal.SIGTERM, self._handle_signal)

        try:
            self._source.open()
            self._sink.start()
            if self._server is not None:
                self._server.start()

            logger.info(f"Daemon started: {type(self._source).__name__}")

            while not self._stop.is_set():
                stream = self._source.read()
                if stream is None:
                    if not self._source.is_live:
                        logger.info("Source exhausted")
                        break
                    continue

                if self._pipeline.submit(stream, stop_event=self._stop):
                    self._image_count += 1

            if self._server is not None:
                # Keep serving the latest value until stopped.
                while not self._stop.wait(0.5):
                    pass

        except Exception as e:
            logger.error(f"Daemon error: {e}")
            raise
        finally:
            # Restore signal handlers (only if we set them)
            if in_main_thread:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

            self._source.close()
            self._pipeline.shutdown()
            if not self._sink.join(self._sink_drain_sec):
                logger.warning("Sink did not drain the delivery queue in time")
            if self._server is not None:
                self._server.stop()
            self._running = False

            logger.info(f"Daemon stopped: {self._image_count} images submitted")

    def stop(self) -> None:
        """Signal the daemon to stop."""
        self._stop.set()

    def _handle_signal(self, signum, frame) -> None:
        """Handle termination signals."""
        logger.info(f"Received signal {signum}, stopping...")
        self._stop.set()
