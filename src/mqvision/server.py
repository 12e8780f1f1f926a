"""HTTP endpoint exposing the latest sensor value.

Example:
    >>> server = SensorServer(store, port=8080)
    >>> server.start()
    >>> # curl http://localhost:8080/sensor
    >>> server.stop()
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from aiohttp import web

from mqvision.core.store import SensorStore

logger = logging.getLogger(__name__)


class SensorServer:
    """aiohttp server running its own event loop in a background thread.

    Routes:
        GET /sensor: Latest value, or 404 until the first reading arrives.
        GET /health: Liveness plus optional pipeline stats.

    Args:
        store: Store holding the latest value.
        host: Interface to bind.
        port: Port to bind (0 picks a free port).
        stats_callback: Optional callable returning a stats dict for /health.
    """

    def __init__(
        self,
        store: SensorStore,
        host: str = "0.0.0.0",
        port: int = 8080,
        stats_callback: Optional[Callable[[], dict]] = None,
    ):
        self._store = store
        self._host = host
        self._port = port
        self._stats_callback = stats_callback

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._started = threading.Event()
        self._error: Optional[BaseException] = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/sensor", self._handle_sensor)
        app.router.add_get("/health", self._handle_health)
        return app

    async def _handle_sensor(self, request: web.Request) -> web.Response:
        latest = self._store.get()
        if latest is None:
            return web.json_response({"error": "no value yet"}, status=404)
        return web.json_response(latest.to_dict())

    async def _handle_health(self, request: web.Request) -> web.Response:
        body = {"status": "ok", "has_value": self._store.get() is not None}
        if self._stats_callback is not None:
            body["stats"] = self._stats_callback()
        return web.json_response(body)

    def start(self, timeout: float = 5.0) -> None:
        """Start serving in a background thread.

        Raises:
            RuntimeError: If the server did not come up within ``timeout``.
        """
        if self._thread is not None and self._thread.is_alive():
            return

        self._started.clear()
        self._error = None
        self._thread = threading.Thread(target=self._serve, name="http", daemon=True)
        self._thread.start()

        if not self._started.wait(timeout):
            raise RuntimeError(f"HTTP server did not start within {timeout}s")
        if self._error is not None:
            raise RuntimeError(f"HTTP server failed to start: {self._error}") from self._error

    def _serve(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop

        runner = web.AppRunner(self.create_app())
        try:
            loop.run_until_complete(runner.setup())
            site = web.TCPSite(runner, self._host, self._port)
            loop.run_until_complete(site.start())
            if runner.addresses:
                self._port = runner.addresses[0][1]
        except Exception as e:
            self._error = e
            self._started.set()
            loop.run_until_complete(runner.cleanup())
            loop.close()
            return

        logger.info(f"HTTP server listening on http://{self._host}:{self._port}")
        self._started.set()
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(runner.cleanup())
            loop.close()
            logger.info("HTTP server stopped")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop serving and wait for the server thread."""
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._loop = None

    @property
    def port(self) -> int:
        """Bound port (the real one once started with port 0)."""
        return self._port

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
