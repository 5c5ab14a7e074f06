"""aiohttp server: static viewer plus the /ws live-telemetry endpoint."""

import asyncio
import logging
import signal
import weakref

from aiohttp import WSCloseCode, WSMsgType, web

from hostpulse.adapter import MetricSourceAdapter
from hostpulse.composer import SnapshotComposer
from hostpulse.config import Settings
from hostpulse.provider import MIN_SAMPLE_WINDOW, PsutilProvider
from hostpulse.session import SessionManager
from hostpulse.tunnel import LocalTunnelClient, Opener, Tunnel, expose_publicly, random_subdomain

logger = logging.getLogger(__name__)

SESSIONS = web.AppKey("sessions", SessionManager)
SOCKETS = web.AppKey("sockets", weakref.WeakSet)
SETTINGS = web.AppKey("settings", Settings)


async def index(request: web.Request) -> web.FileResponse:
    return web.FileResponse(request.app[SETTINGS].static_dir / "index.html")


async def telemetry(request: web.Request) -> web.WebSocketResponse:
    """
    Stream `system-info` once, then `performance-data` every tick.

    Messages are JSON objects of the form {"event": ..., "data": ...}.
    Anything the subscriber sends is ignored.
    """
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)
    request.app[SOCKETS].add(ws)

    async def send(event: str, data: dict) -> None:
        if ws.closed:
            raise ConnectionResetError("subscriber disconnected")
        await ws.send_json({"event": event, "data": data})

    try:
        async with request.app[SESSIONS].session(send):
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.debug("WebSocket error: %s", ws.exception())
    finally:
        request.app[SOCKETS].discard(ws)
    return ws


async def _close_subscribers(app: web.Application) -> None:
    await app[SESSIONS].close_all()
    for ws in set(app[SOCKETS]):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


def create_app(settings: Settings, adapter: MetricSourceAdapter | None = None) -> web.Application:
    """Build the aiohttp application for the given settings."""
    if adapter is None:
        # Sessions ticking within half an interval of each other share rate samples
        window = min(MIN_SAMPLE_WINDOW, settings.interval / 2)
        adapter = MetricSourceAdapter(PsutilProvider(min_window=window))
    composer = SnapshotComposer(adapter)
    app = web.Application()
    app[SETTINGS] = settings
    app[SESSIONS] = SessionManager(
        composer,
        interval=settings.interval,
        shared_sampling=settings.shared_sampling,
    )
    app[SOCKETS] = weakref.WeakSet()

    app.router.add_get("/ws", telemetry)
    app.router.add_get("/", index)
    app.router.add_static("/", settings.static_dir)
    app.on_shutdown.append(_close_subscribers)
    return app


class MonitorServer:
    """
    Listener lifecycle: bind, try to go public, serve, shut down.

    Tunnel failures are logged and never stop the local listener.
    """

    def __init__(
        self,
        settings: Settings,
        adapter: MetricSourceAdapter | None = None,
        opener: Opener | None = None,
    ) -> None:
        """
        Initialize the MonitorServer.

        Args:
            settings: Listener, cadence and tunnel settings.
            adapter: Metric source. Defaults to a psutil-backed adapter.
            opener: Tunnel collaborator. Defaults to a LocalTunnelClient
                against `settings.tunnel_host`.
        """
        self._settings = settings
        self._opener = opener or LocalTunnelClient(settings.tunnel_host).open
        self.app = create_app(settings, adapter)
        self._runner: web.AppRunner | None = None
        self.tunnel: Tunnel | None = None

    @property
    def sessions(self) -> SessionManager:
        return self.app[SESSIONS]

    @property
    def port(self) -> int:
        """The bound port, which differs from settings when port 0 was asked for."""
        if self._runner is None or not self._runner.addresses:
            return self._settings.port
        return self._runner.addresses[0][1]

    async def start(self) -> None:
        """Bind the listener, then attempt public exposure."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._settings.host, self._settings.port)
        await site.start()
        logger.info("Host monitor started")
        logger.info("Local server: http://localhost:%d", self.port)

        if self._settings.tunnel:
            subdomain = self._settings.subdomain or random_subdomain()
            self.tunnel = await expose_publicly(self.port, subdomain, self._opener)

    async def stop(self) -> None:
        """Close the tunnel, every session, and the listener."""
        if self.tunnel is not None:
            self.tunnel.close()
            self.tunnel = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None


async def run(settings: Settings) -> None:
    """Serve until SIGINT or SIGTERM."""
    server = MonitorServer(settings)
    await server.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt ends asyncio.run() instead

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down server...")
        await server.stop()
        logger.info("Server closed")
