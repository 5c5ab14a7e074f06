"""Public exposure of the local listener through a localtunnel server."""

import asyncio
import logging
import random
import string
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlparse

import aiohttp

from hostpulse.errors import TunnelError

logger = logging.getLogger(__name__)

DEFAULT_TUNNEL_HOST = "https://localtunnel.me"
LOCAL_RETRY_DELAY = 1.0
PIPE_CHUNK = 64 * 1024


def random_subdomain(prefix: str = "monitor-", length: int = 6) -> str:
    """Subdomain seed such as `monitor-k3x9q2`."""
    alphabet = string.ascii_lowercase + string.digits
    return prefix + "".join(random.choices(alphabet, k=length))


class Tunnel:
    """
    Handle to an open public tunnel.

    Emits `close` (no arguments) once when the tunnel shuts down and `error`
    (with the exception) when a remote connection fails.
    """

    def __init__(self, url: str, tunnel_id: str = "") -> None:
        self.url = url
        self.tunnel_id = tunnel_id
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Register a handler for `close` or `error`."""
        self._handlers[event].append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception:
                logger.exception("Tunnel %s handler failed", event)

    def add_task(self, task: asyncio.Task[None]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def close(self) -> None:
        """Tear down every connection and emit `close` once."""
        if self._closed:
            return
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        self.emit("close")

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.emit("error", task.exception())
        if not self._tasks and not self._closed:
            # Every remote connection is gone for good
            self.close()


# Collaborator signature: open(port, subdomain) -> Tunnel
Opener = Callable[[int, str | None], Awaitable[Tunnel]]


class LocalTunnelClient:
    """
    Client for the localtunnel protocol.

    Asks the tunnel server for a public URL, then keeps `max_conn_count` TCP
    connections to the server open, each piped to the local listener.
    """

    def __init__(
        self,
        host: str = DEFAULT_TUNNEL_HOST,
        local_host: str = "127.0.0.1",
        timeout: float = 10.0,
    ) -> None:
        """
        Initialize the LocalTunnelClient.

        Args:
            host: Base URL of the tunnel server.
            local_host: Address the local listener accepts connections on.
            timeout: Seconds allowed for URL negotiation.
        """
        self._host = host.rstrip("/")
        self._local_host = local_host
        self._timeout = timeout

    async def negotiate(self, subdomain: str | None = None) -> dict[str, Any]:
        """Request a tunnel and return the server's description of it."""
        url = f"{self._host}/{subdomain}" if subdomain else f"{self._host}/?new"
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as http:
                async with http.get(url) as resp:
                    body = await resp.json(content_type=None)
                    if resp.status != 200:
                        message = body.get("message") if isinstance(body, dict) else None
                        raise TunnelError(message or f"tunnel server returned HTTP {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise TunnelError(f"tunnel negotiation with {self._host} failed: {exc}") from exc

        if not isinstance(body, dict) or "url" not in body or "port" not in body:
            raise TunnelError(f"unexpected tunnel server response: {body!r}")
        return body

    async def open(self, port: int, subdomain: str | None = None) -> Tunnel:
        """Open a tunnel to the local `port`."""
        info = await self.negotiate(subdomain)
        tunnel = Tunnel(url=info["url"], tunnel_id=str(info.get("id", "")))
        remote_host = info.get("ip") or urlparse(self._host).hostname
        remote_port = int(info["port"])
        for _ in range(max(1, int(info.get("max_conn_count") or 1))):
            task = asyncio.create_task(self._keep_connection(tunnel, remote_host, remote_port, port))
            tunnel.add_task(task)
        return tunnel

    async def _keep_connection(self, tunnel: Tunnel, remote_host: str, remote_port: int, port: int) -> None:
        """Hold one remote connection open, reopening it when the server drops it."""
        while not tunnel.closed:
            try:
                remote_reader, remote_writer = await asyncio.open_connection(remote_host, remote_port)
            except OSError as exc:
                tunnel.emit("error", TunnelError(f"connection to {remote_host}:{remote_port} failed: {exc}"))
                return

            try:
                local = await self._connect_local(tunnel, port)
                if local is None:
                    continue
                local_reader, local_writer = local
                try:
                    await asyncio.gather(
                        _pipe(remote_reader, local_writer),
                        _pipe(local_reader, remote_writer),
                    )
                finally:
                    local_writer.close()
            finally:
                remote_writer.close()

    async def _connect_local(
        self, tunnel: Tunnel, port: int
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter] | None:
        """Connect to the local listener, retrying while it refuses. None once the tunnel is closed."""
        while not tunnel.closed:
            try:
                return await asyncio.open_connection(self._local_host, port)
            except OSError as exc:
                logger.debug("Local listener on port %d unreachable, retrying: %s", port, exc)
                await asyncio.sleep(LOCAL_RETRY_DELAY)
        return None


async def _pipe(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    try:
        while data := await reader.read(PIPE_CHUNK):
            writer.write(data)
            await writer.drain()
    except ConnectionError:
        pass  # Either side hung up
    finally:
        if writer.can_write_eof():
            try:
                writer.write_eof()
            except OSError:
                pass


async def expose_publicly(
    port: int,
    subdomain: str | None = None,
    opener: Opener | None = None,
) -> Tunnel | None:
    """
    Try to publish the local listener on `port`.

    Never raises: on failure the error is logged and None is returned, and
    the server keeps serving locally.
    """
    opener = opener or LocalTunnelClient().open
    logger.info("Creating public tunnel...")
    try:
        tunnel = await opener(port, subdomain)
    except Exception as exc:
        logger.error("Could not create tunnel: %s", exc)
        logger.info("Server keeps running in local mode")
        return None

    logger.info("Tunnel created, public URL: %s", tunnel.url)
    tunnel.on("close", lambda: logger.info("Tunnel closed"))
    tunnel.on("error", lambda err: logger.error("Tunnel error: %s", err))
    return tunnel
