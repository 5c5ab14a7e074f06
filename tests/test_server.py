"""Tests for the aiohttp server."""

import asyncio

import aiohttp
import pytest
from aiohttp import test_utils

from hostpulse.config import Settings
from hostpulse.errors import TunnelError
from hostpulse.server import MonitorServer, create_app
from hostpulse.session import PERFORMANCE_DATA, SYSTEM_INFO
from hostpulse.tunnel import Tunnel


def make_settings(**overrides) -> Settings:
    values = dict(host="127.0.0.1", port=0, interval=0.1, tunnel=False)
    values.update(overrides)
    return Settings(**values)


async def failing_opener(port, subdomain):
    raise TunnelError("tunnel server unreachable")


@pytest.mark.asyncio
async def test_websocket_protocol(adapter):
    """Test a subscriber gets system-info first, then performance-data."""
    app = create_app(make_settings(), adapter)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        async with client.ws_connect("/ws") as ws:
            first = await ws.receive_json(timeout=5)
            second = await ws.receive_json(timeout=5)
            third = await ws.receive_json(timeout=5)

    assert first["event"] == SYSTEM_INFO
    assert first["data"]["hostname"] == "box"
    assert first["data"]["totalMemory"] == "16.00"
    assert second["event"] == PERFORMANCE_DATA
    assert second["data"]["network"] == {"rx": "2.00", "tx": "1.00"}
    assert second["data"]["disk"]["usePercent"] == "40.00"
    assert [p["pid"] for p in second["data"]["processes"]] == [42, 7, 1]
    assert third["event"] == PERFORMANCE_DATA
    assert third["data"]["timestamp"] >= second["data"]["timestamp"]


@pytest.mark.asyncio
async def test_disconnect_closes_session(adapter):
    """Test the session is released when the subscriber leaves."""
    server = MonitorServer(make_settings(), adapter)
    async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        await ws.receive_json(timeout=5)
        assert server.sessions.active_count == 1

        await ws.close()
        for _ in range(100):
            if server.sessions.active_count == 0:
                break
            await asyncio.sleep(0.02)

        assert server.sessions.active_count == 0


@pytest.mark.asyncio
async def test_index_served(adapter):
    """Test the browser viewer is served at /."""
    app = create_app(make_settings(), adapter)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/")
        body = await resp.text()

    assert resp.status == 200
    assert "hostpulse" in body
    assert "/ws" in body


@pytest.mark.asyncio
async def test_missing_static_file(adapter):
    """Test unknown static paths are 404."""
    app = create_app(make_settings(), adapter)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/nope.js")

    assert resp.status == 404


@pytest.mark.asyncio
async def test_shared_sampling_server(adapter):
    """Test the server streams in shared sampling mode too."""
    app = create_app(make_settings(shared_sampling=True), adapter)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        async with client.ws_connect("/ws") as a, client.ws_connect("/ws") as b:
            assert (await a.receive_json(timeout=5))["event"] == SYSTEM_INFO
            assert (await b.receive_json(timeout=5))["event"] == SYSTEM_INFO
            assert (await a.receive_json(timeout=5))["event"] == PERFORMANCE_DATA
            assert (await b.receive_json(timeout=5))["event"] == PERFORMANCE_DATA


class TestMonitorServer:
    """Tests for the MonitorServer lifecycle."""

    @pytest.mark.asyncio
    async def test_tunnel_failure_still_serves(self, adapter):
        """Test a failed tunnel leaves the listener serving subscribers."""
        server = MonitorServer(make_settings(tunnel=True), adapter, opener=failing_opener)
        await server.start()
        try:
            assert server.tunnel is None
            assert server.port != 0
            async with aiohttp.ClientSession() as http:
                async with http.ws_connect(f"http://127.0.0.1:{server.port}/ws") as ws:
                    hello = await ws.receive_json(timeout=5)
                    data = await ws.receive_json(timeout=5)
            assert hello["event"] == SYSTEM_INFO
            assert data["event"] == PERFORMANCE_DATA
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_tunnel_opened_and_closed(self, adapter):
        """Test a working tunnel is opened after bind and closed on stop."""
        requested = []

        async def opener(port, subdomain):
            requested.append((port, subdomain))
            return Tunnel("https://monitor-test.example")

        server = MonitorServer(make_settings(tunnel=True, subdomain="monitor-test"), adapter, opener=opener)
        await server.start()
        tunnel = server.tunnel
        await server.stop()

        port, subdomain = requested[0]
        assert subdomain == "monitor-test"
        assert port > 0
        assert tunnel is not None
        assert tunnel.closed

    @pytest.mark.asyncio
    async def test_stop_disconnects_subscribers(self, adapter):
        """Test shutdown closes live subscriber sockets."""
        server = MonitorServer(make_settings(), adapter)
        await server.start()
        async with aiohttp.ClientSession() as http:
            async with http.ws_connect(f"http://127.0.0.1:{server.port}/ws") as ws:
                await ws.receive_json(timeout=5)
                assert server.sessions.active_count == 1

                stopping = asyncio.create_task(server.stop())
                msg = await ws.receive(timeout=5)
                while msg.type == aiohttp.WSMsgType.TEXT:
                    msg = await ws.receive(timeout=5)
                await stopping

        assert msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSING)
        assert server.sessions.active_count == 0
