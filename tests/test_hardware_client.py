"""Tests for the direct HTTP hardware link."""

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from bms_bridge.services.hardware_client import HardwareClient


def make_app(health_status=200, command_status=200, delay=0.0):
    received = []

    async def health(request: web.Request) -> web.StreamResponse:
        if delay:
            await asyncio.sleep(delay)
        return web.json_response({"status": "ok"}, status=health_status)

    async def command(request: web.Request) -> web.StreamResponse:
        body = await request.json() if request.can_read_body else None
        received.append({"path": request.path, "query": dict(request.query), "json": body})
        return web.json_response({"success": command_status == 200}, status=command_status)

    async def status(request: web.Request) -> web.StreamResponse:
        return web.json_response({"total_voltage": 13.3, "cell_voltages": [3.3, 3.3]})

    async def settings(request: web.Request) -> web.StreamResponse:
        return web.json_response([1, 2, 3])

    app = web.Application()
    app.router.add_get("/health", health)
    app.router.add_get("/api/bms/status", status)
    app.router.add_get("/api/bms/settings", settings)
    app.router.add_post("/api/bms/{tail:.*}", command)
    return app, received


@pytest.mark.asyncio
async def test_probe_reports_live_controller():
    app, _ = make_app()
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")))
        try:
            assert await client.is_available() is True
        finally:
            await client.close()


@pytest.mark.asyncio
async def test_probe_non_200_is_unavailable():
    app, _ = make_app(health_status=503)
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")))
        try:
            assert await client.is_available() is False
        finally:
            await client.close()


@pytest.mark.asyncio
async def test_probe_timeout_is_unavailable():
    app, _ = make_app(delay=1.0)
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")), probe_timeout=0.1)
        try:
            assert await client.is_available() is False
        finally:
            await client.close()


@pytest.mark.asyncio
async def test_unreachable_controller_never_raises():
    client = HardwareClient("http://127.0.0.1:1", timeout=0.5, probe_timeout=0.5)
    try:
        assert await client.is_available() is False
        reply = await client.set_overcharge_voltage(4.1)
        assert reply.ok is False
        assert reply.error
        assert await client.get_status() is None
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_disabled_client_skips_network():
    client = HardwareClient("http://127.0.0.1:1", enabled=False)
    assert await client.is_available() is False
    assert await client.get_settings() is None
    await client.close()


@pytest.mark.asyncio
async def test_setting_commands_use_query_parameters():
    app, received = make_app()
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")))
        try:
            assert (await client.set_overcharge_voltage(4.1)).ok
            assert (await client.set_discharge_current(5.0)).ok
            assert (await client.set_charge_current_delay(release=12)).ok
            assert (await client.reset_settings()).ok
        finally:
            await client.close()

    assert received[0] == {
        "path": "/api/bms/settings/overcharge-voltage",
        "query": {"voltage": "4.1"},
        "json": None,
    }
    assert received[1]["path"] == "/api/bms/settings/discharge-current"
    assert received[1]["query"] == {"current": "5.0"}
    assert received[2]["path"] == "/api/bms/settings/charge-current-delay"
    assert received[2]["query"] == {"release": "12"}
    assert received[3]["path"] == "/api/bms/settings/reset"


@pytest.mark.asyncio
async def test_control_commands_use_json_bodies():
    app, received = make_app()
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")))
        try:
            assert (await client.control_fet(charge_fet_status=True)).ok
            assert (await client.control_electronic_load(True, "CP", 2)).ok
        finally:
            await client.close()

    assert received[0]["path"] == "/api/bms/hardware/fet/control"
    assert received[0]["json"] == {"charge_fet_status": True}
    assert received[1]["path"] == "/api/bms/hardware/electronic-load/control"
    assert received[1]["json"] == {"electronicLoadEnabled": True, "loadMode": "CP", "cpModeLevel": 2}


@pytest.mark.asyncio
async def test_command_error_status_is_not_ok():
    app, _ = make_app(command_status=500)
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")))
        try:
            reply = await client.set_voltage_delay(3)
        finally:
            await client.close()

    assert reply.ok is False
    assert reply.status == 500
    assert reply.error == "HTTP 500"


@pytest.mark.asyncio
async def test_reads_return_objects_only():
    app, _ = make_app()
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")))
        try:
            status = await client.get_status()
            settings = await client.get_settings()
        finally:
            await client.close()

    assert status == {"total_voltage": 13.3, "cell_voltages": [3.3, 3.3]}
    assert settings is None


@pytest.mark.asyncio
async def test_undecodable_reply_body_does_not_raise():
    async def garbled(request: web.Request) -> web.StreamResponse:
        return web.Response(body=b"\xff\xfe\xfa", content_type="application/json")

    app = web.Application()
    app.router.add_post("/api/bms/settings/overcharge-voltage", garbled)
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")))
        try:
            reply = await client.set_overcharge_voltage(4.0)
        finally:
            await client.close()

    assert reply.ok is True
    assert reply.status == 200
    assert isinstance(reply.body, str)


@pytest.mark.asyncio
async def test_probe_timeout_is_independent_of_command_timeout():
    app, _ = make_app(delay=0.3)
    async with TestServer(app) as server:
        client = HardwareClient(str(server.make_url("/")), timeout=0.1, probe_timeout=2.0)
        try:
            assert await client.is_available() is True
        finally:
            await client.close()
