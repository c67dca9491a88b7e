import asyncio
import json
from types import SimpleNamespace

import aiomqtt
import pytest

from bms_bridge.services.mqtt_service import MQTTService, parse_broker_url


class FakeClient:
    def __init__(self, raises=None):
        self.raises = raises
        self.published = []

    async def publish(self, topic, payload, qos=0):
        if self.raises is not None:
            raise self.raises
        self.published.append((topic, payload, qos))


@pytest.mark.parametrize(
    "url,expected",
    [
        ("mqtt://broker.local:1884", ("broker.local", 1884)),
        ("mqtt://broker.local", ("broker.local", 1883)),
        ("broker.local:2000", ("broker.local", 2000)),
        ("mqtt://", ("localhost", 1883)),
    ],
)
def test_parse_broker_url(url, expected):
    assert parse_broker_url(url) == expected


@pytest.mark.asyncio
async def test_publish_when_disconnected_is_not_accepted():
    service = MQTTService()
    assert await service.publish("bms/control", {"commandType": "Reset_settings"}) is False


@pytest.mark.asyncio
async def test_publish_sends_json_with_qos1():
    service = MQTTService()
    service.client = FakeClient()
    service.connected = True

    assert await service.publish("bms/control", {"commandType": "set_OV", "voltage": 4.1}) is True

    topic, payload, qos = service.client.published[0]
    assert topic == "bms/control"
    assert json.loads(payload) == {"commandType": "set_OV", "voltage": 4.1}
    assert qos == 1


@pytest.mark.asyncio
async def test_publish_error_is_not_accepted():
    service = MQTTService()
    service.client = FakeClient(raises=aiomqtt.MqttError("broker refused"))
    service.connected = True

    assert await service.publish("bms/control", {}) is False


@pytest.mark.asyncio
async def test_handle_message_passes_topic_and_bytes():
    service = MQTTService()
    received = []

    async def handler(topic, payload):
        received.append((topic, payload))

    service.register_message_handler(handler)
    await service.handle_message(SimpleNamespace(topic="bms/status", payload=bytearray(b'{"a":1}')))
    await service.handle_message(SimpleNamespace(topic="bms/control", payload='{"b":2}'))
    await service.handle_message(SimpleNamespace(topic="bms/control", payload=None))

    assert received == [
        ("bms/status", b'{"a":1}'),
        ("bms/control", b'{"b":2}'),
        ("bms/control", b""),
    ]


@pytest.mark.asyncio
async def test_run_retries_after_connection_errors(monkeypatch):
    service = MQTTService(reconnect_interval=0)
    attempts = []

    async def failing_connect():
        attempts.append(1)
        if len(attempts) >= 3:
            raise asyncio.CancelledError()
        raise aiomqtt.MqttError("connection refused")

    monkeypatch.setattr(service, "connect", failing_connect)

    with pytest.raises(asyncio.CancelledError):
        await service.run()

    assert len(attempts) == 3
    assert service.is_connected() is False


@pytest.mark.asyncio
async def test_health_check_reports_subscriptions():
    service = MQTTService(subscriptions=["bms/#"])
    health = await service.health_check()

    assert health["connected"] is False
    assert health["subscribed_topics"] == ["bms/#"]
