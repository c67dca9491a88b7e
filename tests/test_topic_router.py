import pytest

from bms_bridge.services.topic_router import (
    TOPIC_CONTROL,
    TOPIC_ELECTRONIC_LOAD_CONTROL,
    TOPIC_FET_STATUS,
    TOPIC_STATUS,
    DecodeError,
    TopicRouter,
    classify_topic,
    decode_payload,
)


@pytest.mark.parametrize(
    "topic,expected",
    [
        ("bms/status", TOPIC_STATUS),
        ("site-a/bms/status", TOPIC_STATUS),
        ("bms/fet/status", TOPIC_FET_STATUS),
        ("rack1/bms/fet/status", TOPIC_FET_STATUS),
        ("bms/control", TOPIC_CONTROL),
        ("electronic_load/control", TOPIC_ELECTRONIC_LOAD_CONTROL),
        ("lab/electronic_load/control", TOPIC_ELECTRONIC_LOAD_CONTROL),
        ("bms/unknown", None),
        ("weather/status", None),
    ],
)
def test_classify_topic(topic, expected):
    assert classify_topic(topic) == expected


def test_decode_payload_rejects_non_objects():
    assert decode_payload(b'{"a": 1}') == {"a": 1}
    with pytest.raises(DecodeError):
        decode_payload(b"[1, 2]")
    with pytest.raises(DecodeError):
        decode_payload(b"{not json")
    with pytest.raises(DecodeError):
        decode_payload(b"\xff\xfe")


def test_unknown_fragment_is_refused():
    with pytest.raises(ValueError):
        TopicRouter({"bms/other": lambda data: None})
    router = TopicRouter()
    with pytest.raises(ValueError):
        router.register("bms/other", lambda data: None)


@pytest.mark.asyncio
async def test_each_message_goes_to_exactly_one_handler():
    calls = []

    def recorder(name):
        async def handler(data):
            calls.append((name, data))
        return handler

    router = TopicRouter({
        TOPIC_STATUS: recorder("status"),
        TOPIC_FET_STATUS: recorder("fet"),
        TOPIC_CONTROL: recorder("control"),
        TOPIC_ELECTRONIC_LOAD_CONTROL: recorder("load"),
    })

    assert await router.route("bms/fet/status", b'{"charge_fet_status": true}') == TOPIC_FET_STATUS
    assert await router.route("bms/control", b'{"commandType": "set_OV"}') == TOPIC_CONTROL
    assert await router.route("bms/ignored", b"{}") is None

    assert calls == [
        ("fet", {"charge_fet_status": True}),
        ("control", {"commandType": "set_OV"}),
    ]


@pytest.mark.asyncio
async def test_malformed_message_does_not_stop_later_ones():
    received = []

    async def handle_status(data):
        received.append(data)

    router = TopicRouter({TOPIC_STATUS: handle_status})

    assert await router.route("bms/status", b"garbage") is None
    assert await router.route("bms/status", b'{"total_voltage": 13.2}') == TOPIC_STATUS

    assert received == [{"total_voltage": 13.2}]


@pytest.mark.asyncio
async def test_handler_error_is_isolated():
    seen = []

    async def flaky(data):
        seen.append(data)
        if data.get("boom"):
            raise RuntimeError("handler crashed")

    router = TopicRouter({TOPIC_CONTROL: flaky})

    assert await router.route("bms/control", b'{"boom": true}') is None
    assert await router.route("bms/control", b'{"boom": false}') == TOPIC_CONTROL
    assert len(seen) == 2
