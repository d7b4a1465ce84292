import asyncio
import json

import httpx
import pytest

from services.kick.api.chat import (
    KICK_EMOTE_URL,
    decode_frame,
    extract_emotes,
    parse_chat_message,
    parse_gifted_subscriptions,
    parse_subscription,
    resolve_chatroom_id,
    subscribe_frame,
)
from services.kick.workers.chat_worker import KickChatWorker
from shared.chat.errors import BootstrapError, DecodeError
from shared.platforms.state import AdapterPhase
from shared.storage.chat_events import ChatEventStore
from tests.helpers import FAST_POLICY, FakeConnector, FakeWebSocket, wait_until

CHAT_DATA = {
    "id": "k-1",
    "content": "hi [emote:37226:KEKW] there",
    "created_at": "2024-05-01T12:00:00+00:00",
    "sender": {
        "username": "KickUser",
        "identity": {
            "color": "#00FF00",
            "badges": [{"type": "subscriber", "text": "Subscriber", "count": 3}],
        },
    },
}


def _envelope(event, data, *, encode=True):
    return json.dumps({"event": event, "data": json.dumps(data) if encode else data})


def _lookup_transport(status=200, body=None):
    def handler(request):
        assert request.url.path == "/api/v2/channels/somechannel"
        if body is None:
            return httpx.Response(status, content=b"<html>")
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


def test_extract_emotes_spans_markup():
    emotes = extract_emotes(CHAT_DATA["content"])

    assert len(emotes) == 1
    assert emotes[0].name == "KEKW"
    assert emotes[0].positions == ((3, 20),)
    assert emotes[0].url == KICK_EMOTE_URL.format(emote_id="37226")


def test_parse_chat_message():
    message = parse_chat_message(CHAT_DATA)

    assert message.id == "kick-k-1"
    assert message.username == "KickUser"
    assert message.user_color == "#00FF00"
    assert message.badges[0].set_id == "subscriber"
    assert message.badges[0].version == "3"
    assert message.to_dict()["timestamp"] == "2024-05-01T12:00:00Z"


def test_sender_without_username_falls_back():
    message = parse_chat_message({"id": 1, "content": "x", "sender": {"slug": "slugname"}})
    assert message.username == "slugname"

    message = parse_chat_message({"id": 2, "content": "x", "sender": {}})
    assert message.username == "Unknown"


def test_subscription_texts():
    assert parse_subscription({"username": "fan", "months": 1}).message == "fan subscribed!"
    event = parse_subscription({"username": "fan", "months": 6})
    assert event.message == "fan subscribed for 6 months!"
    assert event.event_type == "sub"
    assert parse_subscription({"username": "fan", "months": "lots"}).message == "fan subscribed!"
    assert parse_subscription({}) is None


def test_gifted_subscriptions():
    single = parse_gifted_subscriptions({"gifter_username": "g", "gifted_usernames": ["a"]})
    assert single.message == "g gifted a sub to a!"
    assert single.event_type == "gift"

    many = parse_gifted_subscriptions({"gifted_usernames": ["a", "b", "c"]})
    assert many.message == "Anonymous gifted 3 subs!"
    assert parse_gifted_subscriptions({"gifted_usernames": []}) is None


def test_decode_frame():
    frame = decode_frame(_envelope("App\\Events\\ChatMessageEvent", CHAT_DATA))
    assert frame.data["id"] == "k-1"

    with pytest.raises(DecodeError):
        decode_frame("not json")
    with pytest.raises(DecodeError):
        decode_frame(json.dumps({"data": {}}))


def test_subscribe_frame_targets_chatroom():
    payload = json.loads(subscribe_frame(42))
    assert payload == {
        "event": "pusher:subscribe",
        "data": {"channel": "chatrooms.42.v2", "auth": ""},
    }


@pytest.mark.asyncio
async def test_resolve_chatroom_id():
    transport = _lookup_transport(body={"chatroom": {"id": "42"}})
    assert await resolve_chatroom_id("somechannel", transport=transport) == 42


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, fragment",
    [
        (404, {}, "not found"),
        (503, {}, "HTTP 503"),
        (200, None, "invalid JSON"),
        (200, {"chatroom": {}}, "Chatroom id not found"),
        (200, {"chatroom": {"id": "abc"}}, "not numeric"),
    ],
)
async def test_resolve_chatroom_id_failures(status, body, fragment):
    with pytest.raises(BootstrapError) as excinfo:
        await resolve_chatroom_id("somechannel", transport=_lookup_transport(status, body))
    assert fragment in str(excinfo.value)


@pytest.mark.asyncio
async def test_worker_subscribes_and_stores_messages(sink):
    socket = FakeWebSocket()
    store = ChatEventStore()
    worker = KickChatWorker(
        store=store,
        channel="SomeChannel",
        status=sink,
        policy=FAST_POLICY,
        connector=FakeConnector(socket),
        http_transport=_lookup_transport(body={"chatroom": {"id": 42}}),
    )

    await worker.connect()
    assert json.loads(socket.sent[0])["data"]["channel"] == "chatrooms.42.v2"
    assert not worker.connected

    socket.feed(json.dumps({"event": "pusher_internal:subscription_succeeded", "data": "{}"}))
    await wait_until(lambda: worker.connected)

    socket.feed("{broken")
    socket.feed(json.dumps({"event": "pusher:ping", "data": {}}))
    socket.feed(_envelope("App\\Events\\ChatMessageEvent", CHAT_DATA))
    await wait_until(lambda: len(store) == 1)

    assert json.loads(socket.sent[-1])["event"] == "pusher:pong"
    assert worker.phase == AdapterPhase.RECEIVING

    await worker.disconnect()
    assert sink.updates == [("kick", True), ("kick", False)]


@pytest.mark.asyncio
async def test_worker_lookup_failure_never_opens_socket(sink):
    connector = FakeConnector(FakeWebSocket())
    worker = KickChatWorker(
        store=ChatEventStore(),
        channel="somechannel",
        status=sink,
        connector=connector,
        http_transport=_lookup_transport(404, {}),
    )

    with pytest.raises(BootstrapError):
        await worker.connect()
    assert connector.calls == 0
    assert worker.phase == AdapterPhase.DISCONNECTED


@pytest.mark.asyncio
async def test_subscription_error_reports_disconnected(sink):
    socket = FakeWebSocket()
    worker = KickChatWorker(
        store=ChatEventStore(),
        channel="somechannel",
        status=sink,
        policy=FAST_POLICY,
        connector=FakeConnector(socket),
        http_transport=_lookup_transport(body={"chatroom": {"id": 42}}),
    )
    await worker.connect()
    socket.feed(json.dumps({"event": "pusher:subscription_succeeded", "data": {}}))
    await wait_until(lambda: worker.connected)

    socket.feed(json.dumps({"event": "pusher:subscription_error", "data": {"type": "AuthError"}}))
    await wait_until(lambda: not worker.connected)

    assert sink.errors
    await worker.disconnect()


@pytest.mark.asyncio
async def test_connection_established_marks_connected(sink):
    socket = FakeWebSocket()
    worker = KickChatWorker(
        store=ChatEventStore(),
        channel="somechannel",
        status=sink,
        policy=FAST_POLICY,
        connector=FakeConnector(socket),
        http_transport=_lookup_transport(body={"chatroom": {"id": 42}}),
    )
    await worker.connect()

    socket.feed(_envelope("pusher:connection_established", {"socket_id": "1.2"}))
    await wait_until(lambda: worker.connected)
    socket.feed(json.dumps({"event": "pusher_internal:subscription_succeeded", "data": "{}"}))
    socket.feed(json.dumps({"event": "pusher:ping", "data": {}}))
    await wait_until(lambda: len(socket.sent) == 2)

    assert sink.updates == [("kick", True)]
    await worker.disconnect()


@pytest.mark.asyncio
async def test_disconnect_during_lookup_never_opens_socket(sink):
    async def slow_lookup(request):
        await asyncio.sleep(0.05)
        return httpx.Response(200, json={"chatroom": {"id": 42}})

    connector = FakeConnector(FakeWebSocket())
    worker = KickChatWorker(
        store=ChatEventStore(),
        channel="somechannel",
        status=sink,
        policy=FAST_POLICY,
        connector=connector,
        http_transport=httpx.MockTransport(slow_lookup),
    )

    connecting = asyncio.create_task(worker.connect())
    await asyncio.sleep(0.01)
    await worker.disconnect()
    await connecting

    assert connector.calls == 0
    assert worker._transport is None
    assert worker.phase == AdapterPhase.DISCONNECTED
