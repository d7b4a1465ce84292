import httpx
import pytest

from core.state_exporter import RuntimeState
from services.chat_api import ChatApiConfig, ChatApiServer, message_payload
from shared.chat.events import EmoteToken, Platform, create_chat_message
from shared.storage.chat_events import ChatEventStore
from tests.helpers import BASE_TS, make_message


@pytest.fixture
def store():
    store = ChatEventStore(retention=10)
    store.add_batch(make_message(str(i), i) for i in range(3))
    return store


def _server(store, **kwargs):
    return ChatApiServer(
        ChatApiConfig(port=0),
        store=store,
        status=RuntimeState(),
        **kwargs,
    )


def test_message_payload_tokens():
    message = create_chat_message(
        platform=Platform.KICK,
        native_id="1",
        username="viewer",
        text="KEKW @friend",
        timestamp=BASE_TS,
        emotes=[EmoteToken("KEKW", "https://e/k", ((0, 3),), "kick")],
    )

    assert "tokens" not in message_payload(message)
    tokens = message_payload(message, with_tokens=True)["tokens"]
    assert [t["kind"] for t in tokens] == ["emote", "text", "mention"]
    assert tokens[0]["url"] == "https://e/k"


def test_youtube_messages_are_not_tokenized():
    message = make_message("y", platform=Platform.YOUTUBE)
    assert message_payload(message, with_tokens=True)["tokens"] is None


def test_messages_payload_respects_limit(store):
    payload = _server(store).messages_payload(2)

    assert payload["count"] == 2
    assert payload["retention"] == 10
    assert [m["id"] for m in payload["messages"]] == ["twitch-1", "twitch-2"]


def test_status_payload_includes_usage_and_survives_failing_provider(store):
    def broken():
        raise RuntimeError("nope")

    server = _server(store, usage={"youtube": lambda: {"calls": 3}, "kick": broken})
    payload = server.status_payload()

    assert payload["connected"] == {"twitch": False, "kick": False, "youtube": False}
    assert payload["usage"] == {"youtube": {"calls": 3}}
    assert "last_error" in payload["platforms"]["twitch"]


def test_http_endpoints(store):
    server = _server(store)
    server.start()
    try:
        host, port = server.address[:2]
        base = f"http://{host}:{port}"

        response = httpx.get(f"{base}/api/chat/messages", params={"limit": 1, "tokens": 1})
        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["messages"][0]["tokens"][0]["kind"] == "text"
        assert response.headers["Access-Control-Allow-Origin"] == "*"

        assert httpx.get(f"{base}/api/chat/messages?limit=-1").status_code == 400
        assert httpx.get(f"{base}/api/chat/messages?limit=abc").status_code == 400
        assert httpx.get(f"{base}/api/chat/status").json()["connected"]["kick"] is False
        assert httpx.get(f"{base}/nope").status_code == 404
    finally:
        server.stop()

    assert server.address is None


def test_disabled_server_does_not_bind(store):
    server = ChatApiServer(ChatApiConfig(enabled=False), store=store, status=RuntimeState())
    server.start()
    assert server.address is None
