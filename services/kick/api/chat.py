"""Kick chat protocol: chatroom lookup and Pusher frame decoding."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from shared.chat.errors import BootstrapError, DecodeError
from shared.chat.events import (
    BadgeToken,
    CanonicalChatMessage,
    EmoteToken,
    Platform,
    create_chat_message,
    parse_timestamp,
)
from shared.logging.logger import get_logger

log = get_logger("kick.chat", runtime="chatweave")

KICK_CHANNEL_URL = "https://kick.com/api/v2/channels/{channel}"
KICK_EMOTE_URL = "https://files.kick.com/emotes/{emote_id}/fullsize"

PUSHER_APP_KEY = "32cbd69e4b950bf97679"
PUSHER_URL = (
    f"wss://ws-us2.pusher.com/app/{PUSHER_APP_KEY}"
    "?protocol=7&client=js&version=8.4.0&flash=false"
)

EMOTE_PATTERN = re.compile(r"\[emote:(\d+):([^\]]+)\]")

EVENT_CONNECTION_ESTABLISHED = "pusher:connection_established"
EVENT_SUBSCRIPTION_SUCCEEDED = "pusher_internal:subscription_succeeded"
EVENT_SUBSCRIPTION_SUCCEEDED_LEGACY = "pusher:subscription_succeeded"
EVENT_SUBSCRIPTION_ERROR = "pusher:subscription_error"
EVENT_PING = "pusher:ping"
EVENT_ERROR = "pusher:error"
EVENT_CHAT_MESSAGE = "App\\Events\\ChatMessageEvent"
EVENT_SUBSCRIPTION = "App\\Events\\SubscriptionEvent"
EVENT_GIFTED_SUBSCRIPTIONS = "App\\Events\\GiftedSubscriptionsEvent"

SUBSCRIPTION_SUCCEEDED_EVENTS = frozenset(
    {EVENT_SUBSCRIPTION_SUCCEEDED, EVENT_SUBSCRIPTION_SUCCEEDED_LEGACY}
)

# Kick's edge rejects clients without a browser-like identity.
_LOOKUP_HEADERS = {
    "Accept": "application/json",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
}

UNKNOWN_USERNAME = "Unknown"


@dataclass
class PusherFrame:
    event: str
    data: Any = None
    channel: Optional[str] = None


# ---------------------------------------------------------------------- #
# Bootstrap
# ---------------------------------------------------------------------- #

async def resolve_chatroom_id(
    channel: str,
    *,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Resolve the numeric chatroom id for a channel slug.

    Every failure here is a bootstrap failure: without the id there is
    nothing to subscribe to.
    """
    url = KICK_CHANNEL_URL.format(channel=channel)
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url, headers=_LOOKUP_HEADERS)
    except httpx.HTTPError as e:
        raise BootstrapError(
            f"Kick channel lookup failed for '{channel}': {e}",
            platform=Platform.KICK.value,
        ) from e

    if response.status_code == 404:
        raise BootstrapError(
            f"Kick channel '{channel}' not found", platform=Platform.KICK.value
        )
    if response.status_code >= 400:
        raise BootstrapError(
            f"Kick channel lookup for '{channel}' returned HTTP {response.status_code}",
            platform=Platform.KICK.value,
        )

    try:
        payload = response.json()
    except ValueError as e:
        raise BootstrapError(
            f"Kick channel lookup for '{channel}' returned invalid JSON",
            platform=Platform.KICK.value,
        ) from e

    chatroom = payload.get("chatroom") if isinstance(payload, dict) else None
    chatroom_id = chatroom.get("id") if isinstance(chatroom, dict) else None
    if chatroom_id in (None, ""):
        raise BootstrapError(
            f"Chatroom id not found in Kick channel data for '{channel}'",
            platform=Platform.KICK.value,
        )

    try:
        return int(chatroom_id)
    except (TypeError, ValueError) as e:
        raise BootstrapError(
            f"Kick chatroom id for '{channel}' is not numeric: {chatroom_id!r}",
            platform=Platform.KICK.value,
        ) from e


# ---------------------------------------------------------------------- #
# Frames
# ---------------------------------------------------------------------- #

def chatroom_channel(chatroom_id: int) -> str:
    return f"chatrooms.{chatroom_id}.v2"


def subscribe_frame(chatroom_id: int) -> str:
    return json.dumps(
        {
            "event": "pusher:subscribe",
            "data": {"channel": chatroom_channel(chatroom_id), "auth": ""},
        }
    )


def pong_frame() -> str:
    return json.dumps({"event": "pusher:pong", "data": {}})


def decode_frame(raw: str) -> PusherFrame:
    """
    Decode a Pusher envelope. `data` is itself JSON-encoded as a string for
    application events; it is parsed when it looks like JSON.
    """
    try:
        envelope = json.loads(raw)
    except ValueError as e:
        raise DecodeError(f"Invalid Pusher frame: {e}", platform=Platform.KICK.value) from e

    if not isinstance(envelope, dict) or not envelope.get("event"):
        raise DecodeError("Pusher frame has no event", platform=Platform.KICK.value)

    data = envelope.get("data")
    if isinstance(data, str) and data[:1] in ("{", "["):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise DecodeError(
                f"Invalid payload for {envelope['event']}: {e}",
                platform=Platform.KICK.value,
            ) from e

    return PusherFrame(event=envelope["event"], data=data, channel=envelope.get("channel"))


# ---------------------------------------------------------------------- #
# Messages
# ---------------------------------------------------------------------- #

def extract_emotes(content: str) -> List[EmoteToken]:
    """Each `[emote:ID:NAME]` becomes one token spanning the markup itself."""
    return [
        EmoteToken(
            name=match.group(2),
            url=KICK_EMOTE_URL.format(emote_id=match.group(1)),
            positions=((match.start(), match.end() - 1),),
            source_platform="kick",
        )
        for match in EMOTE_PATTERN.finditer(content)
    ]


def sender_username(sender: Dict[str, Any]) -> str:
    return sender.get("username") or sender.get("slug") or UNKNOWN_USERNAME


def sender_badges(sender: Dict[str, Any]) -> List[BadgeToken]:
    identity = sender.get("identity") or {}
    badges = []
    for badge in identity.get("badges") or []:
        if not isinstance(badge, dict) or not badge.get("type"):
            continue
        badges.append(
            BadgeToken(
                set_id=str(badge["type"]),
                version=str(badge.get("count") or 1),
                description=badge.get("text") or "",
            )
        )
    return badges


def parse_chat_message(data: Any) -> Optional[CanonicalChatMessage]:
    if not isinstance(data, dict):
        return None

    content = data.get("content")
    sender = data.get("sender")
    if not content or not isinstance(sender, dict):
        return None

    identity = sender.get("identity") or {}
    return create_chat_message(
        platform=Platform.KICK,
        native_id=data.get("id"),
        username=sender_username(sender),
        text=content,
        timestamp=parse_timestamp(data.get("created_at")),
        emotes=extract_emotes(content),
        badges=sender_badges(sender),
        user_color=identity.get("color") or None,
    )


def parse_subscription(data: Any) -> Optional[CanonicalChatMessage]:
    if not isinstance(data, dict) or not data.get("username"):
        return None

    username = data["username"]
    months = data.get("months")
    if isinstance(months, int) and months > 1:
        text = f"{username} subscribed for {months} months!"
    else:
        text = f"{username} subscribed!"

    return create_chat_message(
        platform=Platform.KICK,
        native_id=data.get("id"),
        username=username,
        text=text,
        event_type="sub",
    )


def parse_gifted_subscriptions(data: Any) -> Optional[CanonicalChatMessage]:
    if not isinstance(data, dict):
        return None

    gifter = data.get("gifter_username") or "Anonymous"
    recipients = [name for name in data.get("gifted_usernames") or [] if name]
    if not recipients:
        return None

    if len(recipients) == 1:
        text = f"{gifter} gifted a sub to {recipients[0]}!"
    else:
        text = f"{gifter} gifted {len(recipients)} subs!"

    return create_chat_message(
        platform=Platform.KICK,
        native_id=data.get("id"),
        username=gifter,
        text=text,
        event_type="gift",
    )


MESSAGE_PARSERS = {
    EVENT_CHAT_MESSAGE: parse_chat_message,
    EVENT_SUBSCRIPTION: parse_subscription,
    EVENT_GIFTED_SUBSCRIPTIONS: parse_gifted_subscriptions,
}


__all__ = [
    "EMOTE_PATTERN",
    "KICK_EMOTE_URL",
    "MESSAGE_PARSERS",
    "PUSHER_URL",
    "PusherFrame",
    "chatroom_channel",
    "decode_frame",
    "extract_emotes",
    "parse_chat_message",
    "parse_gifted_subscriptions",
    "parse_subscription",
    "pong_frame",
    "resolve_chatroom_id",
    "subscribe_frame",
]
