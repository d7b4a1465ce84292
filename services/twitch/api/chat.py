import random
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from services.twitch.api.emotes import TwitchEmoteCatalog
from shared.chat.colors import color_for
from shared.chat.events import (
    BadgeToken,
    CanonicalChatMessage,
    EmoteToken,
    Platform,
    create_chat_message,
    parse_timestamp,
)
from shared.logging.logger import get_logger

log = get_logger("twitch.chat", runtime="chatweave")

TWITCH_EMOTE_URL = "https://static-cdn.jtvnw.net/emoticons/v2/{emote_id}/default/dark/1.0"

_TAG_ESCAPES = {
    ":": ";",
    "s": " ",
    "\\": "\\",
    "r": "\r",
    "n": "\n",
}

_WORD_PATTERN = re.compile(r"\S+")

# USERNOTICE msg-id -> canonical eventType
USERNOTICE_EVENT_TYPES: Dict[str, str] = {
    "sub": "sub",
    "resub": "sub",
    "primepaidupgrade": "sub",
    "giftpaidupgrade": "sub",
    "anongiftpaidupgrade": "sub",
    "subgift": "gift",
    "anonsubgift": "gift",
    "submysterygift": "gift",
    "anonsubmysterygift": "gift",
    "raid": "raid",
    "announcement": "announcement",
}


@dataclass
class IrcLine:
    raw: str
    command: str
    tags: Dict[str, str] = field(default_factory=dict)
    prefix: str = ""
    params: Tuple[str, ...] = tuple()

    @property
    def trailing(self) -> Optional[str]:
        return self.params[-1] if self.params else None


# ---------------------------------------------------------------------- #
# Line parsing
# ---------------------------------------------------------------------- #

def unescape_tag_value(value: str) -> str:
    if "\\" not in value:
        return value

    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            nxt = value[i + 1]
            out.append(_TAG_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch != "\\":
            out.append(ch)
        i += 1
    return "".join(out)


def split_tags(raw: str) -> Tuple[Dict[str, str], str]:
    if raw.startswith("@"):
        if " " not in raw:
            return {}, ""
        tags_part, remainder = raw.split(" ", 1)
        tags = {}
        for pair in tags_part[1:].split(";"):
            if not pair:
                continue
            if "=" in pair:
                k, v = pair.split("=", 1)
                tags[k] = unescape_tag_value(v)
            else:
                tags[pair] = ""
        return tags, remainder

    return {}, raw


def split_prefix_and_command(raw: str) -> Tuple[str, str, Tuple[str, ...]]:
    prefix = ""
    rest = raw
    if raw.startswith(":"):
        if " " in raw:
            prefix, rest = raw[1:].split(" ", 1)
        else:
            prefix = raw[1:]
            rest = ""

    if " :" in rest:
        middle, trailing = rest.split(" :", 1)
        parts = middle.split()
        if not parts:
            return prefix, "", tuple()
        command = parts[0]
        params = tuple(parts[1:] + [trailing])
    else:
        parts = rest.split()
        if not parts:
            return prefix, "", tuple()
        command = parts[0]
        params = tuple(parts[1:])

    return prefix, command.upper(), params


def parse_username(prefix: str) -> str:
    # Prefix example: nickname!nickname@nickname.tmi.twitch.tv
    if "!" in prefix:
        return prefix.split("!", 1)[0]
    return ""


def parse_irc_line(raw: str) -> Optional[IrcLine]:
    line = raw.strip("\r\n")
    if not line.strip():
        return None

    tags, remainder = split_tags(line)
    prefix, command, params = split_prefix_and_command(remainder)
    if not command:
        return None
    return IrcLine(raw=line, command=command, tags=tags, prefix=prefix, params=params)


def split_frame(frame: str) -> List[str]:
    """A transport frame may carry several CRLF-terminated lines."""
    return [line for line in frame.split("\r\n") if line.strip()]


# ---------------------------------------------------------------------- #
# Emotes & badges
# ---------------------------------------------------------------------- #

def parse_emote_tag(raw: Optional[str], text: str) -> List[EmoteToken]:
    """
    Decode `emoteId:start-end,start-end/emoteId2:start-end`.

    Every range becomes its own EmoteToken. Ranges outside the text or
    malformed entries are skipped.
    """
    if not raw:
        return []

    emotes: List[EmoteToken] = []
    for group in raw.split("/"):
        if ":" not in group:
            continue
        emote_id, ranges = group.split(":", 1)
        if not emote_id:
            continue
        url = TWITCH_EMOTE_URL.format(emote_id=emote_id)

        for span in ranges.split(","):
            if "-" not in span:
                continue
            start_raw, end_raw = span.split("-", 1)
            try:
                start, end = int(start_raw), int(end_raw)
            except ValueError:
                continue
            if start < 0 or end < start or end >= len(text):
                continue
            emotes.append(
                EmoteToken(
                    name=text[start:end + 1],
                    url=url,
                    positions=((start, end),),
                    source_platform="twitch",
                )
            )

    emotes.sort(key=lambda e: e.positions[0][0])
    return emotes


def community_emotes(
    text: str,
    resolved: Sequence[EmoteToken],
    providers: Sequence[Tuple[str, Dict[str, str]]],
) -> List[EmoteToken]:
    """
    Best-effort whitespace-word pass over community emote maps.

    A word overlapping an emote the protocol already resolved is skipped.
    The first provider that knows a word claims that position; later
    providers never add a second token for the same span.
    """
    if not text or not any(table for _, table in providers):
        return []

    occupied = [pos for emote in resolved for pos in emote.positions]
    found: List[EmoteToken] = []

    for match in _WORD_PATTERN.finditer(text):
        start, end = match.start(), match.end() - 1
        if any(start <= o_end and o_start <= end for o_start, o_end in occupied):
            continue

        word = match.group(0)
        for source, table in providers:
            url = table.get(word)
            if not url:
                continue
            found.append(
                EmoteToken(
                    name=word,
                    url=url,
                    positions=((start, end),),
                    source_platform=source,
                )
            )
            occupied.append((start, end))
            break

    return found


def parse_badge_tag(raw: Optional[str], catalog: Optional[TwitchEmoteCatalog]) -> List[BadgeToken]:
    if not raw:
        return []

    badges = []
    for pair in raw.split(","):
        if not pair:
            continue
        set_id, _, version = pair.partition("/")
        url, description = "", ""
        if catalog:
            entry = catalog.badge(set_id, version)
            if entry:
                url, description = entry
        badges.append(
            BadgeToken(set_id=set_id, version=version or "1", url=url, description=description)
        )
    return badges


# ---------------------------------------------------------------------- #
# Client
# ---------------------------------------------------------------------- #

class TwitchChatClient:
    """
    Twitch IRC protocol handling (transport-agnostic).

    - Builds the login/join handshake (authenticated or anonymous)
    - Parses frames into IrcLine records
    - Converts PRIVMSG / USERNOTICE lines into canonical messages
    """

    WS_URL = "wss://irc-ws.chat.twitch.tv:443"

    def __init__(
        self,
        channel: str,
        *,
        nickname: Optional[str] = None,
        token: Optional[str] = None,
        request_tags: bool = True,
        catalog: Optional[TwitchEmoteCatalog] = None,
    ):
        self.channel = self._normalize_channel(channel)
        if not self.channel:
            raise ValueError("Twitch channel is required")

        self.token = self._normalize_token(token) if token else None
        if self.token and nickname:
            self.nickname = nickname.strip().lower()
        else:
            self.nickname = self.anonymous_nickname()
        self.request_tags = request_tags
        self.catalog = catalog

    @property
    def anonymous(self) -> bool:
        return self.token is None

    # ------------------------------------------------------------------ #

    def handshake_lines(self) -> List[str]:
        lines = []
        if self.request_tags:
            lines.append("CAP REQ :twitch.tv/tags twitch.tv/commands")
        if self.token:
            lines.append(f"PASS {self.token}")
        lines.append(f"NICK {self.nickname}")
        lines.append(f"JOIN #{self.channel}")
        return lines

    @staticmethod
    def pong_for(line: IrcLine) -> str:
        # Twitch IRC sends: PING :tmi.twitch.tv
        payload = line.trailing or "tmi.twitch.tv"
        return f"PONG :{payload}"

    @staticmethod
    def is_join_confirmation(line: IrcLine) -> bool:
        # 366 = RPL_ENDOFNAMES, sent once the JOIN completed
        return line.command == "366"

    @staticmethod
    def is_auth_failure(line: IrcLine) -> bool:
        text = (line.trailing or "").lower()
        return line.command == "NOTICE" and (
            "login authentication failed" in text or "improperly formatted auth" in text
        )

    # ------------------------------------------------------------------ #

    def build_privmsg(self, line: IrcLine) -> Optional[CanonicalChatMessage]:
        if line.command != "PRIVMSG" or len(line.params) < 2:
            return None

        text = line.params[1]
        # /me actions arrive wrapped in CTCP ACTION markers
        if text.startswith("\x01ACTION ") and text.endswith("\x01"):
            text = text[8:-1]

        return self._build(line, text, event_type=None)

    def build_usernotice(self, line: IrcLine) -> Optional[CanonicalChatMessage]:
        if line.command != "USERNOTICE":
            return None

        msg_id = line.tags.get("msg-id", "")
        user_text = line.params[1] if len(line.params) >= 2 else ""
        event_type = USERNOTICE_EVENT_TYPES.get(msg_id, msg_id or "notice")

        if user_text:
            return self._build(line, user_text, event_type=event_type)

        text = line.tags.get("system-msg") or self._synthesize_notice(line)
        return self._build(line, text, event_type=event_type, annotate=False)

    # ------------------------------------------------------------------ #

    def _build(
        self,
        line: IrcLine,
        text: str,
        *,
        event_type: Optional[str],
        annotate: bool = True,
    ) -> CanonicalChatMessage:
        tags = line.tags
        username = (
            tags.get("display-name")
            or parse_username(line.prefix)
            or tags.get("login")
            or "unknown"
        )

        color = tags.get("color") or color_for(username)

        emotes: List[EmoteToken] = []
        if annotate:
            emotes = parse_emote_tag(tags.get("emotes"), text)
            if self.catalog:
                emotes.extend(
                    community_emotes(text, emotes, self.catalog.community_providers())
                )

        first_msg = tags.get("first-msg")

        message = create_chat_message(
            platform=Platform.TWITCH,
            native_id=tags.get("id"),
            username=username,
            text=text,
            timestamp=parse_timestamp(tags.get("tmi-sent-ts")),
            emotes=emotes,
            badges=parse_badge_tag(tags.get("badges"), self.catalog),
            user_color=color,
            event_type=event_type,
            is_first_time=(first_msg == "1") if first_msg is not None else None,
        )

        log.debug(
            f"[#{self.channel}] {message.username}: {message.message} "
            f"(id={message.id}, emotes={len(message.emotes)})"
        )
        return message

    @staticmethod
    def _synthesize_notice(line: IrcLine) -> str:
        tags = line.tags
        msg_id = tags.get("msg-id", "")
        name = tags.get("display-name") or tags.get("login") or "Someone"

        if msg_id == "sub":
            return f"{name} subscribed!"
        if msg_id == "resub":
            months = tags.get("msg-param-cumulative-months") or "?"
            return f"{name} resubscribed for {months} months!"
        if msg_id in {"subgift", "anonsubgift"}:
            recipient = tags.get("msg-param-recipient-display-name") or "someone"
            return f"{name} gifted a sub to {recipient}!"
        if msg_id in {"submysterygift", "anonsubmysterygift"}:
            count = tags.get("msg-param-mass-gift-count") or "?"
            return f"{name} is gifting {count} subs!"
        if msg_id == "raid":
            raider = tags.get("msg-param-displayName") or name
            viewers = tags.get("msg-param-viewerCount") or "?"
            return f"{raider} is raiding with {viewers} viewers!"
        if msg_id in {"primepaidupgrade", "giftpaidupgrade", "anongiftpaidupgrade"}:
            return f"{name} continued their subscription!"
        return f"{name}: {msg_id or 'notice'}"

    # ------------------------------------------------------------------ #

    @staticmethod
    def anonymous_nickname() -> str:
        return f"justinfan{random.randint(10000, 99999)}"

    @staticmethod
    def _normalize_token(token: str) -> str:
        token = token.strip()
        if not token.startswith("oauth:"):
            return f"oauth:{token}"
        return token

    @staticmethod
    def _normalize_channel(channel: str) -> str:
        return (channel or "").lstrip("#").strip().lower()


__all__ = [
    "IrcLine",
    "TwitchChatClient",
    "TWITCH_EMOTE_URL",
    "USERNOTICE_EVENT_TYPES",
    "community_emotes",
    "parse_badge_tag",
    "parse_emote_tag",
    "parse_irc_line",
    "split_frame",
    "split_prefix_and_command",
    "split_tags",
    "unescape_tag_value",
]
