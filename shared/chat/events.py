"""Canonical chat message schema and helpers.

Every adapter builds `CanonicalChatMessage` instances through
`create_chat_message`, which applies the shared rules in one place:
platform-prefixed ids, length capping before positions are finalised, and
dropping emote positions that fall outside the capped text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

MAX_MESSAGE_LENGTH = 300
ELLIPSIS = "…"


class Platform(str, Enum):
    TWITCH = "twitch"
    KICK = "kick"
    YOUTUBE = "youtube"

    @classmethod
    def from_value(cls, value: Any) -> "Platform":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        for member in cls:
            if normalized in {member.name.lower(), member.value}:
                return member
        raise ValueError(f"Unsupported platform: {value}")


Position = Tuple[int, int]


@dataclass(frozen=True)
class EmoteToken:
    """
    Positional emote annotation.

    `positions` are inclusive `(start, end)` character offsets into the
    message text. An empty `url` marks a textual/Unicode glyph.
    `source_platform` names the provider that resolved the emote
    (twitch, 7tv, bttv, kick, youtube), not the message platform.
    """

    name: str
    url: str
    positions: Tuple[Position, ...]
    source_platform: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "positions": [list(pos) for pos in self.positions],
            "sourcePlatform": self.source_platform,
        }


@dataclass(frozen=True)
class BadgeToken:
    set_id: str
    version: str
    url: str = ""
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "setId": self.set_id,
            "version": self.version,
            "url": self.url,
            "description": self.description,
        }


@dataclass(frozen=True)
class CanonicalChatMessage:
    id: str
    platform: Platform
    username: str
    message: str
    timestamp: datetime
    emotes: Tuple[EmoteToken, ...] = field(default_factory=tuple)
    badges: Tuple[BadgeToken, ...] = field(default_factory=tuple)
    user_color: Optional[str] = None
    event_type: Optional[str] = None
    is_first_time: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "platform": self.platform.value,
            "username": self.username,
            "message": self.message,
            "timestamp": self.timestamp.astimezone(timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "emotes": [emote.to_dict() for emote in self.emotes],
            "badges": [badge.to_dict() for badge in self.badges],
        }
        if self.user_color:
            payload["userColor"] = self.user_color
        if self.event_type:
            payload["eventType"] = self.event_type
        if self.is_first_time is not None:
            payload["isFirstTime"] = self.is_first_time
        return payload

    @classmethod
    def from_dict(
        cls,
        payload: Dict[str, Any],
        *,
        platform: Optional[Platform] = None,
        max_length: int = MAX_MESSAGE_LENGTH,
    ) -> "CanonicalChatMessage":
        """
        Rebuild a message from its wire form (camelCase keys).

        Used for collaborators that already emit canonical records. The
        result still goes through `create_chat_message` so length and
        position rules hold regardless of the sender.
        """
        if not isinstance(payload, dict):
            raise ValueError("message payload must be an object")

        resolved = platform or Platform.from_value(payload.get("platform"))
        emotes = []
        for raw in payload.get("emotes") or []:
            if not isinstance(raw, dict):
                continue
            emotes.append(
                EmoteToken(
                    name=str(raw.get("name") or ""),
                    url=str(raw.get("url") or ""),
                    positions=_coerce_positions(raw.get("positions")),
                    source_platform=str(
                        raw.get("sourcePlatform")
                        or raw.get("platform")
                        or resolved.value
                    ),
                )
            )

        badges = []
        for raw in payload.get("badges") or []:
            if not isinstance(raw, dict):
                continue
            badges.append(
                BadgeToken(
                    set_id=str(raw.get("setId") or raw.get("name") or ""),
                    version=str(raw.get("version") or "1"),
                    url=str(raw.get("url") or ""),
                    description=str(raw.get("description") or ""),
                )
            )

        return create_chat_message(
            platform=resolved,
            native_id=payload.get("id"),
            username=payload.get("username") or "",
            text=payload.get("message") or "",
            timestamp=parse_timestamp(payload.get("timestamp")),
            emotes=emotes,
            badges=badges,
            user_color=payload.get("userColor"),
            event_type=payload.get("eventType"),
            is_first_time=payload.get("isFirstTime"),
            max_length=max_length,
        )


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: Any) -> datetime:
    """
    Accept epoch milliseconds, ISO-8601 strings, or datetimes.

    Anything unparseable resolves to "now" so a message is never dropped
    for a bad clock field.
    """
    if isinstance(raw, datetime):
        if raw.tzinfo is None:
            return raw.replace(tzinfo=timezone.utc)
        return raw.astimezone(timezone.utc)

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        try:
            return datetime.fromtimestamp(raw / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return utc_now()

    if isinstance(raw, str) and raw.strip():
        value = raw.strip()
        if value.isdigit():
            return parse_timestamp(int(value))
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return utc_now()
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    return utc_now()


def truncate_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def prefixed_id(platform: Platform, native_id: Any) -> str:
    """Prefix a native id with its platform; generate one if missing."""
    raw = str(native_id).strip() if native_id is not None else ""
    if not raw:
        raw = uuid4().hex
    prefix = f"{platform.value}-"
    if raw.startswith(prefix):
        return raw
    return prefix + raw


def clamp_emotes(
    emotes: Iterable[EmoteToken],
    text_length: int,
) -> Tuple[EmoteToken, ...]:
    """
    Keep only positions that lie fully inside `[0, text_length)`.

    Tokens left without any position are dropped.
    """
    kept: List[EmoteToken] = []
    for emote in emotes:
        positions = tuple(
            (start, end)
            for start, end in emote.positions
            if 0 <= start <= end < text_length
        )
        if not positions:
            continue
        if positions == emote.positions:
            kept.append(emote)
        else:
            kept.append(
                EmoteToken(
                    name=emote.name,
                    url=emote.url,
                    positions=positions,
                    source_platform=emote.source_platform,
                )
            )
    return tuple(kept)


def create_chat_message(
    *,
    platform: Platform,
    native_id: Any,
    username: str,
    text: str,
    timestamp: Optional[datetime] = None,
    emotes: Optional[Sequence[EmoteToken]] = None,
    badges: Optional[Sequence[BadgeToken]] = None,
    user_color: Optional[str] = None,
    event_type: Optional[str] = None,
    is_first_time: Optional[bool] = None,
    max_length: int = MAX_MESSAGE_LENGTH,
) -> CanonicalChatMessage:
    message = truncate_message(str(text or ""), max_length)
    # Positions must stay valid against the capped text, ellipsis excluded.
    visible_length = min(len(message), max_length)

    return CanonicalChatMessage(
        id=prefixed_id(platform, native_id),
        platform=platform,
        username=str(username or ""),
        message=message,
        timestamp=timestamp or utc_now(),
        emotes=clamp_emotes(emotes or (), visible_length),
        badges=tuple(badges or ()),
        user_color=user_color or None,
        event_type=event_type or None,
        is_first_time=is_first_time,
    )


def _coerce_positions(raw: Any) -> Tuple[Position, ...]:
    positions: List[Position] = []
    if not isinstance(raw, (list, tuple)):
        return tuple()
    for entry in raw:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            continue
        try:
            start, end = int(entry[0]), int(entry[1])
        except (TypeError, ValueError):
            continue
        positions.append((start, end))
    return tuple(positions)


__all__ = [
    "MAX_MESSAGE_LENGTH",
    "ELLIPSIS",
    "Platform",
    "Position",
    "EmoteToken",
    "BadgeToken",
    "CanonicalChatMessage",
    "create_chat_message",
    "clamp_emotes",
    "parse_timestamp",
    "prefixed_id",
    "truncate_message",
    "utc_now",
]
