"""
Live chat action decoding for YouTube.

The upstream payload has shipped in several shapes over time (raw
InnerTube renderers keyed by name, and parsed records tagged with a
`type` field). Every shape that means the same thing decodes to the same
canonical message.

Emote positions for image emotes live in logical cursor space: each image
counts as one character even though the message carries the full <img>
markup. Textual `:name:` fallbacks count their literal length.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shared.chat.errors import DecodeError
from shared.chat.events import (
    BadgeToken,
    CanonicalChatMessage,
    EmoteToken,
    Platform,
    create_chat_message,
    parse_timestamp,
)
from shared.logging.logger import get_logger

log = get_logger("youtube.decoder", runtime="chatweave")

MAX_MESSAGES_PER_BATCH = 50
DEFAULT_AUTHOR = "YouTube User"

IMG_TEMPLATE = (
    '<img src="{url}" alt="{alt}" class="yt-emote" '
    'style="height:1em;vertical-align:-0.2em;" />'
)

# Channel custom emoji ids and Noto emoji file ids
OPAQUE_ID_PATTERN = re.compile(
    r"UC[\w-]{22}/[\w-]{8,}|emoji_u[0-9a-f]{4,5}(?:_[0-9a-f]{4,5})*"
)

TEXT_MESSAGE = "text"
PAID_MESSAGE = "superchat"
MEMBERSHIP = "membership"

ITEM_KINDS: Dict[str, str] = {
    "liveChatTextMessageRenderer": TEXT_MESSAGE,
    "LiveChatTextMessage": TEXT_MESSAGE,
    "liveChatPaidMessageRenderer": PAID_MESSAGE,
    "LiveChatPaidMessage": PAID_MESSAGE,
    "liveChatMembershipItemRenderer": MEMBERSHIP,
    "LiveChatMembershipItem": MEMBERSHIP,
}


# ---------------------------------------------------------------------- #
# Emote catalog
# ---------------------------------------------------------------------- #

def strip_colons(shortcut: str) -> str:
    return shortcut.strip().strip(":")


def last_segment(emoji_id: str) -> str:
    return emoji_id.rstrip("/").rsplit("/", 1)[-1]


def derive_name(emoji_id: str) -> str:
    """Best-effort readable name for an opaque emoji id."""
    if emoji_id.startswith("emoji_u"):
        names = []
        for part in emoji_id[len("emoji_u"):].split("_"):
            try:
                names.append(unicodedata.name(chr(int(part, 16))))
            except (ValueError, OverflowError):
                return emoji_id
        return "_".join(names).lower().replace(" ", "_")
    if "/" in emoji_id:
        return last_segment(emoji_id)
    return emoji_id


class EmoteCatalog:
    """
    Name / id -> image URL lookup with several alias keys per emote.

    Each emote is reachable by its shortcut (with and without colons), its
    full opaque id, the last path segment of that id, and its literal
    Unicode form when it has one.
    """

    def __init__(self) -> None:
        self._urls: Dict[str, str] = {}
        self._names: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._urls)

    def __contains__(self, key: str) -> bool:
        return key in self._urls

    @classmethod
    def from_emote_map(cls, emote_map: Optional[Dict[str, str]]) -> "EmoteCatalog":
        catalog = cls()
        catalog.merge_map(emote_map or {})
        return catalog

    def merge_map(self, emote_map: Dict[str, str]) -> None:
        for key, url in emote_map.items():
            if not key or not url:
                continue
            if OPAQUE_ID_PATTERN.fullmatch(key):
                self.register(url, emoji_id=key)
            else:
                self.register(url, shortcuts=[key])

    def register(
        self,
        url: str,
        *,
        emoji_id: Optional[str] = None,
        shortcuts: Iterable[str] = (),
        unicode: Optional[str] = None,
    ) -> None:
        if not url:
            return

        shortcuts = [s for s in shortcuts if s]
        name = strip_colons(shortcuts[0]) if shortcuts else None

        for shortcut in shortcuts:
            self._urls.setdefault(shortcut, url)
            self._urls.setdefault(strip_colons(shortcut), url)
        if emoji_id:
            self._urls.setdefault(emoji_id, url)
            self._urls.setdefault(last_segment(emoji_id), url)
            if name:
                self._names.setdefault(emoji_id, name)
                self._names.setdefault(last_segment(emoji_id), name)
        if unicode:
            self._urls.setdefault(unicode, url)

    def url_for(self, *keys: Optional[str]) -> Optional[str]:
        for key in keys:
            if not key:
                continue
            url = self._urls.get(key) or self._urls.get(strip_colons(key))
            if url:
                return url
        return None

    def name_for_id(self, emoji_id: str) -> str:
        return (
            self._names.get(emoji_id)
            or self._names.get(last_segment(emoji_id))
            or derive_name(emoji_id)
        )


def rewrite_opaque_ids(text: str, catalog: EmoteCatalog) -> str:
    """Replace literal opaque emoji ids embedded in text with `:name:`."""
    return OPAQUE_ID_PATTERN.sub(
        lambda match: f":{catalog.name_for_id(match.group(0))}:", text
    )


# ---------------------------------------------------------------------- #
# Runs
# ---------------------------------------------------------------------- #

@dataclass
class DecodedRuns:
    text: str = ""
    emotes: List[EmoteToken] = field(default_factory=list)
    cursor: int = 0


def _image_url(image: Any) -> Optional[str]:
    if isinstance(image, list):
        return image[0].get("url") if image and isinstance(image[0], dict) else None
    if isinstance(image, dict):
        thumbnails = image.get("thumbnails")
        if isinstance(thumbnails, list) and thumbnails and isinstance(thumbnails[0], dict):
            return thumbnails[0].get("url")
        return image.get("url")
    return None


def _message_runs(message: Any) -> List[Dict[str, Any]]:
    if isinstance(message, list):
        return [run for run in message if isinstance(run, dict)]
    if isinstance(message, dict):
        runs = message.get("runs")
        if isinstance(runs, list):
            return [run for run in runs if isinstance(run, dict)]
        if isinstance(message.get("simpleText"), str):
            return [{"text": message["simpleText"]}]
        if isinstance(message.get("text"), str):
            return [{"text": message["text"]}]
    return []


def decode_runs(runs: Iterable[Dict[str, Any]], catalog: EmoteCatalog) -> DecodedRuns:
    out = DecodedRuns()
    parts: List[str] = []

    for run in runs:
        if isinstance(run.get("text"), str):
            text = rewrite_opaque_ids(run["text"], catalog)
            parts.append(text)
            out.cursor += len(text)
            continue

        emoji = run.get("emoji")
        if not isinstance(emoji, dict):
            continue

        emoji_id = emoji.get("emojiId") or emoji.get("emoji_id") or ""
        shortcuts = [s for s in emoji.get("shortcuts") or [] if isinstance(s, str)]
        shortcut = shortcuts[0] if shortcuts else ""
        is_custom = emoji.get("isCustomEmoji") or emoji.get("is_custom")
        unicode = emoji_id if emoji_id and not is_custom and "/" not in emoji_id else None

        url = _image_url(emoji.get("image"))
        if url:
            catalog.register(url, emoji_id=emoji_id or None, shortcuts=shortcuts, unicode=unicode)
        else:
            url = catalog.url_for(
                shortcut,
                emoji_id,
                last_segment(emoji_id) if emoji_id else None,
                derive_name(emoji_id) if emoji_id else None,
            )

        name = strip_colons(shortcut) if shortcut else (
            catalog.name_for_id(emoji_id) if emoji_id else "emoji"
        )

        if url:
            alt = shortcut or f":{name}:"
            parts.append(IMG_TEMPLATE.format(url=url, alt=alt))
            out.emotes.append(
                EmoteToken(
                    name=alt,
                    url=url,
                    positions=((out.cursor, out.cursor),),
                    source_platform="youtube",
                )
            )
            out.cursor += 1
        else:
            fallback = f":{name}:"
            parts.append(fallback)
            out.cursor += len(fallback)

    out.text = "".join(parts)
    return out


# ---------------------------------------------------------------------- #
# Items
# ---------------------------------------------------------------------- #

def _simple_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        if isinstance(value.get("simpleText"), str):
            return value["simpleText"]
        runs = value.get("runs")
        if isinstance(runs, list):
            return "".join(r.get("text", "") for r in runs if isinstance(r, dict))
        if isinstance(value.get("text"), str):
            return value["text"]
    return None


def _author_name(item: Dict[str, Any]) -> str:
    name = _simple_text(item.get("authorName"))
    if name:
        return name
    author = item.get("author")
    if isinstance(author, dict) and author.get("name"):
        return _simple_text(author["name"]) or DEFAULT_AUTHOR
    return DEFAULT_AUTHOR


def _badges(item: Dict[str, Any]) -> List[BadgeToken]:
    badges: List[BadgeToken] = []

    for raw in item.get("authorBadges") or []:
        renderer = raw.get("liveChatAuthorBadgeRenderer") if isinstance(raw, dict) else None
        if not isinstance(renderer, dict):
            continue
        icon = renderer.get("icon") or {}
        custom = renderer.get("customThumbnail")
        set_id = (icon.get("iconType") or ("member" if custom else "")).lower()
        if not set_id:
            continue
        badges.append(
            BadgeToken(
                set_id=set_id,
                version="1",
                url=_image_url(custom) or _image_url(icon) or "",
                description=_simple_text(renderer.get("tooltip")) or "",
            )
        )

    author = item.get("author")
    if isinstance(author, dict):
        for raw in author.get("badges") or []:
            if not isinstance(raw, dict):
                continue
            custom = raw.get("custom_thumbnail")
            set_id = (raw.get("icon_type") or ("member" if custom else "")).lower()
            if not set_id:
                continue
            badges.append(
                BadgeToken(
                    set_id=set_id,
                    version="1",
                    url=_image_url(custom) or "",
                    description=raw.get("tooltip") or "",
                )
            )

    return badges


def _timestamp(item: Dict[str, Any]):
    usec = item.get("timestampUsec") or item.get("timestamp_usec")
    if usec not in (None, ""):
        try:
            return parse_timestamp(int(usec) // 1000)
        except (TypeError, ValueError):
            pass
    return parse_timestamp(item.get("timestamp"))


def item_kind(item: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """Return (kind, renderer body) for either the tagged or keyed shape."""
    tagged = item.get("type")
    if isinstance(tagged, str):
        return ITEM_KINDS.get(tagged), item

    for key, kind in ITEM_KINDS.items():
        body = item.get(key)
        if isinstance(body, dict):
            return kind, body
    return None, item


def decode_item(
    item: Dict[str, Any],
    catalog: EmoteCatalog,
    *,
    max_length: Optional[int] = None,
) -> Optional[CanonicalChatMessage]:
    """Decode one chat item; unknown kinds return None."""
    kind, body = item_kind(item)
    if kind is None:
        return None

    username = _author_name(body)
    decoded = decode_runs(_message_runs(body.get("message")), catalog)
    text = decoded.text
    emotes = decoded.emotes
    event_type = body.get("eventType")

    if kind == TEXT_MESSAGE and not text:
        return None

    if kind == PAID_MESSAGE:
        event_type = PAID_MESSAGE
        amount = _simple_text(body.get("purchaseAmountText")) or _simple_text(
            body.get("purchase_amount")
        )
        if amount:
            prefix = f"💰 {amount} - "
            text = prefix + text
            emotes = [
                EmoteToken(
                    name=e.name,
                    url=e.url,
                    positions=tuple((s + len(prefix), t + len(prefix)) for s, t in e.positions),
                    source_platform=e.source_platform,
                )
                for e in emotes
            ]
    elif kind == MEMBERSHIP:
        event_type = MEMBERSHIP
        text = f"🎗️ {username} became a member!"
        emotes = []

    kwargs = {}
    if max_length is not None:
        kwargs["max_length"] = max_length

    author_name = body.get("authorName")
    color = author_name.get("color") if isinstance(author_name, dict) else None

    return create_chat_message(
        platform=Platform.YOUTUBE,
        native_id=body.get("id"),
        username=username,
        text=text,
        timestamp=_timestamp(body),
        emotes=emotes,
        badges=_badges(body),
        user_color=color,
        event_type=event_type,
        **kwargs,
    )


def action_item(action: Any) -> Optional[Dict[str, Any]]:
    """Extract the chat item from any known "add chat item" action shape."""
    if not isinstance(action, dict):
        return None

    add = action.get("addChatItemAction")
    if isinstance(add, dict) and isinstance(add.get("item"), dict):
        return add["item"]

    if action.get("type") == "AddChatItemAction" and isinstance(action.get("item"), dict):
        return action["item"]

    return None


def decode_actions(
    actions: Iterable[Any],
    catalog: EmoteCatalog,
    *,
    limit: int = MAX_MESSAGES_PER_BATCH,
    max_length: Optional[int] = None,
) -> List[CanonicalChatMessage]:
    """
    Decode a batch of actions, capped at `limit` messages.

    Unknown action kinds are ignored. A malformed item is logged and
    skipped; it never fails the batch.
    """
    messages: List[CanonicalChatMessage] = []

    for action in actions or []:
        if len(messages) >= limit:
            break

        item = action_item(action)
        if item is None:
            continue

        try:
            message = decode_item(item, catalog, max_length=max_length)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            error = DecodeError(f"Skipping malformed chat item: {e}", platform="youtube")
            log.warning(error.describe())
            continue

        if message is not None:
            messages.append(message)

    return messages


def decode_messages(
    payloads: Iterable[Any],
    *,
    limit: int = MAX_MESSAGES_PER_BATCH,
    max_length: Optional[int] = None,
) -> List[CanonicalChatMessage]:
    """Rebuild already-canonical message records; malformed ones are skipped."""
    messages: List[CanonicalChatMessage] = []
    for payload in payloads or []:
        if len(messages) >= limit:
            break
        try:
            kwargs = {"max_length": max_length} if max_length is not None else {}
            messages.append(
                CanonicalChatMessage.from_dict(payload, platform=Platform.YOUTUBE, **kwargs)
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            log.warning(f"Skipping malformed chat message record: {e}")
    return messages


__all__ = [
    "EmoteCatalog",
    "DecodedRuns",
    "IMG_TEMPLATE",
    "ITEM_KINDS",
    "MAX_MESSAGES_PER_BATCH",
    "OPAQUE_ID_PATTERN",
    "action_item",
    "decode_actions",
    "decode_item",
    "decode_messages",
    "decode_runs",
    "derive_name",
    "item_kind",
    "rewrite_opaque_ids",
]
