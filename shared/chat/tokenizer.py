"""Rich-text tokenizer.

Turns message text plus positional emote annotations into a flat,
non-overlapping token stream. Links and `@mentions` are detected here;
emote ranges come from the adapters.

Overlap resolution is by priority, emote > link > mention. A lower
priority range that touches an accepted range is dropped whole, never
clipped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shared.chat.colors import color_for
from shared.chat.events import EmoteToken

LINK_PATTERN = re.compile(r"(?:https?://|www\.)[^\s<>\"]+", re.IGNORECASE)
MENTION_PATTERN = re.compile(r"@(\w+)")

_TRAILING_PUNCTUATION = ".,!?;:)]}'"


class TokenKind(str, Enum):
    TEXT = "text"
    EMOTE = "emote"
    LINK = "link"
    MENTION = "mention"


# Lower value wins an overlap.
_PRIORITY = {
    TokenKind.EMOTE: 0,
    TokenKind.LINK: 1,
    TokenKind.MENTION: 2,
}


@dataclass(frozen=True)
class ChatToken:
    kind: TokenKind
    text: str
    start: int
    end: int  # inclusive
    url: Optional[str] = None
    emote: Optional[EmoteToken] = None
    username: Optional[str] = None
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind": self.kind.value,
            "text": self.text,
            "start": self.start,
            "end": self.end,
        }
        if self.url:
            payload["url"] = self.url
        if self.emote:
            payload["emote"] = self.emote.to_dict()
        if self.username:
            payload["username"] = self.username
        if self.color:
            payload["color"] = self.color
        return payload


@dataclass(frozen=True)
class _Span:
    kind: TokenKind
    start: int
    end: int
    emote: Optional[EmoteToken] = None
    url: Optional[str] = None
    username: Optional[str] = None

    def overlaps(self, other: "_Span") -> bool:
        return self.start <= other.end and other.start <= self.end


def detect_links(text: str) -> List[Tuple[int, int, str]]:
    found = []
    for match in LINK_PATTERN.finditer(text):
        raw = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if not raw:
            continue
        start = match.start()
        end = start + len(raw) - 1
        url = raw if raw.lower().startswith("http") else f"https://{raw}"
        found.append((start, end, url))
    return found


def detect_mentions(text: str) -> List[Tuple[int, int, str]]:
    found = []
    for match in MENTION_PATTERN.finditer(text):
        # "a@b" is an address, not a mention.
        if match.start() > 0 and not text[match.start() - 1].isspace():
            continue
        found.append((match.start(), match.end() - 1, match.group(1)))
    return found


def _emote_spans(text_length: int, emotes: Iterable[EmoteToken]) -> List[_Span]:
    spans = []
    for emote in emotes:
        for start, end in emote.positions:
            if start < 0 or end < start or end >= text_length:
                continue
            spans.append(_Span(TokenKind.EMOTE, start, end, emote=emote))
    return spans


def _resolve(spans: List[_Span]) -> List[_Span]:
    accepted: List[_Span] = []
    for span in sorted(spans, key=lambda s: (_PRIORITY[s.kind], s.start, s.end)):
        if any(span.overlaps(existing) for existing in accepted):
            continue
        accepted.append(span)
    accepted.sort(key=lambda s: s.start)
    return accepted


def tokenize(
    text: str,
    emotes: Iterable[EmoteToken] = (),
    *,
    link_detect: bool = True,
    mention_detect: bool = True,
    author: Optional[str] = None,
    author_color: Optional[str] = None,
) -> List[ChatToken]:
    """
    Produce the ordered token stream for one message.

    Mentions of `author` take `author_color`; any other mention gets the
    deterministic palette colour of the mentioned name.
    """
    if not text:
        return []

    spans = _emote_spans(len(text), emotes)
    if link_detect:
        spans.extend(
            _Span(TokenKind.LINK, start, end, url=url)
            for start, end, url in detect_links(text)
        )
    if mention_detect:
        spans.extend(
            _Span(TokenKind.MENTION, start, end, username=name)
            for start, end, name in detect_mentions(text)
        )

    tokens: List[ChatToken] = []
    cursor = 0
    for span in _resolve(spans):
        if span.start > cursor:
            tokens.append(
                ChatToken(TokenKind.TEXT, text[cursor:span.start], cursor, span.start - 1)
            )
        tokens.append(_to_token(text, span, author, author_color))
        cursor = span.end + 1

    if cursor < len(text):
        tokens.append(ChatToken(TokenKind.TEXT, text[cursor:], cursor, len(text) - 1))

    return tokens


def _to_token(
    text: str,
    span: _Span,
    author: Optional[str],
    author_color: Optional[str],
) -> ChatToken:
    literal = text[span.start:span.end + 1]

    if span.kind == TokenKind.EMOTE:
        return ChatToken(
            TokenKind.EMOTE,
            literal,
            span.start,
            span.end,
            url=span.emote.url or None,
            emote=span.emote,
        )

    if span.kind == TokenKind.LINK:
        return ChatToken(TokenKind.LINK, literal, span.start, span.end, url=span.url)

    username = span.username or ""
    if author and username.lower() == author.lower():
        color = author_color or color_for(author)
    else:
        color = color_for(username)
    return ChatToken(
        TokenKind.MENTION,
        literal,
        span.start,
        span.end,
        username=username,
        color=color,
    )


__all__ = [
    "ChatToken",
    "TokenKind",
    "LINK_PATTERN",
    "MENTION_PATTERN",
    "detect_links",
    "detect_mentions",
    "tokenize",
]
