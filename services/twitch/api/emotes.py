"""
Third-party emote providers and badge art for a Twitch room.

Everything here is best-effort: a provider that is down or returns an
unexpected shape only costs its emotes, never the chat connection.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Dict, List, Optional, Tuple

import httpx

from shared.logging.logger import get_logger

log = get_logger("twitch.emotes", runtime="chatweave")

SEVENTV_USER_URL = "https://7tv.io/v3/users/twitch/{room_id}"
SEVENTV_GLOBAL_URL = "https://7tv.io/v3/emote-sets/global"
BTTV_USER_URL = "https://api.betterttv.net/3/cached/users/twitch/{room_id}"
BTTV_GLOBAL_URL = "https://api.betterttv.net/3/cached/emotes/global"
BTTV_EMOTE_URL = "https://cdn.betterttv.net/emote/{emote_id}/1x"
HELIX_GLOBAL_BADGES_URL = "https://api.twitch.tv/helix/chat/badges/global"
HELIX_CHANNEL_BADGES_URL = "https://api.twitch.tv/helix/chat/badges"

DEFAULT_TIMEOUT = 8.0


# ---------------------------------------------------------------------- #
# Payload parsers (pure)
# ---------------------------------------------------------------------- #

def parse_seventv_emotes(payload: Any) -> Dict[str, str]:
    """Accepts either a user payload (`emote_set.emotes`) or an emote set."""
    if not isinstance(payload, dict):
        return {}

    emote_set = payload.get("emote_set") if "emote_set" in payload else payload
    if not isinstance(emote_set, dict):
        return {}

    table: Dict[str, str] = {}
    for emote in emote_set.get("emotes") or []:
        if not isinstance(emote, dict):
            continue
        name = emote.get("name")
        host = ((emote.get("data") or {}).get("host") or {})
        base = host.get("url")
        if not name or not base:
            continue
        if base.startswith("//"):
            base = f"https:{base}"
        table[name] = f"{base}/1x.webp"
    return table


def parse_bttv_emotes(payload: Any) -> Dict[str, str]:
    """Accepts the global list or a user payload with channel/shared emotes."""
    if isinstance(payload, list):
        entries = payload
    elif isinstance(payload, dict):
        entries = list(payload.get("channelEmotes") or []) + list(
            payload.get("sharedEmotes") or []
        )
    else:
        return {}

    table: Dict[str, str] = {}
    for emote in entries:
        if not isinstance(emote, dict):
            continue
        code = emote.get("code")
        emote_id = emote.get("id")
        if code and emote_id:
            table[code] = BTTV_EMOTE_URL.format(emote_id=emote_id)
    return table


def parse_helix_badges(payload: Any) -> Dict[Tuple[str, str], Tuple[str, str]]:
    table: Dict[Tuple[str, str], Tuple[str, str]] = {}
    if not isinstance(payload, dict):
        return table

    for badge_set in payload.get("data") or []:
        set_id = badge_set.get("set_id")
        if not set_id:
            continue
        for version in badge_set.get("versions") or []:
            version_id = version.get("id")
            if not version_id:
                continue
            table[(set_id, str(version_id))] = (
                version.get("image_url_1x") or "",
                version.get("title") or version.get("description") or "",
            )
    return table


# ---------------------------------------------------------------------- #
# Catalog
# ---------------------------------------------------------------------- #

class TwitchEmoteCatalog:
    """
    Per-connection cache of 7TV / BTTV emote maps and Helix badge art.

    Rules:
    - Channel emotes take precedence over globals of the same provider
    - 7TV is consulted before BTTV for a given word
    - Helix badges are only requested when a client id and token exist
    """

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        oauth_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.oauth_token = (oauth_token or "").replace("oauth:", "") or None
        self.timeout = timeout
        self._transport = transport

        self._lock = threading.Lock()
        self._seventv: Dict[str, str] = {}
        self._bttv: Dict[str, str] = {}
        self._badges: Dict[Tuple[str, str], Tuple[str, str]] = {}
        self._loaded_room: Optional[str] = None

    # ------------------------------------------------------------------ #

    @property
    def loaded_room(self) -> Optional[str]:
        return self._loaded_room

    def community_providers(self) -> List[Tuple[str, Dict[str, str]]]:
        with self._lock:
            return [("7tv", self._seventv), ("bttv", self._bttv)]

    def badge(self, set_id: str, version: str) -> Optional[Tuple[str, str]]:
        with self._lock:
            return self._badges.get((set_id, version))

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {
                "7tv": len(self._seventv),
                "bttv": len(self._bttv),
                "badges": len(self._badges),
            }

    def clear(self) -> None:
        with self._lock:
            self._seventv = {}
            self._bttv = {}
            self._badges = {}
            self._loaded_room = None

    # ------------------------------------------------------------------ #

    async def load(self, room_id: str) -> None:
        """Fetch every provider for `room_id` concurrently."""
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            seventv_user, seventv_global, bttv_user, bttv_global, badges = (
                await asyncio.gather(
                    self._get_json(client, SEVENTV_USER_URL.format(room_id=room_id)),
                    self._get_json(client, SEVENTV_GLOBAL_URL),
                    self._get_json(client, BTTV_USER_URL.format(room_id=room_id)),
                    self._get_json(client, BTTV_GLOBAL_URL),
                    self._load_badges(client, room_id),
                )
            )

        seventv = parse_seventv_emotes(seventv_global)
        seventv.update(parse_seventv_emotes(seventv_user))
        bttv = parse_bttv_emotes(bttv_global)
        bttv.update(parse_bttv_emotes(bttv_user))

        with self._lock:
            self._seventv = seventv
            self._bttv = bttv
            self._badges = badges
            self._loaded_room = room_id

        log.info(
            f"Emote catalog loaded for room {room_id} "
            f"(7tv={len(seventv)}, bttv={len(bttv)}, badges={len(badges)})"
        )

    async def _load_badges(
        self, client: httpx.AsyncClient, room_id: str
    ) -> Dict[Tuple[str, str], Tuple[str, str]]:
        if not (self.client_id and self.oauth_token):
            return {}

        headers = {
            "Client-Id": self.client_id,
            "Authorization": f"Bearer {self.oauth_token}",
        }
        global_payload = await self._get_json(client, HELIX_GLOBAL_BADGES_URL, headers=headers)
        channel_payload = await self._get_json(
            client,
            HELIX_CHANNEL_BADGES_URL,
            headers=headers,
            params={"broadcaster_id": room_id},
        )

        table = parse_helix_badges(global_payload)
        table.update(parse_helix_badges(channel_payload))
        return table

    @staticmethod
    async def _get_json(
        client: httpx.AsyncClient,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            response = await client.get(url, headers=headers, params=params)
            response.raise_for_status()
            return response.json()
        except asyncio.CancelledError:
            raise
        except (httpx.HTTPError, ValueError) as e:
            log.warning(f"Emote provider request failed ({url}): {e}")
            return None


__all__ = [
    "TwitchEmoteCatalog",
    "parse_bttv_emotes",
    "parse_helix_badges",
    "parse_seventv_emotes",
]
