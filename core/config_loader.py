"""
Channel configuration loader.

Reads the channel configuration document, validates it against a JSON
Schema, then layers environment overrides on top. Validation failures
are logged as warnings so the runtime still boots with whatever part of
the document is usable.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from jsonschema import Draft7Validator

from core.context import (
    ChannelContext,
    KickChannelConfig,
    TwitchChannelConfig,
    YouTubeChannelConfig,
)
from shared.logging.logger import get_logger

log = get_logger("core.config_loader")


_CHANNEL_ENTRY = {
    "type": "object",
    "properties": {
        "channel": {"type": "string"},
        "enabled": {"type": "boolean"},
    },
}

CHANNELS_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "twitch": {
            "type": "object",
            "properties": {
                "channel": {"type": "string"},
                "username": {"type": "string"},
                "token": {"type": "string"},
                "client_id": {"type": "string"},
                "enabled": {"type": "boolean"},
            },
        },
        "kick": _CHANNEL_ENTRY,
        "youtube": {
            "type": "object",
            "properties": {
                "channelName": {"type": "string"},
                "backendUrl": {"type": "string"},
                "enabled": {"type": "boolean"},
            },
        },
        # Collaborator naming (role-based keys)
        "ircPlatform": _CHANNEL_ENTRY,
        "pubsubPlatform": _CHANNEL_ENTRY,
        "pollingPlatform": {
            "type": "object",
            "properties": {"channelName": {"type": "string"}},
        },
    },
}

_ROLE_ALIASES = {
    "ircPlatform": "twitch",
    "pubsubPlatform": "kick",
    "pollingPlatform": "youtube",
}


class ConfigLoader:
    """
    Loads and validates the channel configuration.

    Files:
      - shared/config/channels.json (override with CHATWEAVE_CHANNELS_PATH)

    Environment overrides (applied after the file):
      - TWITCH_CHANNEL, TWITCH_USERNAME, TWITCH_OAUTH_TOKEN, TWITCH_CLIENT_ID
      - KICK_CHANNEL
      - YOUTUBE_CHANNEL, YOUTUBE_BACKEND_URL
    """

    CHANNELS_PATH = Path("shared/config/channels.json")

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        override = self._env.get("CHATWEAVE_CHANNELS_PATH")
        self.path = Path(path or override or self.CHANNELS_PATH)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_json(self) -> Dict[str, Any]:
        if not self.path.exists():
            log.warning(f"channels config not found at {self.path}; using environment only")
            return {}

        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
                if isinstance(data, dict):
                    return data
                log.warning("channels config root is not an object; ignoring")
        except (OSError, ValueError) as e:
            log.warning(f"Failed to load channels config ({e}); using environment only")

        return {}

    @staticmethod
    def _validate(payload: Dict[str, Any]) -> None:
        validator = Draft7Validator(CHANNELS_SCHEMA)
        errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))
        for err in errors:
            loc = "/".join(str(p) for p in err.path)
            log.warning(f"channels config validation warning at '{loc}': {err.message}")

    @staticmethod
    def _entry(payload: Dict[str, Any], platform: str) -> Dict[str, Any]:
        entry = payload.get(platform)
        if not isinstance(entry, dict):
            for alias, target in _ROLE_ALIASES.items():
                if target == platform and isinstance(payload.get(alias), dict):
                    entry = payload[alias]
                    break
        if not isinstance(entry, dict):
            return {}
        if entry.get("enabled") is False:
            log.info(f"{platform} disabled in channels config")
            return {"enabled": False}
        return entry

    @staticmethod
    def _text(value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load_raw(self) -> Dict[str, Any]:
        payload = self._load_json()
        self._validate(payload)
        return payload

    def load(self) -> ChannelContext:
        payload = self.load_raw()
        env = self._env
        text = self._text

        twitch_raw = self._entry(payload, "twitch")
        kick_raw = self._entry(payload, "kick")
        youtube_raw = self._entry(payload, "youtube")

        ctx = ChannelContext()

        if twitch_raw.get("enabled", True):
            channel = text(env.get("TWITCH_CHANNEL")) or text(twitch_raw.get("channel"))
            if channel:
                ctx.twitch = TwitchChannelConfig(
                    channel=channel,
                    username=text(env.get("TWITCH_USERNAME")) or text(twitch_raw.get("username")),
                    token=text(env.get("TWITCH_OAUTH_TOKEN")) or text(twitch_raw.get("token")),
                    client_id=text(env.get("TWITCH_CLIENT_ID")) or text(twitch_raw.get("client_id")),
                )

        if kick_raw.get("enabled", True):
            channel = text(env.get("KICK_CHANNEL")) or text(kick_raw.get("channel"))
            if channel:
                ctx.kick = KickChannelConfig(channel=channel)

        if youtube_raw.get("enabled", True):
            channel_name = (
                text(env.get("YOUTUBE_CHANNEL"))
                or text(youtube_raw.get("channelName"))
                or text(youtube_raw.get("channel"))
            )
            if channel_name:
                ctx.youtube = YouTubeChannelConfig(
                    channel_name=channel_name,
                    backend_url=text(env.get("YOUTUBE_BACKEND_URL"))
                    or text(youtube_raw.get("backendUrl")),
                )

        platforms = ctx.configured_platforms()
        log.info(f"Channel config loaded; platforms: {platforms or 'none'}")
        if ctx.twitch:
            log.debug(
                "Twitch credentials resolved: "
                f"token={'SET' if ctx.twitch.token else 'ANONYMOUS'}, "
                f"client_id={'SET' if ctx.twitch.client_id else 'MISSING'}"
            )
        return ctx


__all__ = ["CHANNELS_SCHEMA", "ConfigLoader"]
