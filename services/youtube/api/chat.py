import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from shared.chat.errors import TransientFetchError
from shared.logging.logger import get_logger

log = get_logger("youtube.chat", runtime="chatweave")

DEFAULT_BACKEND_URL = "http://127.0.0.1:5173/api/youtube-chat"


@dataclass
class BackendResponse:
    """
    One exchange with the channel-resolution / polling backend.

    The backend always answers HTTP 200 and reports failures in-band
    through `error`.
    """

    messages: List[Dict[str, Any]] = field(default_factory=list)
    actions: List[Any] = field(default_factory=list)
    video_id: Optional[str] = None
    continuation: Optional[str] = None
    emote_map: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    polling_interval_ms: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "BackendResponse":
        if not isinstance(payload, dict):
            raise TransientFetchError(
                "YouTube backend returned a non-object body", platform="youtube"
            )

        messages = payload.get("messages")
        actions = payload.get("actions")
        emote_map = payload.get("emoteMap")
        interval = payload.get("pollingIntervalMillis")

        return cls(
            messages=messages if isinstance(messages, list) else [],
            actions=actions if isinstance(actions, list) else [],
            video_id=payload.get("videoId") or None,
            continuation=payload.get("continuation") or None,
            emote_map=emote_map if isinstance(emote_map, dict) else {},
            error=payload.get("error") or None,
            polling_interval_ms=interval if isinstance(interval, (int, float)) else None,
        )


class YouTubeChatClient:
    """
    HTTP client for the polling backend.

    Responsibilities:
    - Send `{channelName, continuation?, videoId?}` and parse the reply
    - Bound every request with an explicit timeout
    - Translate timeouts, non-2xx statuses and bad JSON into
      TransientFetchError; in-band `error` strings are left to the caller
    """

    def __init__(
        self,
        *,
        channel_name: str,
        backend_url: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not channel_name:
            raise RuntimeError("YouTube channel name is required")

        self.channel_name = channel_name
        self.backend_url = backend_url or DEFAULT_BACKEND_URL
        self.timeout = timeout
        self.call_count = 0

        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def fetch(
        self,
        *,
        continuation: Optional[str] = None,
        video_id: Optional[str] = None,
    ) -> BackendResponse:
        body: Dict[str, Any] = {"channelName": self.channel_name}
        if continuation:
            body["continuation"] = continuation
        if video_id:
            body["videoId"] = video_id

        self.call_count += 1
        try:
            response = await self._client.post(self.backend_url, json=body)
        except asyncio.CancelledError:
            raise
        except httpx.TimeoutException as e:
            raise TransientFetchError(
                f"YouTube backend timed out after {self.timeout}s", platform="youtube"
            ) from e
        except httpx.HTTPError as e:
            raise TransientFetchError(
                f"YouTube backend request failed: {e}", platform="youtube"
            ) from e

        if not response.is_success:
            raise TransientFetchError(
                f"YouTube backend returned HTTP {response.status_code}",
                platform="youtube",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientFetchError(
                f"YouTube backend returned invalid JSON: {e}", platform="youtube"
            ) from e

        return BackendResponse.from_payload(payload)

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["BackendResponse", "DEFAULT_BACKEND_URL", "YouTubeChatClient"]
