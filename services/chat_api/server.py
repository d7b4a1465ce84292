"""HTTP read surface over the retention window and connection status."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from core.state_exporter import RuntimeState
from shared.chat.events import CanonicalChatMessage, Platform
from shared.chat.tokenizer import tokenize
from shared.logging.logger import get_logger
from shared.storage.chat_events import ChatEventStore

log = get_logger("services.chat_api")

UsageProvider = Callable[[], Dict[str, Any]]


@dataclass
class ChatApiConfig:
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8765
    allow_origins: List[str] = field(default_factory=lambda: ["*"])


def message_payload(message: CanonicalChatMessage, *, with_tokens: bool = False) -> Dict[str, Any]:
    payload = message.to_dict()
    if not with_tokens:
        return payload

    # YouTube text already carries rendered <img> markup; its emote
    # positions are logical, so it is not re-tokenized here.
    if message.platform == Platform.YOUTUBE:
        payload["tokens"] = None
    else:
        payload["tokens"] = [
            token.to_dict()
            for token in tokenize(
                message.message,
                message.emotes,
                author=message.username,
                author_color=message.user_color,
            )
        ]
    return payload


def _parse_limit(raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    value = int(raw)
    if value < 0:
        raise ValueError("limit must be non-negative")
    return value


class ChatApiServer:
    """
    Threaded feed server.

    Endpoints:
    - GET /api/chat/messages?limit=N[&tokens=1]  ordered retention window
    - GET /api/chat/status                       connection status + diagnostics
    """

    def __init__(
        self,
        config: ChatApiConfig,
        *,
        store: ChatEventStore,
        status: RuntimeState,
        usage: Optional[Dict[str, UsageProvider]] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._status = status
        self._usage = usage or {}
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def address(self) -> Optional[tuple]:
        return self._server.server_address if self._server else None

    def start(self) -> None:
        if not self._config.enabled:
            log.info("Chat API server disabled via config")
            return
        if self._thread and self._thread.is_alive():
            return

        handler = self._build_handler()
        self._server = ThreadingHTTPServer(
            (self._config.host, int(self._config.port)),
            handler,
        )
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        host, port = self._server.server_address[:2]
        log.info(f"Chat API server running on {host}:{port}")

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        self._thread = None
        log.info("Chat API server stopped")

    # ------------------------------------------------------------------

    def messages_payload(self, limit: Optional[int], *, with_tokens: bool = False) -> Dict[str, Any]:
        messages = self._store.recent(limit)
        return {
            "messages": [message_payload(m, with_tokens=with_tokens) for m in messages],
            "count": len(messages),
            "retention": self._store.retention,
        }

    def status_payload(self) -> Dict[str, Any]:
        usage = {}
        for name, provider in self._usage.items():
            try:
                usage[name] = provider()
            except Exception as e:
                log.warning(f"Usage provider for {name} failed: {e}")
        return {
            "connected": self._status.connection_status(),
            "platforms": self._status.snapshot(),
            "usage": usage,
        }

    def _build_handler(self):
        config = self._config
        server = self

        class Handler(BaseHTTPRequestHandler):
            def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self._apply_cors()
                self.end_headers()
                self.wfile.write(body)

            def _apply_cors(self) -> None:
                origins = config.allow_origins
                if not origins:
                    return
                origin = self.headers.get("Origin")
                if "*" in origins:
                    self.send_header("Access-Control-Allow-Origin", "*")
                elif origin and origin in origins:
                    self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header("Access-Control-Allow-Methods", "GET, OPTIONS")

            def do_OPTIONS(self) -> None:  # noqa: N802 - stdlib signature
                self.send_response(HTTPStatus.NO_CONTENT)
                self._apply_cors()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                parsed = urlparse(self.path)
                query = parse_qs(parsed.query)
                path = parsed.path.rstrip("/")

                if path == "/api/chat/messages":
                    try:
                        limit = _parse_limit((query.get("limit") or [None])[0], server._store.retention)
                    except ValueError:
                        return self._send_json(
                            HTTPStatus.BAD_REQUEST,
                            {"error": "limit must be a non-negative integer"},
                        )
                    with_tokens = (query.get("tokens") or ["0"])[0] in {"1", "true", "yes"}
                    return self._send_json(
                        HTTPStatus.OK,
                        server.messages_payload(limit, with_tokens=with_tokens),
                    )

                if path == "/api/chat/status":
                    return self._send_json(HTTPStatus.OK, server.status_payload())

                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Unknown endpoint"})

            def log_message(self, format: str, *args: Any) -> None:
                log.debug(f"{self.address_string()} - {format % args}")

        return Handler


__all__ = ["ChatApiConfig", "ChatApiServer", "message_payload"]
