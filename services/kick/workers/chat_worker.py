from __future__ import annotations

from typing import Any, Optional

import httpx

from services.kick.api.chat import (
    EVENT_CONNECTION_ESTABLISHED,
    EVENT_ERROR,
    EVENT_PING,
    EVENT_SUBSCRIPTION_ERROR,
    MESSAGE_PARSERS,
    PUSHER_URL,
    SUBSCRIPTION_SUCCEEDED_EVENTS,
    decode_frame,
    pong_frame,
    resolve_chatroom_id,
    subscribe_frame,
)
from shared.chat.errors import BootstrapError, DecodeError
from shared.chat.events import Platform
from shared.logging.logger import get_logger
from shared.platforms.adapter import record_error
from shared.platforms.state import AdapterPhase, PhaseTracker
from shared.storage.chat_events import ChatEventStore
from shared.transport.websocket import (
    Connector,
    ReconnectingWebSocket,
    ReconnectPolicy,
    WebSocketUnavailable,
)

log = get_logger("kick.chat_worker", runtime="chatweave")


class KickChatWorker:
    """
    Kick chat adapter (Pusher pub/sub over WebSocket).

    Responsibilities:
    - Resolve the chatroom id before opening the socket (fail fast)
    - Subscribe on every (re)open and answer broker pings
    - Dispatch chat / subscription events into the shared store
    """

    platform = Platform.KICK.value

    def __init__(
        self,
        *,
        store: ChatEventStore,
        channel: str,
        status: Any = None,
        lookup_timeout: float = 10.0,
        policy: Optional[ReconnectPolicy] = None,
        connector: Optional[Connector] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not channel:
            raise RuntimeError("Kick channel is required")

        self.store = store
        self.status = status
        self.channel = channel.strip().lower()
        self.lookup_timeout = lookup_timeout
        self.chatroom_id: Optional[int] = None

        self._policy = policy
        self._connector = connector
        self._http_transport = http_transport

        self._tracker = PhaseTracker(self.platform, sink=status)
        self._transport: Optional[ReconnectingWebSocket] = None
        self._stopped = False

    @property
    def phase(self) -> AdapterPhase:
        return self._tracker.phase

    @property
    def connected(self) -> bool:
        return self._tracker.connected

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        if self._stopped:
            raise BootstrapError("Kick adapter was disconnected", platform=self.platform)
        if self._transport and not self._transport.closed:
            return

        self._tracker.advance(AdapterPhase.CONNECTING)
        try:
            self.chatroom_id = await resolve_chatroom_id(
                self.channel,
                timeout=self.lookup_timeout,
                transport=self._http_transport,
            )
        except BootstrapError as e:
            self._tracker.reset()
            record_error(self.status, self.platform, e)
            log.error(f"[kick:{self.channel}] {e}")
            raise

        if self._stopped:
            # disconnect() ran while the lookup was in flight
            self._tracker.reset()
            return

        log.info(f"[kick:{self.channel}] Resolved chatroom id {self.chatroom_id}")

        self._transport = ReconnectingWebSocket(
            PUSHER_URL,
            on_message=self._on_frame,
            on_open=self._on_open,
            on_close=self._on_close,
            on_give_up=self._on_give_up,
            policy=self._policy,
            connector=self._connector,
            name="kick",
        )
        try:
            await self._transport.open()
        except WebSocketUnavailable as e:
            self._transport = None
            self._tracker.reset()
            error = BootstrapError(str(e), platform=self.platform)
            record_error(self.status, self.platform, error)
            raise error from e

    async def disconnect(self) -> None:
        self._stopped = True
        transport, self._transport = self._transport, None
        if transport:
            await transport.close()
        self._tracker.reset()
        log.info(f"[kick:{self.channel}] Kick chat adapter stopped")

    # ------------------------------------------------------------------ #
    # Transport callbacks
    # ------------------------------------------------------------------ #

    async def _on_open(self) -> None:
        self._tracker.advance(AdapterPhase.CONNECTING)
        log.debug(f"[kick:{self.channel}] Subscribing to chatrooms.{self.chatroom_id}.v2")
        await self._transport.send(subscribe_frame(self.chatroom_id))

    async def _on_close(self, error: Optional[BaseException]) -> None:
        self._tracker.reset()
        if error is not None:
            record_error(self.status, self.platform, error)

    async def _on_give_up(self) -> None:
        self._tracker.reset()
        record_error(
            self.status,
            self.platform,
            "Kick connection lost; reconnect attempts exhausted",
        )

    async def _on_frame(self, raw: str) -> None:
        if self._stopped:
            return

        try:
            frame = decode_frame(raw)
        except DecodeError as e:
            log.warning(f"[kick:{self.channel}] {e}")
            return

        event = frame.event

        if event == EVENT_PING:
            await self._transport.send(pong_frame())
            return

        if event == EVENT_CONNECTION_ESTABLISHED:
            if self._mark_joined():
                log.info(f"[kick:{self.channel}] Broker connection established")
            return

        if event in SUBSCRIPTION_SUCCEEDED_EVENTS:
            if self._mark_joined():
                log.info(f"[kick:{self.channel}] Subscribed to chatroom {self.chatroom_id}")
            return

        if event in (EVENT_SUBSCRIPTION_ERROR, EVENT_ERROR):
            log.error(f"[kick:{self.channel}] Broker error: {frame.data}")
            self._tracker.reset()
            record_error(self.status, self.platform, f"{event}: {frame.data}")
            return

        parser = MESSAGE_PARSERS.get(event)
        if parser is None:
            return

        message = parser(frame.data)
        if message is None or self._stopped:
            return

        log.debug(f"[kick:{self.channel}] {message.username}: {message.message}")
        self.store.add(message)
        self._tracker.advance(AdapterPhase.RECEIVING)

    def _mark_joined(self) -> bool:
        # Public rooms need no auth; the broker handshake counts as joined
        if self._tracker.connected:
            return False
        if self._tracker.phase == AdapterPhase.DISCONNECTED:
            self._tracker.advance(AdapterPhase.CONNECTING)
        return self._tracker.advance(AdapterPhase.JOINED)


__all__ = ["KickChatWorker"]
