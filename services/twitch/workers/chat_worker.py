import asyncio
from typing import Any, Optional

from services.twitch.api.chat import (
    IrcLine,
    TwitchChatClient,
    parse_irc_line,
    split_frame,
)
from services.twitch.api.emotes import TwitchEmoteCatalog
from shared.chat.errors import BootstrapError
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

log = get_logger("twitch.chat_worker", runtime="chatweave")


class TwitchChatWorker:
    """
    Twitch chat adapter (IRC over WebSocket).

    Responsibilities:
    - Own the transport and TwitchChatClient lifecycle (connect, read, shutdown)
    - Answer PING, track join / receive phases and report connectedness
    - Fetch community emotes and badges once per connection (on ROOMSTATE)
    - Deliver canonical messages to the shared store in arrival order

    Rules:
    - Only the initial connect raises; later failures become status updates
    - After `disconnect()` returns nothing is written to the store and the
      adapter never reconnects
    """

    platform = Platform.TWITCH.value

    def __init__(
        self,
        *,
        store: ChatEventStore,
        channel: str,
        status: Any = None,
        nickname: Optional[str] = None,
        oauth_token: Optional[str] = None,
        client_id: Optional[str] = None,
        fetch_emotes: bool = True,
        policy: Optional[ReconnectPolicy] = None,
        connector: Optional[Connector] = None,
        catalog: Optional[TwitchEmoteCatalog] = None,
    ):
        if not channel:
            raise RuntimeError("Twitch channel is required")

        self.store = store
        self.status = status
        self.fetch_emotes = fetch_emotes
        self.catalog = catalog or TwitchEmoteCatalog(
            client_id=client_id, oauth_token=oauth_token
        )
        self._client = TwitchChatClient(
            channel,
            nickname=nickname,
            token=oauth_token,
            catalog=self.catalog,
        )
        self._policy = policy
        self._connector = connector

        self._tracker = PhaseTracker(self.platform, sink=status)
        self._transport: Optional[ReconnectingWebSocket] = None
        self._emote_task: Optional[asyncio.Task] = None
        self._stopped = False

    # ------------------------------------------------------------------ #

    @property
    def channel(self) -> str:
        return self._client.channel

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
            raise BootstrapError("Twitch adapter was disconnected", platform=self.platform)
        if self._transport and not self._transport.closed:
            return

        login = "anonymous" if self._client.anonymous else self._client.nickname
        log.info(f"[#{self.channel}] Connecting to Twitch chat as {login}")

        self.catalog.clear()
        self._tracker.advance(AdapterPhase.CONNECTING)
        self._transport = ReconnectingWebSocket(
            TwitchChatClient.WS_URL,
            on_message=self._on_frame,
            on_open=self._on_open,
            on_close=self._on_close,
            on_give_up=self._on_give_up,
            policy=self._policy,
            connector=self._connector,
            name="twitch",
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

        task, self._emote_task = self._emote_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        transport, self._transport = self._transport, None
        if transport:
            await transport.close()

        self._tracker.reset()
        log.info(f"[#{self.channel}] Twitch chat adapter stopped")

    # ------------------------------------------------------------------ #
    # Transport callbacks
    # ------------------------------------------------------------------ #

    async def _on_open(self) -> None:
        # Reconnects re-enter here from DISCONNECTED
        self._tracker.advance(AdapterPhase.CONNECTING)
        for line in self._client.handshake_lines():
            await self._transport.send(line)
        self._tracker.advance(AdapterPhase.AUTHENTICATING)

    async def _on_close(self, error: Optional[BaseException]) -> None:
        self._tracker.reset()
        if error is not None:
            record_error(self.status, self.platform, error)

    async def _on_give_up(self) -> None:
        self._tracker.reset()
        record_error(
            self.status,
            self.platform,
            "Twitch connection lost; reconnect attempts exhausted",
        )

    async def _on_frame(self, frame: str) -> None:
        for raw in split_frame(frame):
            if self._stopped:
                return
            line = parse_irc_line(raw)
            if line is None:
                continue
            await self._handle_line(line)

    # ------------------------------------------------------------------ #

    async def _handle_line(self, line: IrcLine) -> None:
        command = line.command

        if command == "PING":
            await self._transport.send(TwitchChatClient.pong_for(line))
            return

        if TwitchChatClient.is_join_confirmation(line):
            if self._tracker.advance(AdapterPhase.JOINED):
                log.info(f"[#{self.channel}] Joined Twitch chat")
            return

        if TwitchChatClient.is_auth_failure(line):
            await self._handle_auth_failure(line)
            return

        if command == "ROOMSTATE":
            self._maybe_load_emotes(line.tags.get("room-id"))
            return

        if command == "RECONNECT":
            log.info(f"[#{self.channel}] Server requested reconnect")
            if self._transport:
                await self._transport.drop()
            return

        if command == "PRIVMSG":
            message = self._client.build_privmsg(line)
        elif command == "USERNOTICE":
            message = self._client.build_usernotice(line)
        else:
            return

        if message is None or self._stopped:
            return

        self.store.add(message)
        self._tracker.advance(AdapterPhase.RECEIVING)

    async def _handle_auth_failure(self, line: IrcLine) -> None:
        error = BootstrapError(
            f"Twitch login rejected: {line.trailing}", platform=self.platform
        )
        log.error(f"[#{self.channel}] {error}")
        record_error(self.status, self.platform, error)

        # Retrying with the same credentials cannot succeed
        transport, self._transport = self._transport, None
        self._tracker.reset()
        if transport:
            await transport.close()

    def _maybe_load_emotes(self, room_id: Optional[str]) -> None:
        if not self.fetch_emotes or not room_id or self._stopped:
            return
        if self.catalog.loaded_room == room_id:
            return
        if self._emote_task and not self._emote_task.done():
            return

        self._emote_task = asyncio.create_task(
            self._load_emotes(room_id), name="twitch-emotes"
        )

    async def _load_emotes(self, room_id: str) -> None:
        try:
            await self.catalog.load(room_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"[#{self.channel}] Emote catalog load failed: {e}")


__all__ = ["TwitchChatWorker"]
