import asyncio
from typing import Any, Dict, List, Optional

import httpx

from services.youtube.api.chat import BackendResponse, YouTubeChatClient
from services.youtube.api.decoder import (
    MAX_MESSAGES_PER_BATCH,
    EmoteCatalog,
    decode_actions,
    decode_messages,
)
from services.youtube.api.polling import AdaptiveInterval, PollingPolicy
from shared.chat.errors import (
    BootstrapError,
    ChatIngestError,
    MissingCursorError,
    TransientFetchError,
    classify_backend_error,
)
from shared.chat.events import MAX_MESSAGE_LENGTH, CanonicalChatMessage, Platform
from shared.logging.logger import get_logger
from shared.platforms.adapter import record_error
from shared.platforms.state import AdapterPhase, PhaseTracker
from shared.runtime.session_cache import SessionCache
from shared.storage.chat_events import ChatEventStore

log = get_logger("youtube.chat_worker", runtime="chatweave")


class YouTubeChatWorker:
    """
    YouTube chat adapter (continuation polling through the backend).

    Responsibilities:
    - Bootstrap: resolve the live video, initial cursor and emote catalog
    - Poll with an adaptive interval, passing the cursor through unchanged
    - Decode each batch (at most 50 messages) into the shared store
    - Classify failures: retry transient ones, halt on fatal ones

    Rules:
    - `connect()` raises classified bootstrap errors; nothing after it does
    - After `disconnect()` returns no poll is scheduled and nothing is
      written to the store
    """

    platform = Platform.YOUTUBE.value

    def __init__(
        self,
        *,
        store: ChatEventStore,
        channel_name: str,
        status: Any = None,
        backend_url: Optional[str] = None,
        session_cache: Optional[SessionCache] = None,
        policy: Optional[PollingPolicy] = None,
        request_timeout: float = 15.0,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        batch_limit: int = MAX_MESSAGES_PER_BATCH,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not channel_name:
            raise RuntimeError("YouTube channel name is required")

        self.store = store
        self.status = status
        self.channel_name = channel_name
        self.session_cache = session_cache
        self.max_message_length = max_message_length
        self.batch_limit = batch_limit

        self._client = YouTubeChatClient(
            channel_name=channel_name,
            backend_url=backend_url,
            timeout=request_timeout,
            transport=http_transport,
        )
        self._interval = AdaptiveInterval(policy)
        self._tracker = PhaseTracker(self.platform, sink=status)
        self._catalog = EmoteCatalog()

        self.video_id: Optional[str] = None
        self._continuation: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._stopped = False
        self._halted = False

    # ------------------------------------------------------------------ #

    @property
    def phase(self) -> AdapterPhase:
        return self._tracker.phase

    @property
    def connected(self) -> bool:
        return self._tracker.connected

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def continuation(self) -> Optional[str]:
        return self._continuation

    @property
    def interval(self) -> AdaptiveInterval:
        return self._interval

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        if self._stopped:
            raise BootstrapError("YouTube adapter was disconnected", platform=self.platform)
        if self._task and not self._task.done():
            return

        self._halted = False
        self._tracker.advance(AdapterPhase.CONNECTING)
        log.info(f"[youtube:{self.channel_name}] Resolving live chat")

        try:
            response = await self._bootstrap()
        except ChatIngestError as e:
            self._tracker.reset()
            record_error(self.status, self.platform, e)
            log.error(f"[youtube:{self.channel_name}] Bootstrap failed {e.describe()}")
            raise

        if self._stopped:
            # disconnect() ran while bootstrap was in flight
            self._tracker.reset()
            return

        self._tracker.advance(AdapterPhase.JOINED)
        log.info(
            f"[youtube:{self.channel_name}] Live chat joined "
            f"(videoId={self.video_id}, emotes={len(self._catalog)})"
        )

        count = self._deliver(response)
        self._interval.record_batch(count, response.polling_interval_ms)

        self._task = asyncio.create_task(self._poll_loop(), name="youtube-poll")

    async def disconnect(self) -> None:
        self._stopped = True
        self._wake.set()

        task, self._task = self._task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._client.close()
        self._tracker.reset()
        log.info(f"[youtube:{self.channel_name}] YouTube chat adapter stopped")

    # ------------------------------------------------------------------ #
    # Public helpers
    # ------------------------------------------------------------------ #

    def set_visible(self, visible: bool) -> None:
        """Overlay visibility; hidden overlays poll at a slower floor."""
        interval = self._interval.set_hidden(not visible)
        log.info(
            f"[youtube:{self.channel_name}] Overlay "
            f"{'visible' if visible else 'hidden'}; polling every {interval:.1f}s"
        )
        self._wake.set()

    def usage_stats(self) -> Dict[str, Any]:
        return {
            "calls": self._client.call_count,
            "interval": round(self._interval.current, 3),
            "effectiveInterval": round(self._interval.effective, 3),
            "emptyStreak": self._interval.empty_streak,
            "consecutiveFailures": self._interval.consecutive_failures,
            "errors": self._interval.total_errors,
            "hidden": self._interval.hidden,
            "halted": self._halted,
        }

    # ------------------------------------------------------------------ #
    # Bootstrap
    # ------------------------------------------------------------------ #

    async def _bootstrap(self) -> BackendResponse:
        cached = self.session_cache.get(self.channel_name) if self.session_cache else None
        if cached:
            log.debug(
                f"[youtube:{self.channel_name}] Reusing cached session "
                f"(videoId={cached.video_id})"
            )
            self._catalog.merge_map(cached.emote_map)

        response = await self._client.fetch(video_id=cached.video_id if cached else None)

        if response.error:
            self._invalidate_session()
            raise classify_backend_error(response.error, platform=self.platform)

        video_id = response.video_id or (cached.video_id if cached else None)
        if not video_id:
            self._invalidate_session()
            raise BootstrapError(
                f"No video id resolved for '{self.channel_name}'", platform=self.platform
            )

        if not response.continuation:
            self._invalidate_session()
            raise MissingCursorError(
                f"No initial continuation for video {video_id}", platform=self.platform
            )

        self.video_id = video_id
        self._continuation = response.continuation
        self._catalog.merge_map(response.emote_map)

        if self.session_cache:
            emote_map = dict(cached.emote_map) if cached else {}
            emote_map.update(response.emote_map)
            self.session_cache.put(self.channel_name, video_id=video_id, emote_map=emote_map)

        return response

    def _invalidate_session(self) -> None:
        if self.session_cache:
            self.session_cache.invalidate(self.channel_name)

    # ------------------------------------------------------------------ #
    # Steady state
    # ------------------------------------------------------------------ #

    async def _poll_loop(self) -> None:
        while not self._stopped:
            await self._sleep()
            if self._stopped:
                return

            try:
                response = await self._client.fetch(
                    continuation=self._continuation,
                    video_id=self.video_id,
                )
                if response.error:
                    raise classify_backend_error(response.error, platform=self.platform)
            except asyncio.CancelledError:
                raise
            except ChatIngestError as e:
                if self._handle_failure(e):
                    return
                continue
            except Exception as e:
                log.exception(f"[youtube:{self.channel_name}] Unexpected poll error")
                if self._handle_failure(TransientFetchError(str(e), platform=self.platform)):
                    return
                continue

            if self._stopped:
                return

            if response.continuation:
                self._continuation = response.continuation
            if response.video_id:
                self.video_id = response.video_id
            if response.emote_map:
                self._catalog.merge_map(response.emote_map)

            # Back from a failing stretch
            if self._tracker.phase == AdapterPhase.DISCONNECTED:
                self._tracker.advance(AdapterPhase.CONNECTING)
                self._tracker.advance(AdapterPhase.JOINED)

            count = self._deliver(response)
            interval = self._interval.record_batch(count, response.polling_interval_ms)
            log.debug(
                f"[youtube:{self.channel_name}] Poll complete "
                f"(messages={count}, next={interval:.1f}s)"
            )

    def _handle_failure(self, error: ChatIngestError) -> bool:
        """Record a steady-state failure. Returns True when polling must stop."""
        record_error(self.status, self.platform, error)
        self._tracker.reset()

        if not error.retryable:
            log.error(
                f"[youtube:{self.channel_name}] Polling halted {error.describe()}"
            )
            self._invalidate_session()
            self._halted = True
            return True

        interval = self._interval.record_failure()
        if self._interval.exhausted:
            log.error(
                f"[youtube:{self.channel_name}] Polling halted after "
                f"{self._interval.consecutive_failures} consecutive failures"
            )
            record_error(
                self.status,
                self.platform,
                f"Polling halted after {self._interval.consecutive_failures} "
                f"consecutive failures: {error}",
            )
            self._halted = True
            return True

        log.warning(
            f"[youtube:{self.channel_name}] Poll failed {error.describe()}; "
            f"retrying in {interval:.1f}s"
        )
        return False

    def _deliver(self, response: BackendResponse) -> int:
        messages: List[CanonicalChatMessage] = decode_messages(
            response.messages,
            limit=self.batch_limit,
            max_length=self.max_message_length,
        )
        remaining = self.batch_limit - len(messages)
        if remaining > 0 and response.actions:
            messages.extend(
                decode_actions(
                    response.actions,
                    self._catalog,
                    limit=remaining,
                    max_length=self.max_message_length,
                )
            )

        if not messages or self._stopped:
            return len(messages)

        self.store.add_batch(messages)
        self._tracker.advance(AdapterPhase.RECEIVING)
        return len(messages)

    async def _sleep(self) -> None:
        # Visibility changes wake the sleeper so the new interval applies now
        loop = asyncio.get_running_loop()
        started = loop.time()
        while not self._stopped:
            remaining = self._interval.effective - (loop.time() - started)
            if remaining <= 0:
                return
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return


__all__ = ["YouTubeChatWorker"]
