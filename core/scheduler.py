import asyncio
from typing import Dict, List, Optional

from core.context import ChannelContext
from core.state_exporter import RuntimeSnapshotExporter, RuntimeState
from services.kick.workers.chat_worker import KickChatWorker
from services.twitch.workers.chat_worker import TwitchChatWorker
from services.youtube.api.polling import PollingPolicy
from services.youtube.workers.chat_worker import YouTubeChatWorker
from shared.chat.errors import ChatIngestError
from shared.config.system import SystemConfig
from shared.logging.logger import get_logger
from shared.platforms.adapter import ChatAdapter
from shared.runtime.session_cache import SessionCache
from shared.storage.chat_events import ChatEventStore

log = get_logger("core.scheduler")


class Scheduler:
    """
    Owns adapter lifecycles for one process.

    Responsibilities:
    - Build one adapter per configured platform
    - Connect them concurrently; one failing bootstrap never blocks others
    - Publish the diagnostics snapshot on a fixed cadence
    - Disconnect everything on shutdown
    """

    def __init__(
        self,
        *,
        store: ChatEventStore,
        status: RuntimeState,
        system: Optional[SystemConfig] = None,
        session_cache: Optional[SessionCache] = None,
        exporter: Optional[RuntimeSnapshotExporter] = None,
    ):
        self.store = store
        self.status = status
        self.system = system or SystemConfig()
        self.session_cache = session_cache or SessionCache(
            self.system.polling.session_ttl_seconds
        )
        self.exporter = exporter

        self._adapters: Dict[str, ChatAdapter] = {}
        self._snapshot_task: Optional[asyncio.Task] = None

    @property
    def adapters(self) -> Dict[str, ChatAdapter]:
        return dict(self._adapters)

    # ------------------------------------------------------------

    def build_adapters(self, ctx: ChannelContext) -> Dict[str, ChatAdapter]:
        adapters: Dict[str, ChatAdapter] = {}

        if ctx.twitch:
            adapters["twitch"] = TwitchChatWorker(
                store=self.store,
                status=self.status,
                channel=ctx.twitch.channel,
                nickname=ctx.twitch.username,
                oauth_token=ctx.twitch.token,
                client_id=ctx.twitch.client_id,
                fetch_emotes=self.system.fetch_community_emotes,
            )

        if ctx.kick:
            adapters["kick"] = KickChatWorker(
                store=self.store,
                status=self.status,
                channel=ctx.kick.channel,
            )

        if ctx.youtube:
            polling = self.system.polling
            adapters["youtube"] = YouTubeChatWorker(
                store=self.store,
                status=self.status,
                channel_name=ctx.youtube.channel_name,
                backend_url=ctx.youtube.backend_url,
                session_cache=self.session_cache,
                policy=PollingPolicy(
                    initial=polling.initial_seconds,
                    minimum=polling.min_seconds,
                    maximum=polling.max_seconds,
                    hidden=polling.hidden_seconds,
                    max_consecutive_failures=polling.max_consecutive_failures,
                ),
                request_timeout=polling.request_timeout,
                max_message_length=self.system.max_message_length,
            )

        return adapters

    async def start(self, ctx: ChannelContext) -> List[str]:
        """Connect every configured adapter. Returns the platforms that connected."""
        if self._adapters:
            log.warning("Scheduler already started; skipping")
            return []

        self._adapters = self.build_adapters(ctx)
        if not self._adapters:
            log.warning("No platforms configured; nothing to start")

        names = list(self._adapters)
        results = await asyncio.gather(
            *(self._adapters[name].connect() for name in names),
            return_exceptions=True,
        )

        started: List[str] = []
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, ChatIngestError):
                log.error(f"[{name}] Failed to start adapter {result.describe()}")
            elif isinstance(result, BaseException):
                log.error(f"[{name}] Failed to start adapter: {result!r}")
                self.status.record_error(name, result)
            else:
                log.info(f"[{name}] Adapter started")
                started.append(name)

        if self.exporter:
            self._snapshot_task = asyncio.create_task(
                self._publish_snapshots(), name="runtime-snapshot"
            )

        return started

    async def shutdown(self) -> None:
        log.info("Scheduler shutdown initiated")

        task, self._snapshot_task = self._snapshot_task, None
        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        for name, adapter in list(self._adapters.items()):
            try:
                await adapter.disconnect()
            except Exception as e:
                log.warning(f"[{name}] Adapter shutdown error ignored: {e}")

        self._adapters.clear()
        self.session_cache.clear()

        if self.exporter:
            self.exporter.publish()

        log.info("Scheduler shutdown complete")

    # ------------------------------------------------------------

    async def _publish_snapshots(self) -> None:
        interval = max(1, self.system.snapshot.interval_seconds)
        try:
            while True:
                self.exporter.publish()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            log.debug("Runtime snapshot task cancelled")
            raise
