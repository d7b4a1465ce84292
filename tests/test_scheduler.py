import json
from unittest.mock import AsyncMock

import pytest

from core.context import (
    ChannelContext,
    KickChannelConfig,
    TwitchChannelConfig,
    YouTubeChannelConfig,
)
from core.scheduler import Scheduler
from core.state_exporter import RuntimeSnapshotExporter, RuntimeState
from services.kick.workers.chat_worker import KickChatWorker
from services.twitch.workers.chat_worker import TwitchChatWorker
from services.youtube.workers.chat_worker import YouTubeChatWorker
from shared.chat.errors import BootstrapError
from shared.runtime.session_cache import SessionCache
from shared.storage.chat_events import ChatEventStore


class FakeAdapter:
    def __init__(self, platform, error=None):
        self.platform = platform
        self.error = error
        self.connected = False
        self.disconnected = False

    async def connect(self):
        if self.error:
            raise self.error
        self.connected = True

    async def disconnect(self):
        self.disconnected = True


class FakeScheduler(Scheduler):
    def __init__(self, fakes, **kwargs):
        super().__init__(**kwargs)
        self._fakes = fakes

    def build_adapters(self, ctx):
        return dict(self._fakes)


def test_build_adapters_per_configured_platform():
    scheduler = Scheduler(store=ChatEventStore(), status=RuntimeState())
    ctx = ChannelContext(
        twitch=TwitchChannelConfig(channel="streamer"),
        kick=KickChannelConfig(channel="kicker"),
        youtube=YouTubeChannelConfig(channel_name="yt"),
    )

    adapters = scheduler.build_adapters(ctx)

    assert isinstance(adapters["twitch"], TwitchChatWorker)
    assert isinstance(adapters["kick"], KickChatWorker)
    assert isinstance(adapters["youtube"], YouTubeChatWorker)
    assert scheduler.build_adapters(ChannelContext()) == {}


@pytest.mark.asyncio
async def test_one_failing_adapter_does_not_block_others():
    status = RuntimeState()
    twitch = FakeAdapter("twitch")
    kick = FakeAdapter("kick", BootstrapError("not found", platform="kick"))
    youtube = FakeAdapter("youtube", RuntimeError("boom"))

    scheduler = FakeScheduler(
        {"twitch": twitch, "kick": kick, "youtube": youtube},
        store=ChatEventStore(),
        status=status,
    )
    started = await scheduler.start(ChannelContext())

    assert started == ["twitch"]
    assert twitch.connected
    assert status.last_error("youtube") == "boom"

    await scheduler.shutdown()
    assert twitch.disconnected and kick.disconnected and youtube.disconnected
    assert scheduler.adapters == {}


@pytest.mark.asyncio
async def test_shutdown_publishes_snapshot_and_clears_cache(tmp_path):
    store = ChatEventStore()
    status = RuntimeState()
    cache = SessionCache()
    cache.put("yt", video_id="v1")
    path = tmp_path / "snapshot.json"

    scheduler = FakeScheduler(
        {"twitch": FakeAdapter("twitch")},
        store=store,
        status=status,
        session_cache=cache,
        exporter=RuntimeSnapshotExporter(state=status, store=store, path=path),
    )
    await scheduler.start(ChannelContext())
    await scheduler.shutdown()

    assert len(cache) == 0
    assert json.loads(path.read_text(encoding="utf-8"))["messages"]["count"] == 0


@pytest.mark.asyncio
async def test_second_start_is_ignored():
    adapter = FakeAdapter("kick")
    scheduler = FakeScheduler({"kick": adapter}, store=ChatEventStore(), status=RuntimeState())

    assert await scheduler.start(ChannelContext()) == ["kick"]
    assert await scheduler.start(ChannelContext()) == []
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_shutdown_ignores_failing_disconnect():
    broken = AsyncMock()
    broken.platform = "kick"
    broken.disconnect.side_effect = RuntimeError("socket already gone")
    healthy = FakeAdapter("twitch")

    scheduler = FakeScheduler(
        {"kick": broken, "twitch": healthy},
        store=ChatEventStore(),
        status=RuntimeState(),
    )
    assert sorted(await scheduler.start(ChannelContext())) == ["kick", "twitch"]

    await scheduler.shutdown()
    broken.disconnect.assert_awaited_once()
    assert healthy.disconnected
