"""Test doubles shared across the suite."""

import asyncio
from datetime import datetime, timedelta, timezone

from shared.chat.events import Platform, create_chat_message
from shared.transport.websocket import ReconnectPolicy

BASE_TS = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

FAST_POLICY = ReconnectPolicy(
    min_delay=0.01,
    max_delay=0.02,
    grow_factor=1.3,
    max_retries=2,
    connect_timeout=0.5,
)


_CLOSE = object()


class _Drop:
    def __init__(self, error=None):
        self.error = error


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, frames=()):
        self.sent = []
        self.closed = False
        self._queue = asyncio.Queue()
        for frame in frames:
            self._queue.put_nowait(frame)

    def feed(self, frame):
        self._queue.put_nowait(frame)

    def drop(self, error=None):
        self._queue.put_nowait(_Drop(error))

    async def send(self, text):
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(text)

    async def close(self):
        self.closed = True
        self._queue.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, _Drop):
            if item.error is not None:
                raise item.error
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Hands out queued sockets (or raises queued errors) per connect call."""

    def __init__(self, *results):
        self._results = list(results)
        self.urls = []
        self.sockets = []

    @property
    def calls(self):
        return len(self.urls)

    async def __call__(self, url):
        self.urls.append(url)
        if not self._results:
            raise ConnectionError("no socket available")
        result = self._results.pop(0)
        if isinstance(result, BaseException):
            raise result
        self.sockets.append(result)
        return result


class RecordingSink:
    def __init__(self):
        self.updates = []
        self.errors = []

    def update_status(self, platform, connected):
        self.updates.append((platform, connected))

    def record_error(self, platform, error):
        self.errors.append((platform, error))


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def make_message(native_id, seconds=0, *, platform=Platform.TWITCH, text="hello", username="viewer"):
    return create_chat_message(
        platform=platform,
        native_id=native_id,
        username=username,
        text=text,
        timestamp=BASE_TS + timedelta(seconds=seconds),
    )

