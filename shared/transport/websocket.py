import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import websockets

from shared.logging.logger import get_logger

log = get_logger("shared.transport.websocket")


class WebSocketUnavailable(ConnectionError):
    """
    Raised when the initial connection cannot be established.

    Only the first open surfaces this to callers. Later drops are handled
    by the reconnect loop and reported through `on_close` / `on_give_up`.
    """

    def __init__(self, message: str, *, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


@dataclass(frozen=True)
class ReconnectPolicy:
    min_delay: float = 1.0
    max_delay: float = 10.0
    grow_factor: float = 1.3
    max_retries: int = 5
    connect_timeout: float = 4.0

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (1-based)."""
        if attempt <= 1:
            return self.min_delay
        return min(self.max_delay, self.min_delay * (self.grow_factor ** (attempt - 1)))


Connector = Callable[[str], Awaitable[Any]]
Callback = Callable[..., Any]


async def default_connector(url: str) -> Any:
    # Timeout is applied by the caller so fakes share the same bound.
    return await websockets.connect(url, max_size=None)


async def _maybe_await(callback: Optional[Callback], *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ReconnectingWebSocket:
    """
    WebSocket transport with bounded reconnection.

    Rules:
    - `open()` performs the first connect and raises WebSocketUnavailable
      on failure; nothing is retried on behalf of the caller at that point
    - After a drop, reconnects with growing delays per ReconnectPolicy and
      re-runs `on_open` so the adapter can re-handshake
    - `close()` cancels the receive/retry task and closes the socket; a
      closed transport never reopens
    - A failing `on_message` handler is logged and skipped; it never tears
      down the connection
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: Callback,
        on_open: Optional[Callback] = None,
        on_close: Optional[Callback] = None,
        on_give_up: Optional[Callback] = None,
        policy: Optional[ReconnectPolicy] = None,
        connector: Optional[Connector] = None,
        name: str = "ws",
    ):
        self.url = url
        self.name = name
        self.policy = policy or ReconnectPolicy()

        self._on_message = on_message
        self._on_open = on_open
        self._on_close = on_close
        self._on_give_up = on_give_up
        self._connector = connector or default_connector

        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        if self._closed:
            raise WebSocketUnavailable(f"{self.name} transport already closed")
        if self._task and not self._task.done():
            return

        try:
            self._ws = await self._connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise WebSocketUnavailable(f"{self.name} connect failed: {e}") from e

        if self._closed:
            # close() ran while the connect was in flight
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except Exception as e:
                log.debug(f"[{self.name}] Late socket close ignored: {e}")
            return

        log.info(f"[{self.name}] WebSocket connected ({self.url})")
        try:
            await _maybe_await(self._on_open)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except Exception as close_error:
                log.debug(f"[{self.name}] Close after failed handshake: {close_error}")
            raise WebSocketUnavailable(f"{self.name} handshake failed: {e}") from e

        self._task = asyncio.create_task(self._run(), name=f"{self.name}-ws")

    async def send(self, text: str) -> None:
        if not self._ws or self._closed:
            raise ConnectionError(f"{self.name} transport is not open")
        await self._ws.send(text)

    async def drop(self) -> None:
        """Close the live socket but keep the transport; the loop reconnects."""
        ws = self._ws
        if ws is None or self._closed:
            return
        try:
            await ws.close()
        except Exception as e:
            log.debug(f"[{self.name}] Error while dropping socket ignored: {e}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        task, self._task = self._task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log.debug(f"[{self.name}] Receive task ended with error during close: {e}")

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                log.debug(f"[{self.name}] Error during WebSocket close ignored: {e}")

        log.info(f"[{self.name}] WebSocket closed")

    # ------------------------------------------------------------------

    async def _connect(self) -> Any:
        return await asyncio.wait_for(
            self._connector(self.url),
            timeout=self.policy.connect_timeout,
        )

    async def _run(self) -> None:
        while not self._closed:
            error: Optional[BaseException] = None
            try:
                async for frame in self._ws:
                    if self._closed:
                        return
                    if isinstance(frame, (bytes, bytearray)):
                        frame = bytes(frame).decode("utf-8", errors="ignore")
                    try:
                        await _maybe_await(self._on_message, frame)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        log.warning(f"[{self.name}] Frame handler failed: {e}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e

            if self._closed:
                return

            log.warning(
                f"[{self.name}] WebSocket dropped"
                + (f": {error}" if error else " (remote closed)")
            )
            self._ws = None
            await _maybe_await(self._on_close, error)

            if not await self._reconnect():
                if not self._closed:
                    log.error(
                        f"[{self.name}] Giving up after "
                        f"{self.policy.max_retries} reconnect attempt(s)"
                    )
                    await _maybe_await(self._on_give_up)
                return

    async def _reconnect(self) -> bool:
        for attempt in range(1, self.policy.max_retries + 1):
            delay = self.policy.delay_for(attempt)
            log.debug(
                f"[{self.name}] Reconnecting in {delay:.1f}s "
                f"(attempt {attempt}/{self.policy.max_retries})"
            )
            await asyncio.sleep(delay)
            if self._closed:
                return False

            try:
                ws = await self._connect()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(f"[{self.name}] Reconnect attempt {attempt} failed: {e}")
                continue

            if self._closed:
                try:
                    await ws.close()
                except Exception as e:
                    log.debug(f"[{self.name}] Late socket close ignored: {e}")
                return False

            self._ws = ws
            log.info(f"[{self.name}] WebSocket reconnected")
            try:
                await _maybe_await(self._on_open)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(f"[{self.name}] Handshake after reconnect failed: {e}")
                self._ws = None
                try:
                    await ws.close()
                except Exception as close_error:
                    log.debug(f"[{self.name}] Close after failed handshake: {close_error}")
                continue
            return True

        return False


__all__ = [
    "ReconnectPolicy",
    "ReconnectingWebSocket",
    "WebSocketUnavailable",
    "default_connector",
]
