import asyncio
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from core.config_loader import ConfigLoader
from core.scheduler import Scheduler
from core.state_exporter import RuntimeSnapshotExporter, RuntimeState
from services.chat_api import ChatApiConfig, ChatApiServer
from shared.config.system import load_system_config
from shared.logging.logger import get_logger
from shared.runtime.session_cache import SessionCache
from shared.storage.chat_events import ChatEventStore

log = get_logger("core.app")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info("Chatweave booting")

    system = load_system_config()
    channels = ConfigLoader().load()

    # --------------------------------------------------
    # CORE SYSTEMS (explicitly owned, passed down)
    # --------------------------------------------------
    store = ChatEventStore(retention=system.retention)
    status = RuntimeState()
    exporter = RuntimeSnapshotExporter(
        state=status,
        store=store,
        path=Path(system.snapshot.state_path),
    )
    scheduler = Scheduler(
        store=store,
        status=status,
        system=system,
        session_cache=SessionCache(system.polling.session_ttl_seconds),
        exporter=exporter,
    )

    # --------------------------------------------------
    # START ADAPTERS
    # --------------------------------------------------
    started = await scheduler.start(channels)
    log.info(f"Adapters connected: {started or 'none'}")

    # --------------------------------------------------
    # FEED API
    # --------------------------------------------------
    usage = {}
    youtube = scheduler.adapters.get("youtube")
    if youtube is not None:
        usage["youtube"] = youtube.usage_stats

    api = ChatApiServer(
        ChatApiConfig(
            enabled=system.feed_api.enabled,
            host=system.feed_api.host,
            port=system.feed_api.port,
        ),
        store=store,
        status=status,
        usage=usage,
    )
    try:
        api.start()
    except OSError as e:
        log.error(f"Chat API server failed to start: {e}")

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    try:
        await scheduler.shutdown()
    except Exception as e:
        log.warning(f"Scheduler shutdown error ignored: {e}")

    api.stop()
    log.info("Chatweave stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_event = asyncio.Event()
    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutdown initiated")
        stop_event.set()

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())
        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
