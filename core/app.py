import argparse
import asyncio
import signal
import sys
import threading
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from core.commands import CommandDispatcher, PriorityCommand
from core.coordinator import InstanceCoordinator
from core.driver import RefreshDriver
from core.schedule import ScheduleEvaluator
from runtime import version as runtime_version
from services.board_api.client import BoardFetchClient
from services.board_api.server import BoardApiServer
from services.sheets.client import SheetsBoardSource
from shared.config.board import BoardConfig, load_board_config
from shared.logging.logger import get_logger
from shared.storage.shared_store import FileSharedStore
from shared.storage.view_publisher import BoardViewPublisher

log = get_logger("core.app")


# ----------------------------------------------------------------------
# COMMAND INPUT (STDIN, THREAD-FED)
# ----------------------------------------------------------------------

def _start_command_reader(
    loop: asyncio.AbstractEventLoop,
    queue: "asyncio.Queue[str]",
) -> threading.Thread:
    """
    Blocking stdin reads run on a daemon thread and are handed to the loop,
    so nothing on the event loop ever blocks on input.
    """

    def _reader():
        for line in sys.stdin:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, line)
            except RuntimeError:
                break

    thread = threading.Thread(target=_reader, name="command-reader", daemon=True)
    thread.start()
    return thread


async def _command_loop(queue: "asyncio.Queue[str]", dispatcher: CommandDispatcher):
    try:
        while True:
            line = await queue.get()
            reply = dispatcher.dispatch(line)
            if reply:
                print(reply, flush=True)
    except asyncio.CancelledError:
        raise


async def main(stop_event: asyncio.Event, cfg: Optional[BoardConfig] = None, *, read_commands: bool = True):
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    cfg = cfg or load_board_config()
    log.info(f"{runtime_version.as_string()} booting")

    tz = ZoneInfo(cfg.schedule.timezone)

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    publisher = BoardViewPublisher(cfg.display.state_dir)
    schedule = ScheduleEvaluator.from_config(cfg.schedule)
    store = FileSharedStore(cfg.coordination.store_dir)
    log.info(f"Coordination store: {store.directory}")
    coordinator = InstanceCoordinator.from_config(store, cfg.coordination)
    client = BoardFetchClient(
        endpoint=cfg.endpoint.url,
        timeout=cfg.endpoint.timeout_seconds,
        recent_limit=cfg.display.recent_events_limit,
        contributor_limit=cfg.display.top_contributors_limit,
    )
    driver = RefreshDriver(
        client=client,
        schedule=schedule,
        coordinator=coordinator,
        clock=lambda: datetime.now(tz),
        publisher=publisher,
        display_cfg=cfg.display,
    )

    server: Optional[BoardApiServer] = None
    if cfg.server.enabled:
        server = BoardApiServer(
            cfg.server,
            SheetsBoardSource(cfg.sheets).load,
            view_path=publisher.view_path(cfg.display.view_file),
        )
        server.start()
    else:
        log.info("Board API server disabled via config")

    # --------------------------------------------------
    # START
    # --------------------------------------------------
    await coordinator.start()
    await driver.start()

    command_task: Optional[asyncio.Task] = None
    if read_commands:
        queue: "asyncio.Queue[str]" = asyncio.Queue()
        dispatcher = CommandDispatcher(
            driver,
            PriorityCommand(coordinator, cfg.coordination.priority_key),
        )
        _start_command_reader(asyncio.get_running_loop(), queue)
        command_task = asyncio.create_task(_command_loop(queue, dispatcher))
        log.info("Command input ready (type 'help')")

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN: DRIVER, THEN COORDINATION
    # --------------------------------------------------
    if command_task is not None:
        command_task.cancel()
        await asyncio.gather(command_task, return_exceptions=True)

    try:
        await driver.close()
    except Exception as e:
        log.warning(f"Driver shutdown error ignored: {e}")

    try:
        await coordinator.close()
    except Exception as e:
        log.warning(f"Coordinator shutdown error ignored: {e}")

    if server is not None:
        server.stop()

    log.info("House points board stopped")


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

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="House points board runtime")
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Also serve /api/houses from Google Sheets (overrides config)",
    )
    parser.add_argument(
        "--no-commands",
        action="store_true",
        help="Do not read manual commands from stdin",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=runtime_version.as_string(),
    )
    return parser.parse_args(argv)


def run(argv=None):
    args = parse_args(argv)
    load_dotenv()
    cfg = load_board_config()
    if args.serve:
        cfg.server.enabled = True

    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event, cfg, read_commands=not args.no_commands))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received; shutdown initiated")
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
