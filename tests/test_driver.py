import asyncio
import json

import pytest

from core.coordinator import InstanceCoordinator, StorageLease
from core.display import DisplayMode, DisplayOverride
from core.driver import ERROR_MESSAGE, RefreshDriver
from core.schedule import ScheduleEvaluator
from services.board_api.errors import EmptyResult, HttpError
from shared.config.board import ScheduleConfig
from shared.scoreboards.ranking import rank_houses
from shared.scoreboards.snapshot import BoardSnapshot
from shared.storage.shared_store import MemorySharedStore, SharedMedium
from shared.storage.view_publisher import BoardViewPublisher
from support import FakeClock, FakeTime, board_at, make_snapshot


class FakeClient:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0
        self.gate = None

    async def fetch(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def _driver(client, clock, *, store=None, epoch=None, publisher=None, **kwargs):
    coordinator = InstanceCoordinator(
        StorageLease(store or MemorySharedStore()),
        time_source=epoch or FakeTime(),
    )
    kwargs.setdefault("tick_seconds", 3600.0)
    return RefreshDriver(
        client=client,
        schedule=ScheduleEvaluator.from_config(ScheduleConfig()),
        coordinator=coordinator,
        clock=clock,
        publisher=publisher,
        **kwargs,
    )


@pytest.fixture
async def running():
    drivers = []

    async def _start(driver):
        drivers.append(driver)
        await driver.start()
        return driver

    yield _start

    for driver in drivers:
        await driver.close()


# ----------------------------------------------------------------------
# Refresh outcomes
# ----------------------------------------------------------------------

async def test_initial_refresh_in_active_hours(clock, running):
    board = make_snapshot(3, 9)
    driver = await running(_driver(FakeClient(board), clock))

    assert driver.snapshot is board
    assert driver.last_updated == clock.now
    assert driver.error is None
    assert driver.countdown == 900
    assert driver.display_state().mode is DisplayMode.NORMAL


async def test_failure_keeps_last_snapshot(clock, running):
    board = make_snapshot(3, 9)
    client = FakeClient(board, EmptyResult())
    driver = await running(_driver(client, clock))
    first_update = driver.last_updated

    clock.advance(900)
    assert await driver.refresh() is False

    assert driver.snapshot is board
    assert driver.last_updated == first_update
    assert driver.error == ERROR_MESSAGE
    assert driver.countdown == 30
    assert driver.display_state().mode is DisplayMode.NORMAL


async def test_unexpected_errors_are_reported_the_same_way(clock, running):
    driver = await running(_driver(FakeClient(ValueError("bad")), clock))
    assert driver.snapshot is None
    assert driver.error == ERROR_MESSAGE
    assert driver.countdown == 30


async def test_success_after_failure_clears_error(clock, running):
    board = make_snapshot(1)
    client = FakeClient(HttpError(500), board)
    driver = await running(_driver(client, clock))
    assert driver.error == ERROR_MESSAGE

    assert await driver.refresh() is True
    assert driver.error is None
    assert driver.snapshot is board


async def test_repeated_identical_fetches_leave_state_unchanged(clock, running):
    board = make_snapshot(4, 2)
    driver = await running(_driver(FakeClient(board), clock))
    before = driver.view_document()["board"]

    await driver.refresh()
    assert driver.view_document()["board"] == before


# ----------------------------------------------------------------------
# Schedule interaction
# ----------------------------------------------------------------------

async def test_quiet_hours_skip_fetch(running):
    clock = FakeClock(board_at(20, 0))
    client = FakeClient(make_snapshot(1))
    driver = await running(_driver(client, clock))

    assert client.calls == 0
    assert driver.in_quiet_window
    assert driver.countdown == 3600
    assert driver.display_state().mode is DisplayMode.IDLE
    assert driver.status_line().startswith("Quiet hours")


async def test_forced_on_during_quiet_hours_fetches_and_shows_board(running):
    clock = FakeClock(board_at(20, 0))
    client = FakeClient(make_snapshot(5, 1))
    driver = await running(_driver(client, clock))

    task = driver.set_override(DisplayOverride.FORCED_ON)
    assert task is not None
    await task

    assert client.calls == 1
    assert driver.countdown == 900
    state = driver.display_state()
    assert state.mode is DisplayMode.NORMAL
    assert state.presentation is DisplayMode.FORCED_ON

    driver.set_override(DisplayOverride.FORCED_OFF)
    assert driver.countdown == 3600
    assert driver.display_state().mode is DisplayMode.IDLE


async def test_toggle_display_cycles_override(clock, running):
    driver = await running(_driver(FakeClient(make_snapshot(1)), clock))

    task = driver.toggle_display()
    if task is not None:
        await task
    assert driver.override is DisplayOverride.FORCED_ON
    driver.toggle_display()
    assert driver.override is DisplayOverride.FORCED_OFF
    driver.toggle_display()
    assert driver.override is DisplayOverride.AUTO


async def test_tick_counts_down_and_fetches_at_zero(clock, running):
    client = FakeClient(make_snapshot(1))
    driver = await running(_driver(client, clock))
    driver._countdown = 2

    assert await driver.tick() is None
    assert driver.countdown == 1

    task = await driver.tick()
    assert task is not None
    await task
    assert client.calls == 2
    assert driver.countdown == 900


async def test_window_transitions_rebuild_the_cadence(running):
    clock = FakeClock(board_at(16, 29, 59))
    client = FakeClient(make_snapshot(1))
    driver = await running(_driver(client, clock))
    assert not driver.in_quiet_window

    clock.now = board_at(16, 30)
    assert await driver.tick() is None
    assert driver.in_quiet_window
    assert driver.countdown == 3600 - 1

    clock.now = board_at(7, 30)
    task = await driver.tick()
    assert not driver.in_quiet_window
    assert task is not None
    await task
    assert client.calls == 2
    assert driver.countdown == 900


async def test_quiet_countdown_expiry_recomputes_delay(running):
    clock = FakeClock(board_at(7, 0))
    client = FakeClient(make_snapshot(1))
    driver = await running(_driver(client, clock))
    assert driver.countdown == 300

    driver._countdown = 1
    clock.now = board_at(7, 27)
    assert await driver.tick() is None
    assert driver.countdown == 60
    assert client.calls == 0


async def test_tick_never_raises(clock, running):
    driver = await running(_driver(FakeClient(make_snapshot(1)), clock))

    def broken_clock():
        raise RuntimeError("clock failure")

    driver._clock = broken_clock
    assert await driver.tick() is None


# ----------------------------------------------------------------------
# Fetch guard and lifecycle
# ----------------------------------------------------------------------

async def test_only_one_fetch_in_flight(clock, running):
    client = FakeClient(make_snapshot(1))
    driver = await running(_driver(client, clock))

    client.gate = asyncio.Event()
    first = driver.force_refresh()
    await asyncio.sleep(0)
    assert driver.loading

    assert driver.force_refresh() is None
    assert await driver.refresh() is False

    client.gate.set()
    await first
    assert client.calls == 2
    assert not driver.loading


async def test_close_cancels_everything(clock):
    client = FakeClient(make_snapshot(1))
    driver = _driver(client, clock, tick_seconds=0.01)
    await driver.start()

    client.gate = asyncio.Event()
    fetch = driver.force_refresh()
    timer = driver._timer_task
    await asyncio.sleep(0)

    await driver.close()
    assert not driver.running
    assert fetch.cancelled()
    assert timer.done()

    calls = client.calls
    await asyncio.sleep(0.05)
    assert client.calls == calls


async def test_timer_drives_refreshes(clock):
    client = FakeClient(make_snapshot(1))
    driver = _driver(client, clock, tick_seconds=0.01)
    await driver.start()
    driver._countdown = 1
    try:
        await asyncio.sleep(0.1)
    finally:
        await driver.close()
    assert client.calls >= 2


# ----------------------------------------------------------------------
# Coordination
# ----------------------------------------------------------------------

async def test_blocked_instance_does_not_fetch(clock, running):
    epoch = FakeTime()
    medium = SharedMedium()
    holder = MemorySharedStore(medium)
    StorageLease(holder).acquire("other", epoch.value - 12, "kiosk")
    StorageLease(holder).renew("other", epoch.value - 1)

    client = FakeClient(make_snapshot(1))
    driver = await running(
        _driver(client, clock, store=MemorySharedStore(medium), epoch=epoch)
    )

    assert client.calls == 0
    assert driver.blocked_reason == (
        "This is not the primary instance. :( (Priority set 12s ago)"
    )
    assert driver.status_line() == driver.blocked_reason
    assert driver.countdown == 900

    # force refresh still respects the coordinator
    task = driver.force_refresh()
    await task
    assert client.calls == 0

    StorageLease(holder).revoke()
    driver._coordinator._notify()
    await asyncio.sleep(0)
    await driver._fetch_task
    assert client.calls == 1
    assert driver.blocked_reason is None


# ----------------------------------------------------------------------
# Presentation and publishing
# ----------------------------------------------------------------------

async def test_fullscreen_cursor_idle_timer(clock, running):
    driver = await running(
        _driver(
            FakeClient(make_snapshot(1)),
            clock,
            cursor_hide_on_enter=0.01,
            cursor_idle_seconds=0.02,
        )
    )

    assert driver.toggle_fullscreen() is True
    assert driver.presentation.cursor_visible
    await asyncio.sleep(0.05)
    assert not driver.presentation.cursor_visible

    driver.pointer_moved()
    assert driver.presentation.cursor_visible
    await asyncio.sleep(0.05)
    assert not driver.presentation.cursor_visible

    assert driver.toggle_fullscreen() is False
    assert driver.presentation.cursor_visible
    driver.pointer_moved()
    await asyncio.sleep(0.05)
    assert driver.presentation.cursor_visible


async def test_view_document_is_published(clock, running, tmp_path):
    publisher = BoardViewPublisher(tmp_path)
    board = BoardSnapshot(
        houses=tuple(rank_houses(make_snapshot(2, 8, names=["Green Hill", "Union Hill"]).houses))
    )
    await running(_driver(FakeClient(board), clock, publisher=publisher))

    assert publisher.writes > 0
    view = json.loads((tmp_path / "board.json").read_text(encoding="utf-8"))
    assert view["mode"] == "normal"
    assert view["board"]["houses"][0] == {
        "rank": 1,
        "name": "Union Hill",
        "points": 8,
        "color": "#000000",
    }
    assert view["board"]["total_points"] == 10
    assert view["status"] == "Next refresh in 15m 00s"
    assert view["last_updated"] == clock.now.isoformat()
