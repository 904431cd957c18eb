"""
Refresh driver (top-level control loop).

Owns:
- the 1s timer task and the poll countdown
- the fetch-in-progress guard and the in-flight fetch task
- the manual display override and presentation state (fullscreen, cursor)
- publication of the view document after every state change

Contract:
- start() is awaitable and performs the initial refresh attempt
- tick() never raises; every tick is independently recoverable
- close() is idempotent and cancels every task the driver created
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from core.coordinator import InstanceCoordinator
from core.display import DisplayOverride, DisplayState, derive_display_state
from core.render import build_view_document, status_line
from core.schedule import ScheduleEvaluator
from services.board_api.errors import BoardFetchError
from shared.config.board import DisplayConfig
from shared.logging.logger import get_logger
from shared.scoreboards.snapshot import BoardSnapshot
from shared.storage.view_publisher import BoardViewPublisher

log = get_logger("core.driver")

Clock = Callable[[], datetime]

ERROR_MESSAGE = "Failed to load data. Retrying..."


class SnapshotSource(Protocol):
    async def fetch(self) -> BoardSnapshot: ...


@dataclass
class PresentationState:
    fullscreen: bool = False
    cursor_visible: bool = True


class RefreshDriver:
    def __init__(
        self,
        *,
        client: SnapshotSource,
        schedule: ScheduleEvaluator,
        coordinator: InstanceCoordinator,
        clock: Clock,
        publisher: Optional[BoardViewPublisher] = None,
        display_cfg: Optional[DisplayConfig] = None,
        tick_seconds: float = 1.0,
        cursor_hide_on_enter: float = 1.0,
        cursor_idle_seconds: float = 3.0,
    ):
        self._client = client
        self._schedule = schedule
        self._coordinator = coordinator
        self._clock = clock
        self._publisher = publisher
        self._display_cfg = display_cfg or DisplayConfig()
        self.tick_seconds = tick_seconds
        self.cursor_hide_on_enter = cursor_hide_on_enter
        self.cursor_idle_seconds = cursor_idle_seconds

        self._snapshot: Optional[BoardSnapshot] = None
        self._last_updated: Optional[datetime] = None
        self._countdown: int = schedule.active_interval
        self._loading = False
        self._error: Optional[str] = None
        self._blocked_reason: Optional[str] = None
        self._override = DisplayOverride.AUTO
        self._quiet = False
        self._presentation = PresentationState()

        self._running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._cursor_task: Optional[asyncio.Task] = None

    # --------------------------------------------------
    # Read-only introspection
    # --------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def snapshot(self) -> Optional[BoardSnapshot]:
        return self._snapshot

    @property
    def last_updated(self) -> Optional[datetime]:
        return self._last_updated

    @property
    def countdown(self) -> int:
        return self._countdown

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def blocked_reason(self) -> Optional[str]:
        return self._blocked_reason

    @property
    def override(self) -> DisplayOverride:
        return self._override

    @property
    def in_quiet_window(self) -> bool:
        return self._quiet

    @property
    def presentation(self) -> PresentationState:
        return self._presentation

    def display_state(self) -> DisplayState:
        return derive_display_state(
            self._snapshot,
            in_quiet_window=self._quiet,
            override=self._override,
            now=self._clock(),
            loading=self._loading,
            error=self._error,
            late_night_start_hour=self._display_cfg.late_night_start_hour,
            late_night_end_hour=self._display_cfg.late_night_end_hour,
        )

    def status_line(self) -> str:
        return status_line(
            loading=self._loading,
            countdown=self._countdown,
            error=self._error,
            blocked_reason=self._blocked_reason,
            quiet=not self._schedule.polling_permitted(self._clock(), self._override),
        )

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self) -> None:
        if self._running:
            log.warning("Refresh driver already running")
            return

        now = self._clock()
        self._running = True
        self._quiet = self._schedule.is_quiet_now(now)
        self._countdown = self._schedule.next_poll_delay(now, self._override)
        self._coordinator.on_change(self._on_priority_change)

        log.info(
            f"Refresh driver starting ({'quiet' if self._quiet else 'active'} hours, "
            f"next poll in {self._countdown}s)"
        )

        self._restart_timer()
        await self.refresh()

    async def close(self) -> None:
        if not self._running:
            return

        self._running = False
        self._coordinator.remove_listener(self._on_priority_change)

        tasks = [
            t for t in (self._timer_task, self._fetch_task, self._cursor_task)
            if t is not None and t is not asyncio.current_task()
        ]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._timer_task = None
        self._fetch_task = None
        self._cursor_task = None
        log.info("Refresh driver stopped")

    # --------------------------------------------------
    # Timer
    # --------------------------------------------------

    def _restart_timer(self) -> None:
        if not self._running:
            return

        old = self._timer_task
        self._timer_task = asyncio.get_running_loop().create_task(
            self._run_timer(), name="refresh-timer"
        )
        if old is not None and old is not asyncio.current_task() and not old.done():
            old.cancel()

    async def _run_timer(self) -> None:
        me = asyncio.current_task()
        try:
            while self._running and self._timer_task is me:
                await asyncio.sleep(self.tick_seconds)
                if self._timer_task is not me:
                    break
                await self.tick()
        except asyncio.CancelledError:
            raise

    async def tick(self) -> Optional[asyncio.Task]:
        """
        Advance the countdown by one step.

        Returns the refresh task when this tick triggered one.
        """
        try:
            now = self._clock()
            quiet = self._schedule.is_quiet_now(now)
            if quiet != self._quiet:
                self._on_window_transition(quiet, now)

            if self._countdown > 0:
                self._countdown -= 1
            if self._countdown > 0:
                return None

            if not self._schedule.polling_permitted(now, self._override):
                self._countdown = self._schedule.quiet_recheck_delay(now)
                log.debug(f"Quiet hours: next check in {self._countdown}s")
                self._publish()
                return None

            return self._spawn_refresh()
        except Exception as e:
            log.error(f"Refresh tick failed: {e}")
            return None

    def _on_window_transition(self, quiet: bool, now: datetime) -> None:
        self._quiet = quiet
        log.info(f"Entering {'quiet' if quiet else 'active'} hours; rebuilding timers")

        if not quiet:
            # reopening: poll right away, the fetch result sets the new cadence
            self._countdown = 0
        elif self._override is DisplayOverride.FORCED_ON:
            self._countdown = self._schedule.active_interval
        else:
            self._countdown = self._schedule.quiet_recheck_delay(now)

        self._restart_timer()
        self._publish()

    # --------------------------------------------------
    # Refresh
    # --------------------------------------------------

    def _spawn_refresh(self, *, force: bool = False) -> Optional[asyncio.Task]:
        if self._loading or (self._fetch_task is not None and not self._fetch_task.done()):
            log.debug("Refresh not started: fetch already in progress")
            return None

        self._fetch_task = asyncio.get_running_loop().create_task(
            self.refresh(force=force), name="refresh-fetch"
        )
        return self._fetch_task

    async def refresh(self, *, force: bool = False) -> bool:
        """
        Attempt one fetch. Returns True when a new snapshot was applied.

        ``force`` bypasses quiet hours but never the coordinator.
        """
        if self._loading:
            log.debug("Refresh skipped: fetch already in progress")
            return False

        now = self._clock()
        if not force and not self._schedule.polling_permitted(now, self._override):
            self._countdown = self._schedule.next_poll_delay(now, self._override)
            self._publish()
            return False

        if not self._coordinator.can_fetch():
            self._blocked_reason = self._coordinator.block_reason()
            self._countdown = self._schedule.next_poll_delay(now, self._override)
            log.debug(f"Refresh blocked: {self._blocked_reason}")
            self._publish()
            return False

        self._blocked_reason = None
        self._loading = True
        self._publish()

        try:
            snapshot = await self._client.fetch()
        except asyncio.CancelledError:
            raise
        except BoardFetchError as e:
            self._record_failure(f"{type(e).__name__}: {e}")
        except Exception as e:
            log.exception(f"Unexpected error while fetching board: {e}")
            self._record_failure(f"{type(e).__name__}: {e}")
        else:
            self._apply_snapshot(snapshot)
            return True
        finally:
            self._loading = False
            self._publish()

        return False

    def _apply_snapshot(self, snapshot: BoardSnapshot) -> None:
        now = self._clock()
        self._snapshot = snapshot
        self._last_updated = now
        self._error = None
        self._countdown = self._schedule.next_poll_delay(now, self._override)
        log.info(
            f"Board updated: {len(snapshot.houses)} house(s), leader "
            f"{snapshot.houses[0].name} ({snapshot.houses[0].points})"
        )

    def _record_failure(self, detail: str) -> None:
        now = self._clock()
        self._error = ERROR_MESSAGE
        self._countdown = self._schedule.next_poll_delay(now, self._override, failed=True)
        log.warning(f"Board refresh failed ({detail}); retrying in {self._countdown}s")

    def _on_priority_change(self, allowed: bool) -> None:
        was_blocked = self._blocked_reason is not None
        if allowed:
            self._blocked_reason = None
            if was_blocked and self._running:
                log.info("Fetch permission regained; refreshing")
                self._spawn_refresh()
        elif not was_blocked:
            self._blocked_reason = self._coordinator.block_reason()

        if was_blocked != (self._blocked_reason is not None):
            self._publish()

    # --------------------------------------------------
    # Manual commands
    # --------------------------------------------------

    def force_refresh(self) -> Optional[asyncio.Task]:
        log.info("Manual refresh requested")
        self._countdown = self._schedule.active_interval
        return self._spawn_refresh(force=True)

    def set_override(self, override: DisplayOverride) -> Optional[asyncio.Task]:
        previous = self._override
        if override is previous:
            return None

        self._override = override
        log.info(f"Display override: {previous.value} -> {override.value}")
        now = self._clock()

        if override is DisplayOverride.FORCED_ON:
            self._countdown = self._schedule.active_interval
            self._restart_timer()
            self._publish()
            return self._spawn_refresh(force=True)

        if previous is DisplayOverride.FORCED_ON:
            self._countdown = self._schedule.next_poll_delay(now, override)

        self._restart_timer()
        self._publish()
        return None

    def toggle_display(self) -> Optional[asyncio.Task]:
        return self.set_override(self._override.next())

    def toggle_fullscreen(self) -> bool:
        self._cancel_cursor_timer()
        self._presentation.fullscreen = not self._presentation.fullscreen
        self._presentation.cursor_visible = True

        if self._presentation.fullscreen:
            self._schedule_cursor_hide(self.cursor_hide_on_enter)

        log.info(f"Fullscreen {'entered' if self._presentation.fullscreen else 'exited'}")
        self._publish()
        return self._presentation.fullscreen

    def pointer_moved(self) -> None:
        if not self._presentation.fullscreen:
            return
        self._cancel_cursor_timer()
        if not self._presentation.cursor_visible:
            self._presentation.cursor_visible = True
            self._publish()
        self._schedule_cursor_hide(self.cursor_idle_seconds)

    def _schedule_cursor_hide(self, delay: float) -> None:
        self._cursor_task = asyncio.get_running_loop().create_task(
            self._hide_cursor_after(delay), name="cursor-idle"
        )

    def _cancel_cursor_timer(self) -> None:
        task = self._cursor_task
        self._cursor_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _hide_cursor_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        if self._presentation.fullscreen:
            self._presentation.cursor_visible = False
            self._publish()

    # --------------------------------------------------
    # View publication
    # --------------------------------------------------

    def view_document(self) -> dict:
        now = self._clock()
        return {
            **build_view_document(
                snapshot=self._snapshot,
                display=self.display_state(),
                status=self.status_line(),
                now=now,
                last_updated=self._last_updated,
                fullscreen=self._presentation.fullscreen,
                cursor_visible=self._presentation.cursor_visible,
                priority_holder=self._coordinator.is_priority_holder(),
            ),
            "next_poll_at": (now + timedelta(seconds=self._countdown)).isoformat(),
        }

    def _publish(self) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(self._display_cfg.view_file, self.view_document())
        except Exception as e:
            log.error(f"Failed to publish board view: {e}")


__all__ = [
    "ERROR_MESSAGE",
    "PresentationState",
    "RefreshDriver",
    "SnapshotSource",
]
