"""
Refresh schedule evaluation.

Decides whether polling is permitted right now and how long to wait before
the next attempt. Two regimes:

- active hours : a fixed interval after a successful fetch, a short retry
                 interval after a failed one
- quiet hours  : no polling; instead a coarse recheck whose period shrinks
                 as the end of the quiet window approaches

A FORCED_ON display override bypasses quiet hours entirely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import List, Sequence, Tuple

from core.display import DisplayOverride
from shared.config.board import ScheduleConfig


@dataclass(frozen=True)
class QuietWindow:
    start: time
    end: time

    @property
    def wraps_midnight(self) -> bool:
        return self.start > self.end

    def contains(self, moment: time) -> bool:
        moment = moment.replace(tzinfo=None)
        if self.start == self.end:
            return False
        if self.wraps_midnight:
            return moment >= self.start or moment < self.end
        return self.start <= moment < self.end

    def time_until_end(self, now: datetime) -> timedelta:
        """Time from ``now`` until the next occurrence of the window end."""
        end = now.replace(
            hour=self.end.hour,
            minute=self.end.minute,
            second=self.end.second,
            microsecond=0,
        )
        if end <= now:
            end += timedelta(days=1)
        return end - now


@dataclass(frozen=True)
class ScheduleState:
    in_quiet_window: bool
    seconds_until_next_poll: int


@dataclass
class ScheduleEvaluator:
    window: QuietWindow
    active_interval: int = 900
    retry_interval: int = 30
    # (seconds remaining in the quiet window, recheck period), ascending
    quiet_tiers: List[Tuple[int, int]] = field(
        default_factory=lambda: [(300, 60), (3600, 300)]
    )
    quiet_default_recheck: int = 3600

    @classmethod
    def from_config(cls, cfg: ScheduleConfig) -> "ScheduleEvaluator":
        return cls(
            window=QuietWindow(start=cfg.quiet_start, end=cfg.quiet_end),
            active_interval=cfg.active_interval_seconds,
            retry_interval=cfg.retry_interval_seconds,
            quiet_tiers=sorted(cfg.quiet_tiers),
            quiet_default_recheck=cfg.quiet_default_recheck_seconds,
        )

    # ------------------------------------------------------------

    def is_quiet_now(self, now: datetime) -> bool:
        return self.window.contains(now.time())

    def polling_permitted(
        self,
        now: datetime,
        override: DisplayOverride = DisplayOverride.AUTO,
    ) -> bool:
        if override is DisplayOverride.FORCED_ON:
            return True
        return not self.is_quiet_now(now)

    def quiet_recheck_delay(self, now: datetime) -> int:
        remaining = self.window.time_until_end(now).total_seconds()
        recheck = _tier_for(remaining, self.quiet_tiers, self.quiet_default_recheck)
        # never sleep past the reopening
        return max(1, int(min(recheck, remaining)))

    def next_poll_delay(
        self,
        now: datetime,
        override: DisplayOverride = DisplayOverride.AUTO,
        *,
        failed: bool = False,
    ) -> int:
        if not self.polling_permitted(now, override):
            return self.quiet_recheck_delay(now)
        if failed:
            return self.retry_interval
        return self.active_interval

    def evaluate(
        self,
        now: datetime,
        override: DisplayOverride = DisplayOverride.AUTO,
        *,
        failed: bool = False,
    ) -> ScheduleState:
        return ScheduleState(
            in_quiet_window=self.is_quiet_now(now),
            seconds_until_next_poll=self.next_poll_delay(now, override, failed=failed),
        )


def _tier_for(remaining: float, tiers: Sequence[Tuple[int, int]], default: int) -> int:
    for within, recheck in tiers:
        if remaining <= within:
            return recheck
    return default


__all__ = [
    "QuietWindow",
    "ScheduleEvaluator",
    "ScheduleState",
]
