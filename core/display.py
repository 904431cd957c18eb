"""Display state definitions and the mode decision.

The board is in exactly one control mode at a time:

- NORMAL : the ranked board is shown
- IDLE   : the idle screen is shown (quiet hours, disabled, or no data)

A manual override (tri-state, see DisplayOverride) takes precedence over
every automatic rule. Loading and error indicators are overlays on top of
whichever mode is active; an error never turns NORMAL into IDLE.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from shared.scoreboards.snapshot import BoardSnapshot


class DisplayOverride(Enum):
    AUTO = "auto"
    FORCED_ON = "forced_on"
    FORCED_OFF = "forced_off"

    @classmethod
    def from_value(
        cls, value: Any, *, default: Optional["DisplayOverride"] = None
    ) -> "DisplayOverride":
        if isinstance(value, cls):
            return value

        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            for member in cls:
                if normalized in {member.name.lower(), member.value}:
                    return member
            if normalized in {"on", "show"}:
                return cls.FORCED_ON
            if normalized in {"off", "hide"}:
                return cls.FORCED_OFF

        # Legacy nullable boolean: None means "no override"
        if isinstance(value, bool):
            return cls.FORCED_ON if value else cls.FORCED_OFF

        return default or cls.AUTO

    def next(self) -> "DisplayOverride":
        """Toggle order: auto -> forced on -> forced off -> auto."""
        return _OVERRIDE_CYCLE[self]


_OVERRIDE_CYCLE = {
    DisplayOverride.AUTO: DisplayOverride.FORCED_ON,
    DisplayOverride.FORCED_ON: DisplayOverride.FORCED_OFF,
    DisplayOverride.FORCED_OFF: DisplayOverride.AUTO,
}


class DisplayMode(Enum):
    NORMAL = "normal"
    IDLE = "idle"
    FORCED_ON = "forced_on"
    FORCED_OFF = "forced_off"

    @property
    def shows_board(self) -> bool:
        return self in {DisplayMode.NORMAL, DisplayMode.FORCED_ON}


class IdleVariant(Enum):
    AFTER_HOURS = "after_hours"
    LATE_NIGHT = "late_night"


def compute_mode(
    snapshot: Optional[BoardSnapshot],
    in_quiet_window: bool,
    override: DisplayOverride = DisplayOverride.AUTO,
) -> DisplayMode:
    """Decide between NORMAL and IDLE, honouring the override first."""
    if override is DisplayOverride.FORCED_ON:
        return DisplayMode.NORMAL
    if override is DisplayOverride.FORCED_OFF:
        return DisplayMode.IDLE

    if in_quiet_window:
        return DisplayMode.IDLE
    if snapshot is None:
        return DisplayMode.IDLE
    if snapshot.display_enabled is False:
        return DisplayMode.IDLE
    if snapshot.is_empty:
        return DisplayMode.IDLE

    return DisplayMode.NORMAL


def presentation_mode(mode: DisplayMode, override: DisplayOverride) -> DisplayMode:
    """Report forced states explicitly so the front end can badge them."""
    if override is DisplayOverride.FORCED_ON:
        return DisplayMode.FORCED_ON
    if override is DisplayOverride.FORCED_OFF:
        return DisplayMode.FORCED_OFF
    return mode


def idle_variant(
    now: datetime,
    *,
    late_night_start_hour: int = 22,
    late_night_end_hour: int = 5,
) -> IdleVariant:
    if now.hour >= late_night_start_hour or now.hour < late_night_end_hour:
        return IdleVariant.LATE_NIGHT
    return IdleVariant.AFTER_HOURS


@dataclass(frozen=True)
class DisplayState:
    mode: DisplayMode
    presentation: DisplayMode
    override: DisplayOverride
    idle_variant: Optional[IdleVariant] = None
    loading: bool = False
    error: Optional[str] = None

    @property
    def shows_board(self) -> bool:
        return self.mode is DisplayMode.NORMAL


def derive_display_state(
    snapshot: Optional[BoardSnapshot],
    *,
    in_quiet_window: bool,
    override: DisplayOverride,
    now: datetime,
    loading: bool = False,
    error: Optional[str] = None,
    late_night_start_hour: int = 22,
    late_night_end_hour: int = 5,
) -> DisplayState:
    mode = compute_mode(snapshot, in_quiet_window, override)
    variant = None
    if mode is DisplayMode.IDLE:
        variant = idle_variant(
            now,
            late_night_start_hour=late_night_start_hour,
            late_night_end_hour=late_night_end_hour,
        )

    return DisplayState(
        mode=mode,
        presentation=presentation_mode(mode, override),
        override=override,
        idle_variant=variant,
        loading=loading,
        error=error,
    )


__all__ = [
    "DisplayMode",
    "DisplayOverride",
    "DisplayState",
    "IdleVariant",
    "compute_mode",
    "derive_display_state",
    "idle_variant",
    "presentation_mode",
]
