"""View rendering helpers: status line, relative times and the view document.

The view document is what the kiosk front end reads (board.json). It is
built from the driver state only; nothing here performs I/O.
"""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from core.display import DisplayState, IdleVariant
from shared.scoreboards.snapshot import BoardSnapshot

EVENT_TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"
BOARD_TIMEZONE = ZoneInfo("America/New_York")

IDLE_HEADLINES = {
    IdleVariant.AFTER_HOURS: "The board is resting. See you in the morning!",
    IdleVariant.LATE_NIGHT: "Good night! The board wakes up tomorrow morning.",
}


def parse_event_timestamp(
    value: str, tz: tzinfo = BOARD_TIMEZONE
) -> Optional[datetime]:
    try:
        return datetime.strptime(value.strip(), EVENT_TIMESTAMP_FORMAT).replace(tzinfo=tz)
    except (ValueError, AttributeError):
        return None


def format_time_ago(timestamp: str, now: datetime, tz: tzinfo = BOARD_TIMEZONE) -> str:
    """Human relative time for a "DD/MM/YYYY HH:mm:ss" board timestamp."""
    moment = parse_event_timestamp(timestamp, tz)
    if moment is None:
        return timestamp

    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)

    minutes = int((now - moment) / timedelta(minutes=1))
    if minutes < 1:
        return "just now"
    if minutes == 1:
        return "1 minute ago"
    if minutes < 60:
        return f"{minutes} minutes ago"

    hours = minutes // 60
    if hours == 1:
        return "1 hour ago"
    if hours < 24:
        return f"{hours} hours ago"

    days = hours // 24
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days} days ago"

    label = f"{moment.strftime('%b')} {moment.day}"
    if moment.year != now.astimezone(tz).year:
        label = f"{label}, {moment.year}"
    return label


def format_countdown(seconds: int) -> str:
    seconds = max(0, int(seconds))
    if seconds < 120:
        return f"{seconds}s"
    minutes, rest = divmod(seconds, 60)
    if minutes < 120:
        return f"{minutes}m {rest:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def status_line(
    *,
    loading: bool,
    countdown: int,
    error: Optional[str] = None,
    blocked_reason: Optional[str] = None,
    quiet: bool = False,
) -> str:
    if loading:
        text = "Refreshing..."
    elif blocked_reason:
        text = blocked_reason
    elif quiet:
        text = f"Quiet hours, next check in {format_countdown(countdown)}"
    else:
        text = f"Next refresh in {format_countdown(countdown)}"

    if error:
        text = f"{text} {error}"
    return text


def build_view_document(
    *,
    snapshot: Optional[BoardSnapshot],
    display: DisplayState,
    status: str,
    now: datetime,
    last_updated: Optional[datetime],
    fullscreen: bool,
    cursor_visible: bool,
    priority_holder: bool,
) -> Dict[str, Any]:
    board: Dict[str, Any] = {
        "houses": [],
        "recent": [],
        "contributors": [],
        "total_points": 0,
        "message": None,
        "background_color": None,
    }
    if snapshot is not None:
        board = {
            "houses": [
                {"rank": index + 1, **house.to_document()}
                for index, house in enumerate(snapshot.houses)
            ],
            "recent": [
                {
                    **event.to_document(),
                    "ago": format_time_ago(event.timestamp, now, now.tzinfo or BOARD_TIMEZONE),
                }
                for event in snapshot.recent_events
            ],
            "contributors": [
                {"rank": index + 1, "label": c.label, "points": c.points}
                for index, c in enumerate(snapshot.top_contributors)
            ],
            "total_points": snapshot.total_points,
            "message": snapshot.message,
            "background_color": snapshot.background_color,
        }

    return {
        "mode": display.mode.value,
        "presentation": display.presentation.value,
        "override": display.override.value,
        "shows_board": display.presentation.shows_board,
        "idle": (
            {
                "variant": display.idle_variant.value,
                "headline": IDLE_HEADLINES[display.idle_variant],
            }
            if display.idle_variant is not None
            else None
        ),
        "loading": display.loading,
        "error": display.error,
        "status": status,
        "board": board,
        "last_updated": last_updated.isoformat() if last_updated else None,
        "generated_at": now.isoformat(),
        "fullscreen": fullscreen,
        "cursor_visible": cursor_visible,
        "priority_holder": priority_holder,
    }


__all__ = [
    "build_view_document",
    "format_countdown",
    "format_time_ago",
    "parse_event_timestamp",
    "status_line",
]
