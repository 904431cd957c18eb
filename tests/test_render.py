from datetime import datetime

import pytest

from core.display import DisplayOverride, derive_display_state
from core.render import build_view_document, format_countdown, format_time_ago, status_line
from shared.scoreboards.snapshot import BoardSnapshot, RecentEvent
from support import TZ, board_at, make_snapshot

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=TZ)


@pytest.mark.parametrize(
    "timestamp, expected",
    [
        ("10/03/2026 11:59:30", "just now"),
        ("10/03/2026 11:59:00", "1 minute ago"),
        ("10/03/2026 11:15:00", "45 minutes ago"),
        ("10/03/2026 11:00:00", "1 hour ago"),
        ("10/03/2026 07:00:00", "5 hours ago"),
        ("09/03/2026 11:00:00", "yesterday"),
        ("06/03/2026 10:00:00", "4 days ago"),
        ("01/02/2026 12:00:00", "Feb 1"),
        ("24/12/2025 12:00:00", "Dec 24, 2025"),
        ("not a date", "not a date"),
    ],
)
def test_format_time_ago(timestamp, expected):
    assert format_time_ago(timestamp, NOW) == expected


def test_format_countdown():
    assert format_countdown(30) == "30s"
    assert format_countdown(119) == "119s"
    assert format_countdown(300) == "5m 00s"
    assert format_countdown(3600) == "60m 00s"
    assert format_countdown(7300) == "2h 01m"
    assert format_countdown(-4) == "0s"


def test_status_line_precedence():
    assert status_line(loading=True, countdown=10, blocked_reason="blocked") == "Refreshing..."
    assert status_line(loading=False, countdown=10, blocked_reason="blocked") == "blocked"
    assert status_line(loading=False, countdown=60, quiet=True) == "Quiet hours, next check in 60s"
    assert (
        status_line(loading=False, countdown=30, error="Failed to load data. Retrying...")
        == "Next refresh in 30s Failed to load data. Retrying..."
    )


def test_view_document_for_idle_board():
    display = derive_display_state(
        None, in_quiet_window=True, override=DisplayOverride.AUTO, now=board_at(23, 0)
    )
    doc = build_view_document(
        snapshot=None,
        display=display,
        status="Quiet hours, next check in 60m 00s",
        now=board_at(23, 0),
        last_updated=None,
        fullscreen=False,
        cursor_visible=True,
        priority_holder=False,
    )
    assert doc["mode"] == "idle"
    assert doc["shows_board"] is False
    assert doc["idle"]["variant"] == "late_night"
    assert doc["board"]["houses"] == []
    assert doc["last_updated"] is None


def test_view_document_includes_relative_times_and_totals():
    snapshot = BoardSnapshot(
        houses=make_snapshot(20, 5, names=["Green Hill", "Union Hill"]).houses,
        recent_events=(RecentEvent("10/03/2026 11:50:00", "Green Hill", 5),),
        message="Spirit week",
        background_color="#112233",
    )
    display = derive_display_state(
        snapshot, in_quiet_window=False, override=DisplayOverride.FORCED_ON, now=NOW
    )
    doc = build_view_document(
        snapshot=snapshot,
        display=display,
        status="Next refresh in 15m 00s",
        now=NOW,
        last_updated=NOW,
        fullscreen=True,
        cursor_visible=False,
        priority_holder=True,
    )
    assert doc["mode"] == "normal"
    assert doc["presentation"] == "forced_on"
    assert doc["override"] == "forced_on"
    assert doc["board"]["recent"][0]["ago"] == "10 minutes ago"
    assert doc["board"]["total_points"] == 25
    assert doc["board"]["contributors"] == []
    assert doc["board"]["message"] == "Spirit week"
    assert doc["board"]["background_color"] == "#112233"
    assert doc["fullscreen"] is True
    assert doc["priority_holder"] is True
