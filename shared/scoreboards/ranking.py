"""
Ranking and aggregation helpers for the house points board.

Pure functions only: no I/O, no clock, no logging side effects beyond
what callers choose to do with the results.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from shared.scoreboards.snapshot import Contributor, House, RecentEvent

DEFAULT_RECENT_LIMIT = 3
DEFAULT_CONTRIBUTOR_LIMIT = 5


def parse_points(value: Any) -> Optional[int]:
    """Leading-integer parse in the spirit of spreadsheet cell values."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    sign = ""
    if text[:1] in {"-", "+"}:
        sign, text = text[:1], text[1:]

    digits = ""
    for char in text:
        if not char.isdigit():
            break
        digits += char

    if not digits:
        return None
    return int(sign + digits)


def _cell(row: Sequence[Any], index: int) -> str:
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index])


def rank_houses(houses: Iterable[House]) -> List[House]:
    """Order houses by points, highest first; ties keep their input order."""
    return sorted(houses, key=lambda house: -house.points)


def aggregate_contributors(
    rows: Iterable[Sequence[Any]],
    *,
    limit: int = DEFAULT_CONTRIBUTOR_LIMIT,
) -> List[Contributor]:
    """
    Sum points per label and return the top ``limit`` contributors.

    Rows are ``(label, points)`` pairs. Rows with a blank label or a
    non-positive / unparseable points value are skipped.
    """
    totals: Dict[str, int] = {}

    for row in rows:
        label = _cell(row, 0)
        points = parse_points(row[1] if len(row) > 1 else None)
        if not label.strip() or points is None or points <= 0:
            continue
        totals[label] = totals.get(label, 0) + points

    ranked = sorted(totals.items(), key=lambda item: -item[1])
    return [Contributor(label=label, points=points) for label, points in ranked[:limit]]


def select_recent_events(
    rows: Iterable[Sequence[Any]],
    *,
    limit: int = DEFAULT_RECENT_LIMIT,
    excluded_senders: Iterable[str] = ("eventengine",),
) -> List[RecentEvent]:
    """
    Pick the newest ``limit`` valid point entries, newest first.

    Rows follow the input sheet layout ``(timestamp, sender, house, points)``
    and are assumed to be in chronological order. A row is valid when the
    timestamp, sender and house are non-blank, points are present, and the
    sender is not one of ``excluded_senders`` (compared case-insensitively).
    """
    excluded = {sender.strip().lower() for sender in excluded_senders}
    valid: List[RecentEvent] = []

    for row in rows:
        timestamp = _cell(row, 0).strip()
        sender = _cell(row, 1).strip()
        house = _cell(row, 2).strip()
        if not timestamp or not sender or not house or len(row) < 4:
            continue
        if sender.lower() in excluded:
            continue

        points = parse_points(row[3])
        valid.append(
            RecentEvent(
                timestamp=_cell(row, 0),
                house=_cell(row, 2),
                points=points if points is not None else 0,
            )
        )

    if limit <= 0:
        return []
    return list(reversed(valid[-limit:]))


__all__ = [
    "DEFAULT_CONTRIBUTOR_LIMIT",
    "DEFAULT_RECENT_LIMIT",
    "aggregate_contributors",
    "parse_points",
    "rank_houses",
    "select_recent_events",
]
