"""
Board document validation.

Turns a decoded JSON document into a ranked BoardSnapshot. Houses are
strict: any structural problem rejects the whole document. The auxiliary
sections (recent events, contributors, message) are lenient and fall back
to empty values with a warning, because a board with correct totals is
still worth showing.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

from services.board_api.errors import EmptyResult, InvalidShape
from shared.logging.logger import get_logger
from shared.scoreboards.ranking import (
    DEFAULT_CONTRIBUTOR_LIMIT,
    DEFAULT_RECENT_LIMIT,
    aggregate_contributors,
    rank_houses,
)
from shared.scoreboards.snapshot import BoardSnapshot, Contributor, House, RecentEvent

log = get_logger("board_api.validation")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    # NaN and Infinity decode as floats
    return isinstance(value, int) or math.isfinite(value)


def _parse_houses(raw: Any) -> Tuple[House, ...]:
    if not isinstance(raw, list):
        raise InvalidShape("Houses data is missing or invalid")

    houses: List[House] = []
    seen = set()
    for entry in raw:
        if not (
            isinstance(entry, dict)
            and isinstance(entry.get("name"), str)
            and _is_number(entry.get("points"))
            and isinstance(entry.get("color"), str)
        ):
            raise InvalidShape("Invalid house data structure")

        name = entry["name"]
        if name in seen:
            raise InvalidShape(f"Duplicate house name: {name}")
        seen.add(name)

        houses.append(House(name=name, points=int(entry["points"]), color=entry["color"]))

    return tuple(rank_houses(houses))


def _parse_recent_events(payload: Dict[str, Any], limit: int) -> Tuple[RecentEvent, ...]:
    raw = payload.get("lastInputs", payload.get("recentEvents"))
    if raw is None:
        return ()

    if not isinstance(raw, list) or not all(
        isinstance(entry, dict)
        and isinstance(entry.get("timestamp"), str)
        and isinstance(entry.get("house"), str)
        and _is_number(entry.get("points"))
        for entry in raw
    ):
        log.warning("Last inputs missing or invalid, using empty list")
        return ()

    return tuple(
        RecentEvent(
            timestamp=entry["timestamp"],
            house=entry["house"],
            points=int(entry["points"]),
        )
        for entry in raw[:limit]
    )


def _parse_contributors(payload: Dict[str, Any], limit: int) -> Tuple[Contributor, ...]:
    raw = payload.get("topContributors")
    if raw is None:
        return ()

    contributors: List[Contributor] = []
    if isinstance(raw, list):
        for entry in raw:
            label = entry.get("email", entry.get("label")) if isinstance(entry, dict) else None
            points = entry.get("points") if isinstance(entry, dict) else None
            if not isinstance(label, str) or not _is_number(points):
                contributors = []
                break
            contributors.append(Contributor(label=label, points=int(points)))
        else:
            return tuple(
                aggregate_contributors(
                    ((c.label, c.points) for c in contributors), limit=limit
                )
            )

    log.warning("Top contributors missing or invalid, using empty list")
    return ()


def _parse_optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        log.warning(f"Ignoring non-string {key!r} in board document")
        return None
    return value


def _parse_display_enabled(payload: Dict[str, Any]) -> Optional[bool]:
    value = payload.get("displayEnabled", payload.get("showBoard"))
    if value is None or isinstance(value, bool):
        return value
    log.warning(f"Ignoring non-boolean displayEnabled={value!r}")
    return None


def parse_board_document(
    payload: Any,
    *,
    recent_limit: int = DEFAULT_RECENT_LIMIT,
    contributor_limit: int = DEFAULT_CONTRIBUTOR_LIMIT,
) -> BoardSnapshot:
    """
    Validate a decoded board document.

    Raises:
        InvalidShape: the root is not an object or ``houses`` is malformed.
        EmptyResult: ``houses`` is a well-formed but empty list.
    """
    if not isinstance(payload, dict):
        raise InvalidShape("Invalid response format")

    houses = _parse_houses(payload.get("houses"))
    if not houses:
        raise EmptyResult()

    return BoardSnapshot(
        houses=houses,
        recent_events=_parse_recent_events(payload, recent_limit),
        top_contributors=_parse_contributors(payload, contributor_limit),
        message=_parse_optional_str(payload, "message"),
        display_enabled=_parse_display_enabled(payload),
        background_color=_parse_optional_str(payload, "backgroundColor"),
    )


__all__ = ["parse_board_document"]
