from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import httpx

from shared.config.board import SheetsConfig
from shared.logging.logger import get_logger
from shared.scoreboards.ranking import (
    DEFAULT_CONTRIBUTOR_LIMIT,
    DEFAULT_RECENT_LIMIT,
    aggregate_contributors,
    parse_points,
    rank_houses,
    select_recent_events,
)
from shared.scoreboards.snapshot import BoardSnapshot, House

log = get_logger("sheets.client", runtime="board_api")

FALLBACK_COLOR = "#cccccc"


def _first_cell(value_range: Optional[Dict[str, Any]]) -> Optional[str]:
    if not isinstance(value_range, dict):
        return None
    values = value_range.get("values") or []
    if not values or not values[0]:
        return None
    cell = values[0][0]
    return None if cell is None else str(cell)


def _rows(value_range: Optional[Dict[str, Any]]) -> List[Sequence[Any]]:
    if not isinstance(value_range, dict):
        return []
    rows = value_range.get("values") or []
    return [row for row in rows if isinstance(row, list)]


def _as_points(cell: Any) -> int:
    points = parse_points(cell)
    return points if points is not None else 0


def normalize_background_color(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    color = value.strip()
    return color if color.startswith("#") else f"#{color}"


def build_board_snapshot(
    value_ranges: Sequence[Dict[str, Any]],
    cfg: SheetsConfig,
    *,
    recent_limit: int = DEFAULT_RECENT_LIMIT,
    contributor_limit: int = DEFAULT_CONTRIBUTOR_LIMIT,
) -> BoardSnapshot:
    """
    Build a board from a batchGet response.

    ``value_ranges`` must be in request order: house points, inputs,
    contributors, message, show-board flag, background colour.
    """
    padded = list(value_ranges) + [None] * (6 - len(value_ranges))
    points_range, inputs_range, contributors_range, message_range, show_range, color_range = padded[:6]

    point_rows = _rows(points_range)
    houses = []
    for index, (name, color) in enumerate(cfg.houses):
        row = point_rows[index] if index < len(point_rows) else []
        houses.append(
            House(
                name=name,
                points=_as_points(row[0]) if row else 0,
                color=color or FALLBACK_COLOR,
            )
        )

    message = _first_cell(message_range)
    show_board = (_first_cell(show_range) or "").strip().lower() == "true"

    return BoardSnapshot(
        houses=tuple(rank_houses(houses)),
        recent_events=tuple(
            select_recent_events(
                _rows(inputs_range),
                limit=recent_limit,
                excluded_senders=cfg.excluded_senders,
            )
        ),
        top_contributors=tuple(
            aggregate_contributors(_rows(contributors_range), limit=contributor_limit)
        ),
        message=message or None,
        display_enabled=show_board,
        background_color=normalize_background_color(_first_cell(color_range)),
    )


class SheetsBoardSource:
    """
    Google Sheets batchGet reader (public read-only access via API key).

    Responsibilities:
    - Request every board range in one batchGet call
    - Convert the value ranges into a ranked BoardSnapshot

    On any upstream failure the source returns an empty board, which board
    clients treat as "keep what you have".
    """

    BATCH_GET_URL = "https://sheets.googleapis.com/v4/spreadsheets/{spreadsheet_id}/values:batchGet"

    def __init__(
        self,
        cfg: SheetsConfig,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.cfg = cfg
        self.timeout = timeout
        self._transport = transport

    def _ranges(self) -> List[str]:
        return [
            self.cfg.house_points_range,
            self.cfg.inputs_range,
            self.cfg.contributors_range,
            self.cfg.message_range,
            self.cfg.show_board_range,
            self.cfg.background_color_range,
        ]

    def load(self) -> BoardSnapshot:
        if not self.cfg.spreadsheet_id or not self.cfg.api_key:
            log.warning("Google Sheets ID or API key missing; serving empty board")
            return BoardSnapshot()

        url = self.BATCH_GET_URL.format(spreadsheet_id=self.cfg.spreadsheet_id)
        params = [("ranges", r) for r in self._ranges()] + [("key", self.cfg.api_key)]

        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = client.get(url, params=params)
                r.raise_for_status()
                data = r.json()
            except (httpx.HTTPError, ValueError) as e:
                log.error(f"Error fetching house data: {e}")
                return BoardSnapshot()

        value_ranges = data.get("valueRanges", []) if isinstance(data, dict) else []
        return build_board_snapshot(value_ranges, self.cfg)
