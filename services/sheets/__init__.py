"""Google Sheets board source."""

from .client import SheetsBoardSource, build_board_snapshot

__all__ = [
    "SheetsBoardSource",
    "build_board_snapshot",
]
