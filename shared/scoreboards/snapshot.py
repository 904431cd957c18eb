"""
House points board snapshot models.

A snapshot is one fetched, validated unit of board data. Instances are
immutable; the refresh driver swaps whole snapshots rather than mutating
them, so a failed refresh can never leave a half-updated board behind.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class House:
    name: str
    points: int
    color: str

    def to_document(self) -> Dict[str, Any]:
        return {"name": self.name, "points": self.points, "color": self.color}


@dataclass(frozen=True)
class RecentEvent:
    """Single point award; timestamp is "DD/MM/YYYY HH:mm:ss" board-local time."""

    timestamp: str
    house: str
    points: int

    def to_document(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "house": self.house, "points": self.points}


@dataclass(frozen=True)
class Contributor:
    label: str
    points: int

    def to_document(self) -> Dict[str, Any]:
        # "email" is the historical wire name for the label
        return {"email": self.label, "points": self.points}


@dataclass(frozen=True)
class BoardSnapshot:
    houses: Tuple[House, ...] = ()
    recent_events: Tuple[RecentEvent, ...] = ()
    top_contributors: Tuple[Contributor, ...] = ()
    message: Optional[str] = None
    display_enabled: Optional[bool] = None
    background_color: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.houses

    @property
    def total_points(self) -> int:
        return sum(house.points for house in self.houses)

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "houses": [house.to_document() for house in self.houses],
            "lastInputs": [event.to_document() for event in self.recent_events],
            "topContributors": [c.to_document() for c in self.top_contributors],
        }

        if self.message is not None:
            doc["message"] = self.message
        if self.display_enabled is not None:
            doc["displayEnabled"] = self.display_enabled
        if self.background_color is not None:
            doc["backgroundColor"] = self.background_color

        return doc


__all__ = [
    "BoardSnapshot",
    "Contributor",
    "House",
    "RecentEvent",
]
