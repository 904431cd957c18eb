from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from shared.scoreboards.snapshot import BoardSnapshot, House

TZ = ZoneInfo("America/New_York")


class FakeClock:
    """Settable wall clock for the driver and schedule."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeTime:
    """Settable epoch clock for the coordinator."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value


def board_at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2026, 3, 10, hour, minute, second, tzinfo=TZ)


def make_snapshot(*points, names=None) -> BoardSnapshot:
    names = names or [f"House {i}" for i in range(len(points))]
    return BoardSnapshot(
        houses=tuple(
            House(name=name, points=p, color="#000000") for name, p in zip(names, points)
        )
    )
