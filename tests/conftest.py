import os

# keep test runs from writing per-run log files
os.environ.setdefault("HOUSEPOINTS_LOG_TO_FILE", "0")
os.environ.setdefault("HOUSEPOINTS_LOG_LEVEL", "WARNING")

import pytest

from support import FakeClock, FakeTime, board_at


@pytest.fixture
def clock():
    return FakeClock(board_at(10, 0))


@pytest.fixture
def epoch():
    return FakeTime()
