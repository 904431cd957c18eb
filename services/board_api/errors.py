"""Error hierarchy for board fetches.

Every failure the refresh driver can see while fetching derives from
BoardFetchError, so the driver boundary can catch one type and keep the
last good snapshot on screen.
"""

from typing import Optional


class BoardFetchError(Exception):
    """Base exception for all board fetch failures."""

    pass


class NetworkError(BoardFetchError):
    """The request could not be completed (DNS, connect, timeout, ...)."""

    pass


class HttpError(NetworkError):
    """The endpoint answered with a non-success status."""

    def __init__(self, status: int, detail: Optional[str] = None) -> None:
        self.status = status
        message = f"HTTP error! status: {status}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InvalidShape(BoardFetchError):
    """Required fields are missing or mis-typed in the response document."""

    pass


class EmptyResult(BoardFetchError):
    """Well-formed document without any houses; must not replace prior state."""

    def __init__(self, message: str = "No house data available") -> None:
        super().__init__(message)
