from __future__ import annotations

import time
from typing import Callable, Optional

import httpx

from services.board_api.errors import HttpError, InvalidShape, NetworkError
from services.board_api.validation import parse_board_document
from shared.logging.logger import get_logger
from shared.scoreboards.ranking import DEFAULT_CONTRIBUTOR_LIMIT, DEFAULT_RECENT_LIMIT
from shared.scoreboards.snapshot import BoardSnapshot

log = get_logger("board_api.client")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


class BoardFetchClient:
    """
    Read-only client for the board-data endpoint.

    Responsibilities:
    - Issue a cache-busting GET (timestamp query parameter + no-cache headers)
    - Map transport / status failures onto the board fetch error hierarchy
    - Hand the decoded document to parse_board_document()

    The client keeps no state between calls and is safe to call repeatedly.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        timeout: float = 15.0,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
        contributor_limit: int = DEFAULT_CONTRIBUTOR_LIMIT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        time_source: Callable[[], float] = time.time,
    ):
        if not endpoint:
            raise RuntimeError("Board endpoint URL is required")
        self.endpoint = endpoint
        self.timeout = timeout
        self.recent_limit = recent_limit
        self.contributor_limit = contributor_limit
        self._transport = transport
        self._time_source = time_source

    # ------------------------------------------------------------

    def _cache_buster(self) -> str:
        return str(int(self._time_source() * 1000))

    async def fetch(self) -> BoardSnapshot:
        """
        Fetch and validate the current board.

        Raises:
            NetworkError / HttpError: request failed or non-success status.
            InvalidShape: the body is not a valid board document.
            EmptyResult: the board has no houses.
        """
        params = {"t": self._cache_buster()}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.get(self.endpoint, params=params, headers=NO_CACHE_HEADERS)
            except httpx.HTTPError as e:
                log.warning(f"Board request failed: {e}")
                raise NetworkError(f"Board request failed: {e}") from e

        if not r.is_success:
            log.warning(f"Board endpoint returned HTTP {r.status_code}")
            raise HttpError(r.status_code)

        try:
            payload = r.json()
        except ValueError as e:
            raise InvalidShape(f"Board response is not JSON: {e}") from e

        snapshot = parse_board_document(
            payload,
            recent_limit=self.recent_limit,
            contributor_limit=self.contributor_limit,
        )
        log.debug(
            f"Board fetched: {len(snapshot.houses)} house(s), "
            f"{snapshot.total_points} point(s)"
        )
        return snapshot
