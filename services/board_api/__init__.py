"""House points board API: fetch client, document validation and HTTP server."""

from .client import BoardFetchClient
from .errors import BoardFetchError, EmptyResult, HttpError, InvalidShape, NetworkError
from .server import BoardApiServer

__all__ = [
    "BoardApiServer",
    "BoardFetchClient",
    "BoardFetchError",
    "EmptyResult",
    "HttpError",
    "InvalidShape",
    "NetworkError",
]
