"""HTTP API server for the board document and the published board view."""

from __future__ import annotations

import json
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from shared.config.board import ServerConfig
from shared.logging.logger import get_logger
from shared.scoreboards.snapshot import BoardSnapshot

log = get_logger("board_api.server", runtime="board_api")

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

BoardLoader = Callable[[], BoardSnapshot]


class BoardApiServer:
    """
    Serves:
    - GET /api/houses : the board document built by ``loader`` on every request
    - GET /api/view   : the last published view document (board.json), if any

    Every response disables caching; the board is only as fresh as the last
    request, never as the last cached copy.
    """

    def __init__(
        self,
        config: ServerConfig,
        loader: BoardLoader,
        *,
        view_path: Path | str | None = None,
    ) -> None:
        self._config = config
        self._loader = loader
        self._view_path = Path(view_path) if view_path else None
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def port(self) -> Optional[int]:
        if not self._server:
            return None
        return int(self._server.server_address[1])

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return

        handler = self._build_handler()
        self._server = ThreadingHTTPServer(
            (self._config.host, int(self._config.port)),
            handler,
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="board-api", daemon=True
        )
        self._thread.start()
        log.info(f"Board API server running on {self._config.host}:{self.port}")

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        log.info("Board API server stopped")

    def _build_handler(self):
        loader = self._loader
        view_path = self._view_path

        class Handler(BaseHTTPRequestHandler):
            def _send_json(self, status: int, payload: Any) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                for key, value in NO_STORE_HEADERS.items():
                    self.send_header(key, value)
                self.end_headers()
                self.wfile.write(body)

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                path = urlparse(self.path).path.rstrip("/")

                if path == "/api/houses":
                    return self._handle_houses()
                if path == "/api/view":
                    return self._handle_view()

                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not Found"})

            def _handle_houses(self) -> None:
                try:
                    document: Dict[str, Any] = loader().to_document()
                except Exception as e:
                    log.error(f"Error in /api/houses: {e}")
                    return self._send_json(
                        HTTPStatus.INTERNAL_SERVER_ERROR,
                        {"error": "Failed to fetch house data"},
                    )
                self._send_json(HTTPStatus.OK, document)

            def _handle_view(self) -> None:
                if view_path is None or not view_path.exists():
                    return self._send_json(HTTPStatus.NOT_FOUND, {"error": "No view published"})
                try:
                    payload = json.loads(view_path.read_text(encoding="utf-8"))
                except (OSError, ValueError) as e:
                    log.warning(f"Failed to read board view {view_path}: {e}")
                    return self._send_json(
                        HTTPStatus.SERVICE_UNAVAILABLE, {"error": "View unavailable"}
                    )
                self._send_json(HTTPStatus.OK, payload)

            def log_message(self, format: str, *args: Any) -> None:
                log.debug(f"{self.address_string()} {format % args}")

        return Handler


__all__ = ["BoardApiServer", "NO_STORE_HEADERS"]
