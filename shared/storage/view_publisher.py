"""
Board view publisher.

The kiosk front end polls a single JSON file (board.json). Every write is
an atomic replace so a reader never sees a half-written view. A second
"kiosk root" can be configured; the view is copied there as well, which
lets the front end be served from a different directory than the runtime
state.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.view_publisher")

KIOSK_ROOT_ENV = "HOUSEPOINTS_KIOSK_ROOT"


def write_json_atomic(path: Path, payload: Any) -> None:
    """Serialize first, then swap the file in; raises on failure."""
    body = json.dumps(payload, indent=2)
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        "w", dir=path.parent, prefix=f".{path.name}.", delete=False, encoding="utf-8"
    ) as tmp:
        tmp.write(body)
        tmp.flush()
        os.fsync(tmp.fileno())

    Path(tmp.name).replace(path)


class BoardViewPublisher:
    def __init__(
        self,
        state_dir: Path | str = "shared/state",
        kiosk_root: Path | str | None = None,
    ):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

        root = kiosk_root or os.getenv(KIOSK_ROOT_ENV)
        self.kiosk_root: Optional[Path] = Path(root) if root else None
        if self.kiosk_root is not None:
            self.kiosk_root.mkdir(parents=True, exist_ok=True)
            log.info(f"Board view is mirrored to kiosk root {self.kiosk_root}")

        self.writes = 0

    def view_path(self, name: str) -> Path:
        return self.state_dir / name

    def publish(self, name: str, view: Any) -> bool:
        """
        Write the view to the state directory (and the kiosk root, if set).

        Returns False when the primary write failed. A failed kiosk copy is
        logged only; the next publish retries it.
        """
        try:
            write_json_atomic(self.view_path(name), view)
        except (OSError, TypeError, ValueError) as e:
            log.error(f"Could not publish board view {name}: {e}")
            return False

        self.writes += 1

        if self.kiosk_root is not None:
            try:
                write_json_atomic(self.kiosk_root / name, view)
            except OSError as e:
                log.warning(f"Could not copy board view to kiosk root: {e}")

        return True


__all__ = ["BoardViewPublisher", "KIOSK_ROOT_ENV", "write_json_atomic"]
