from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from shared.logging.logger import get_logger

log = get_logger("shared.config.board")

_CONFIG_PATH = Path(__file__).parent / "board.json"

DEFAULT_HOUSES: Tuple[Tuple[str, str], ...] = (
    ("Newton Hill", "#C0C0C0"),
    ("Green Hill", "#00cc66"),
    ("Tatnuck Hill", "#FFD700"),
    ("Bancroft Hill", "#0066cc"),
    ("Pakachoag Hill", "#9966ff"),
    ("Union Hill", "#ff4444"),
    ("Chandler Hill", "#800000"),
)


@dataclass
class EndpointConfig:
    url: str = "http://127.0.0.1:8220/api/houses"
    timeout_seconds: float = 15.0


@dataclass
class ScheduleConfig:
    quiet_start: time = time(16, 30)
    quiet_end: time = time(7, 30)
    active_interval_seconds: int = 900
    retry_interval_seconds: int = 30
    # (seconds remaining until the quiet window ends, recheck period)
    quiet_tiers: List[Tuple[int, int]] = field(
        default_factory=lambda: [(300, 60), (3600, 300)]
    )
    quiet_default_recheck_seconds: int = 3600
    timezone: str = "America/New_York"


@dataclass
class CoordinationConfig:
    store_dir: str = "shared/state/coordination"
    liveness_timeout_seconds: float = 10.0
    heartbeat_interval_seconds: float = 2.0
    monitor_interval_seconds: float = 5.0
    priority_key: str = ""
    instance_label: str = "housepoints-runtime"


@dataclass
class DisplayConfig:
    state_dir: str = "shared/state"
    view_file: str = "board.json"
    recent_events_limit: int = 3
    top_contributors_limit: int = 5
    late_night_start_hour: int = 22
    late_night_end_hour: int = 5


@dataclass
class SheetsConfig:
    spreadsheet_id: str = ""
    api_key: str = ""
    house_points_range: str = "J2:J8"
    inputs_range: str = "A2:D"
    contributors_range: str = "L2:M100"
    message_range: str = "H21"
    show_board_range: str = "H24"
    background_color_range: str = "G5"
    excluded_senders: List[str] = field(default_factory=lambda: ["eventengine"])
    houses: List[Tuple[str, str]] = field(default_factory=lambda: list(DEFAULT_HOUSES))


@dataclass
class ServerConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8220


@dataclass
class BoardConfig:
    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    coordination: CoordinationConfig = field(default_factory=CoordinationConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    sheets: SheetsConfig = field(default_factory=SheetsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


# ----------------------------------------------------------------------
# Value coercion
# ----------------------------------------------------------------------

def parse_time_of_day(value: Any, default: time) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        try:
            hours, minutes = value.strip().split(":", 1)
            return time(int(hours), int(minutes))
        except (ValueError, TypeError):
            pass
    log.warning(f"Invalid time of day {value!r}; using {default.strftime('%H:%M')}")
    return default


def _as_int(value: Any, default: int, *, minimum: int = 1) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        log.warning(f"Invalid integer {value!r}; using {default}")
        return default
    if result < minimum:
        log.warning(f"Integer {result} below minimum {minimum}; using {default}")
        return default
    return result


def _as_float(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        log.warning(f"Invalid number {value!r}; using {default}")
        return default
    if result <= 0:
        log.warning(f"Number {result} must be positive; using {default}")
        return default
    return result


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return default


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.debug(f"board.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, ValueError) as e:
        log.warning(f"Failed to load board.json ({e}); using defaults")
        return {}


# ----------------------------------------------------------------------
# Section loaders
# ----------------------------------------------------------------------

def _load_endpoint(raw: Optional[Dict[str, Any]]) -> EndpointConfig:
    if not isinstance(raw, dict):
        return EndpointConfig()
    return EndpointConfig(
        url=str(raw.get("url", EndpointConfig.url)),
        timeout_seconds=_as_float(
            raw.get("timeout_seconds", EndpointConfig.timeout_seconds),
            EndpointConfig.timeout_seconds,
        ),
    )


def _load_quiet_tiers(raw: Any) -> List[Tuple[int, int]]:
    defaults = ScheduleConfig().quiet_tiers
    if not isinstance(raw, list):
        return defaults

    tiers: List[Tuple[int, int]] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            within = int(entry["within_seconds"])
            recheck = int(entry["recheck_seconds"])
        except (KeyError, TypeError, ValueError):
            log.warning(f"Ignoring malformed quiet tier {entry!r}")
            continue
        if within > 0 and recheck > 0:
            tiers.append((within, recheck))

    return sorted(tiers) or defaults


def _load_schedule(raw: Optional[Dict[str, Any]]) -> ScheduleConfig:
    base = ScheduleConfig()
    if not isinstance(raw, dict):
        return base

    return ScheduleConfig(
        quiet_start=parse_time_of_day(raw.get("quiet_start", base.quiet_start), base.quiet_start),
        quiet_end=parse_time_of_day(raw.get("quiet_end", base.quiet_end), base.quiet_end),
        active_interval_seconds=_as_int(
            raw.get("active_interval_seconds", base.active_interval_seconds),
            base.active_interval_seconds,
        ),
        retry_interval_seconds=_as_int(
            raw.get("retry_interval_seconds", base.retry_interval_seconds),
            base.retry_interval_seconds,
        ),
        quiet_tiers=_load_quiet_tiers(raw.get("quiet_tiers")),
        quiet_default_recheck_seconds=_as_int(
            raw.get("quiet_default_recheck_seconds", base.quiet_default_recheck_seconds),
            base.quiet_default_recheck_seconds,
        ),
        timezone=str(raw.get("timezone", base.timezone)),
    )


def _load_coordination(raw: Optional[Dict[str, Any]]) -> CoordinationConfig:
    base = CoordinationConfig()
    if not isinstance(raw, dict):
        return base

    return CoordinationConfig(
        store_dir=str(raw.get("store_dir", base.store_dir)),
        liveness_timeout_seconds=_as_float(
            raw.get("liveness_timeout_seconds", base.liveness_timeout_seconds),
            base.liveness_timeout_seconds,
        ),
        heartbeat_interval_seconds=_as_float(
            raw.get("heartbeat_interval_seconds", base.heartbeat_interval_seconds),
            base.heartbeat_interval_seconds,
        ),
        monitor_interval_seconds=_as_float(
            raw.get("monitor_interval_seconds", base.monitor_interval_seconds),
            base.monitor_interval_seconds,
        ),
        priority_key=str(raw.get("priority_key", base.priority_key)),
        instance_label=str(raw.get("instance_label", base.instance_label)),
    )


def _load_display(raw: Optional[Dict[str, Any]]) -> DisplayConfig:
    base = DisplayConfig()
    if not isinstance(raw, dict):
        return base

    return DisplayConfig(
        state_dir=str(raw.get("state_dir", base.state_dir)),
        view_file=str(raw.get("view_file", base.view_file)),
        recent_events_limit=_as_int(
            raw.get("recent_events_limit", base.recent_events_limit),
            base.recent_events_limit,
        ),
        top_contributors_limit=_as_int(
            raw.get("top_contributors_limit", base.top_contributors_limit),
            base.top_contributors_limit,
        ),
        late_night_start_hour=_as_int(
            raw.get("late_night_start_hour", base.late_night_start_hour),
            base.late_night_start_hour,
            minimum=0,
        ),
        late_night_end_hour=_as_int(
            raw.get("late_night_end_hour", base.late_night_end_hour),
            base.late_night_end_hour,
            minimum=0,
        ),
    )


def _load_sheets(raw: Optional[Dict[str, Any]]) -> SheetsConfig:
    base = SheetsConfig()
    if not isinstance(raw, dict):
        return base

    houses = base.houses
    houses_raw = raw.get("houses")
    if isinstance(houses_raw, list):
        parsed = [
            (str(entry["name"]), str(entry.get("color", "#cccccc")))
            for entry in houses_raw
            if isinstance(entry, dict) and entry.get("name")
        ]
        if parsed:
            houses = parsed

    excluded = raw.get("excluded_senders", base.excluded_senders)
    if not isinstance(excluded, list):
        excluded = base.excluded_senders

    return SheetsConfig(
        spreadsheet_id=str(raw.get("spreadsheet_id", base.spreadsheet_id)),
        api_key=str(raw.get("api_key", base.api_key)),
        house_points_range=str(raw.get("house_points_range", base.house_points_range)),
        inputs_range=str(raw.get("inputs_range", base.inputs_range)),
        contributors_range=str(raw.get("contributors_range", base.contributors_range)),
        message_range=str(raw.get("message_range", base.message_range)),
        show_board_range=str(raw.get("show_board_range", base.show_board_range)),
        background_color_range=str(
            raw.get("background_color_range", base.background_color_range)
        ),
        excluded_senders=[str(s) for s in excluded],
        houses=houses,
    )


def _load_server(raw: Optional[Dict[str, Any]]) -> ServerConfig:
    base = ServerConfig()
    if not isinstance(raw, dict):
        return base
    return ServerConfig(
        enabled=_as_bool(raw.get("enabled"), base.enabled),
        host=str(raw.get("host", base.host)),
        port=_as_int(raw.get("port", base.port), base.port),
    )


# ----------------------------------------------------------------------
# Environment overrides
# ----------------------------------------------------------------------

def _apply_env(cfg: BoardConfig, env: Dict[str, str]) -> BoardConfig:
    if env.get("HOUSEPOINTS_ENDPOINT"):
        cfg.endpoint.url = env["HOUSEPOINTS_ENDPOINT"]

    if env.get("HOUSEPOINTS_QUIET_START"):
        cfg.schedule.quiet_start = parse_time_of_day(
            env["HOUSEPOINTS_QUIET_START"], cfg.schedule.quiet_start
        )
    if env.get("HOUSEPOINTS_QUIET_END"):
        cfg.schedule.quiet_end = parse_time_of_day(
            env["HOUSEPOINTS_QUIET_END"], cfg.schedule.quiet_end
        )
    if env.get("HOUSEPOINTS_ACTIVE_INTERVAL"):
        cfg.schedule.active_interval_seconds = _as_int(
            env["HOUSEPOINTS_ACTIVE_INTERVAL"], cfg.schedule.active_interval_seconds
        )
    if env.get("HOUSEPOINTS_RETRY_INTERVAL"):
        cfg.schedule.retry_interval_seconds = _as_int(
            env["HOUSEPOINTS_RETRY_INTERVAL"], cfg.schedule.retry_interval_seconds
        )
    if env.get("HOUSEPOINTS_TIMEZONE"):
        cfg.schedule.timezone = env["HOUSEPOINTS_TIMEZONE"]

    if env.get("HOUSEPOINTS_STORE_DIR"):
        cfg.coordination.store_dir = env["HOUSEPOINTS_STORE_DIR"]
    if env.get("HOUSEPOINTS_PRIORITY_KEY"):
        cfg.coordination.priority_key = env["HOUSEPOINTS_PRIORITY_KEY"]
    if env.get("HOUSEPOINTS_INSTANCE_LABEL"):
        cfg.coordination.instance_label = env["HOUSEPOINTS_INSTANCE_LABEL"]

    if env.get("HOUSEPOINTS_STATE_DIR"):
        cfg.display.state_dir = env["HOUSEPOINTS_STATE_DIR"]

    if env.get("GOOGLE_SHEETS_ID"):
        cfg.sheets.spreadsheet_id = env["GOOGLE_SHEETS_ID"]
    if env.get("GOOGLE_API_KEY"):
        cfg.sheets.api_key = env["GOOGLE_API_KEY"]

    if env.get("HOUSEPOINTS_SERVER"):
        cfg.server.enabled = _as_bool(env["HOUSEPOINTS_SERVER"], cfg.server.enabled)
    if env.get("HOUSEPOINTS_SERVER_PORT"):
        cfg.server.port = _as_int(env["HOUSEPOINTS_SERVER_PORT"], cfg.server.port)

    return cfg


def load_board_config(
    raw: Optional[Dict[str, Any]] = None,
    *,
    env: Optional[Dict[str, str]] = None,
) -> BoardConfig:
    raw = raw if raw is not None else _load_json(_CONFIG_PATH)
    if not isinstance(raw, dict):
        raw = {}

    cfg = BoardConfig(
        endpoint=_load_endpoint(raw.get("endpoint")),
        schedule=_load_schedule(raw.get("schedule")),
        coordination=_load_coordination(raw.get("coordination")),
        display=_load_display(raw.get("display")),
        sheets=_load_sheets(raw.get("sheets")),
        server=_load_server(raw.get("server")),
    )

    return _apply_env(cfg, dict(os.environ) if env is None else env)


__all__ = [
    "BoardConfig",
    "CoordinationConfig",
    "DisplayConfig",
    "EndpointConfig",
    "ScheduleConfig",
    "ServerConfig",
    "SheetsConfig",
    "load_board_config",
    "parse_time_of_day",
]
