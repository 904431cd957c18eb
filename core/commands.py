"""
Manual command surface.

Commands arrive as short text lines (typed on the kiosk console, or sent by
a key-mapping helper). Each handler returns the reply shown to the operator.

    fullscreen | ctrl+k        toggle fullscreen presentation
    refresh    | r | ctrl+r    fetch now and reset the countdown
    display [auto|on|off] | d  cycle (or set) the manual display override
    priority <key>             toggle fetch priority for this instance
    status                     print the current status line
    help                       list commands
"""

from __future__ import annotations

import hmac
from typing import Callable, Dict, List

from core.coordinator import InstanceCoordinator
from core.display import DisplayOverride
from core.driver import RefreshDriver
from shared.logging.logger import get_logger

log = get_logger("core.commands")


class PriorityCommand:
    """
    Secret-gated toggle for coordination priority.

    Kept out of the regular command list so priority is never taken by
    accident; the key comes from configuration (HOUSEPOINTS_PRIORITY_KEY).
    An empty configured key disables the command.
    """

    ENABLED = "Priority mode enabled"
    DISABLED = "Priority mode disabled"
    INVALID = "Invalid key"

    def __init__(self, coordinator: InstanceCoordinator, secret: str):
        self._coordinator = coordinator
        self._secret = secret

    def run(self, key: str) -> str:
        if not self._secret or not hmac.compare_digest(
            key.strip().encode("utf-8"), self._secret.encode("utf-8")
        ):
            log.warning("Priority command rejected: invalid key")
            return self.INVALID

        if self._coordinator.is_priority_holder():
            self._coordinator.disable_priority()
            return self.DISABLED

        self._coordinator.enable_priority()
        return self.ENABLED


class CommandDispatcher:
    def __init__(self, driver: RefreshDriver, priority: PriorityCommand):
        self._driver = driver
        self._priority = priority
        self._handlers: Dict[str, Callable[[List[str]], str]] = {
            "fullscreen": self._fullscreen,
            "ctrl+k": self._fullscreen,
            "refresh": self._refresh,
            "r": self._refresh,
            "ctrl+r": self._refresh,
            "display": self._display,
            "d": self._display,
            "priority": self._priority_cmd,
            "status": self._status,
            "help": self._help,
        }

    def dispatch(self, line: str) -> str:
        parts = line.strip().split()
        if not parts:
            return ""

        name, args = parts[0].lower(), parts[1:]
        handler = self._handlers.get(name)
        if handler is None:
            return f"Unknown command: {name} (try 'help')"

        try:
            return handler(args)
        except Exception as e:
            log.error(f"Command {name!r} failed: {e}")
            return f"Command failed: {e}"

    # ------------------------------------------------------------

    def _fullscreen(self, args: List[str]) -> str:
        entered = self._driver.toggle_fullscreen()
        return "Fullscreen on" if entered else "Fullscreen off"

    def _refresh(self, args: List[str]) -> str:
        task = self._driver.force_refresh()
        return "Refreshing..." if task is not None else "Refresh already in progress"

    def _display(self, args: List[str]) -> str:
        if args:
            self._driver.set_override(DisplayOverride.from_value(args[0]))
        else:
            self._driver.toggle_display()
        return f"Display override: {self._driver.override.value}"

    def _priority_cmd(self, args: List[str]) -> str:
        if not args:
            return "Usage: priority <key>"
        return self._priority.run(args[0])

    def _status(self, args: List[str]) -> str:
        return self._driver.status_line()

    def _help(self, args: List[str]) -> str:
        return "Commands: fullscreen, refresh, display [auto|on|off], status, help"
