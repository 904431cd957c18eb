"""
Instance coordination (advisory fetch priority).

When the board is shown on several kiosks/tabs at once, only one runtime
should poll the upstream endpoint. One runtime may take *priority*: it
writes a lease into the shared medium and keeps it alive with a heartbeat.
Every other runtime stays display-only while the lease is alive.

Guarantees are deliberately weak:
- last-write-wins, no transactions
- a dead holder is detected only after the liveness timeout (10s)
- two runtimes may briefly disagree about who may fetch

If the shared medium is unreachable, every call permits fetching, so the
system degrades to "every instance fetches independently".
"""

from __future__ import annotations

import asyncio
import json
import secrets
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from shared.config.board import CoordinationConfig
from shared.logging.logger import get_logger
from shared.storage.shared_store import SharedStore, StoreUnavailable

log = get_logger("core.coordinator")

NOT_PRIMARY_MESSAGE = "This is not the primary instance. :("

PriorityListener = Callable[[bool], None]


@dataclass(frozen=True)
class Lease:
    holder_id: str
    granted_at: Optional[float]
    last_heartbeat: float
    user_agent: str = ""

    def is_expired(self, now: float, timeout: float) -> bool:
        return now - self.last_heartbeat > timeout


class StorageLease:
    """
    Lease record kept in a SharedStore under two keys.

    - LEASE_KEY     : JSON {"instanceId", "timestamp" (epoch ms), "userAgent"}
    - HEARTBEAT_KEY : epoch milliseconds of the last liveness signal

    Only the holder writes; everyone reads. A server-mediated lock can
    replace this class as long as it offers read/acquire/renew/revoke.
    """

    LEASE_KEY = "house-points-priority-instance"
    HEARTBEAT_KEY = "house-points-priority-heartbeat"

    def __init__(self, store: SharedStore):
        self.store = store

    def read(self) -> Optional[Lease]:
        raw_lease = self.store.get(self.LEASE_KEY)
        raw_heartbeat = self.store.get(self.HEARTBEAT_KEY)
        if not raw_lease or not raw_heartbeat:
            return None

        holder_id = ""
        granted_at: Optional[float] = None
        user_agent = ""
        try:
            data = json.loads(raw_lease)
            holder_id = str(data.get("instanceId", ""))
            granted_at = float(data["timestamp"]) / 1000.0
            user_agent = str(data.get("userAgent", ""))
        except (ValueError, TypeError, KeyError, AttributeError):
            log.debug("Priority lease record is malformed; keeping heartbeat only")

        try:
            last_heartbeat = float(raw_heartbeat) / 1000.0
        except ValueError:
            # unreadable heartbeat counts as long dead
            last_heartbeat = 0.0

        return Lease(
            holder_id=holder_id,
            granted_at=granted_at,
            last_heartbeat=last_heartbeat,
            user_agent=user_agent,
        )

    def acquire(self, holder_id: str, now: float, user_agent: str = "") -> Lease:
        record = {
            "instanceId": holder_id,
            "timestamp": int(now * 1000),
            "userAgent": user_agent,
        }
        self.store.set(self.LEASE_KEY, json.dumps(record))
        self.store.set(self.HEARTBEAT_KEY, str(int(now * 1000)))
        return Lease(
            holder_id=holder_id,
            granted_at=now,
            last_heartbeat=now,
            user_agent=user_agent,
        )

    def renew(self, holder_id: str, now: float, user_agent: str = "") -> bool:
        """
        Refresh the heartbeat; False when the lease names another holder.

        A lease cleared by another instance (after a stall past the liveness
        timeout) is written again in full.
        """
        current = self.read()
        if current is None:
            self.acquire(holder_id, now, user_agent)
            return True
        if current.holder_id and current.holder_id != holder_id:
            return False
        self.store.set(self.HEARTBEAT_KEY, str(int(now * 1000)))
        return True

    def revoke(self) -> None:
        self.store.delete(self.LEASE_KEY)
        self.store.delete(self.HEARTBEAT_KEY)


def generate_holder_id(now: float) -> str:
    return f"{int(now * 1000)}-{secrets.token_hex(5)}"


class InstanceCoordinator:
    """
    Explicitly constructed coordinator with a start()/close() lifecycle.

    Background tasks (owned here, cancelled by close()):
    - heartbeat : renews the lease every heartbeat_interval while held
    - monitor   : re-evaluates can_fetch() every monitor_interval and
                  notifies listeners, as a fallback for media that do not
                  deliver change notifications
    """

    def __init__(
        self,
        lease: StorageLease,
        *,
        liveness_timeout: float = 10.0,
        heartbeat_interval: float = 2.0,
        monitor_interval: float = 5.0,
        instance_label: str = "housepoints-runtime",
        time_source: Callable[[], float] = time.time,
    ):
        self._lease = lease
        self.liveness_timeout = liveness_timeout
        self.heartbeat_interval = heartbeat_interval
        self.monitor_interval = monitor_interval
        self.instance_label = instance_label
        self._time = time_source

        self._is_priority = False
        self._holder_id: Optional[str] = None
        self._listeners: List[PriorityListener] = []
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def from_config(
        cls,
        store: SharedStore,
        cfg: CoordinationConfig,
        *,
        time_source: Callable[[], float] = time.time,
    ) -> "InstanceCoordinator":
        return cls(
            StorageLease(store),
            liveness_timeout=cfg.liveness_timeout_seconds,
            heartbeat_interval=cfg.heartbeat_interval_seconds,
            monitor_interval=cfg.monitor_interval_seconds,
            instance_label=cfg.instance_label,
            time_source=time_source,
        )

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self) -> None:
        if self._monitor_task is not None:
            log.warning("Instance coordinator already started")
            return

        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self._lease.store.subscribe(self._on_store_change)
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(), name="coordinator-monitor"
        )
        log.info("Instance coordinator started")

    async def close(self) -> None:
        tasks = [t for t in (self._heartbeat_task, self._monitor_task) if t is not None]
        if self._is_priority:
            self.disable_priority()

        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._heartbeat_task = None
        self._monitor_task = None

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        self._listeners.clear()
        log.info("Instance coordinator closed")

    # --------------------------------------------------
    # Priority mode
    # --------------------------------------------------

    def enable_priority(self) -> None:
        now = self._time()
        self._holder_id = generate_holder_id(now)
        self._is_priority = True

        try:
            self._lease.acquire(self._holder_id, now, self.instance_label)
        except StoreUnavailable as e:
            log.warning(f"Priority lease not written (shared medium unavailable): {e}")

        self._start_heartbeat()
        log.info(f"Priority mode enabled (holder {self._holder_id})")
        self._notify()

    def disable_priority(self) -> None:
        self._is_priority = False
        self._stop_heartbeat()

        try:
            self._lease.revoke()
        except StoreUnavailable as e:
            log.warning(f"Priority lease not removed (shared medium unavailable): {e}")

        log.info(f"Priority mode disabled (holder {self._holder_id})")
        self._holder_id = None
        self._notify()

    def is_priority_holder(self) -> bool:
        return self._is_priority

    @property
    def holder_id(self) -> Optional[str]:
        return self._holder_id

    # --------------------------------------------------
    # Fetch arbitration
    # --------------------------------------------------

    def can_fetch(self) -> bool:
        if self._is_priority:
            return True

        try:
            lease = self._lease.read()
            if lease is None:
                return True

            if lease.is_expired(self._time(), self.liveness_timeout):
                log.info(
                    f"Priority holder {lease.holder_id or '?'} missed its heartbeat; "
                    "clearing stale lease"
                )
                self._lease.revoke()
                return True
        except StoreUnavailable as e:
            log.debug(f"Coordination unavailable, permitting fetch: {e}")
            return True

        return False

    def block_reason(self) -> str:
        try:
            lease = self._lease.read()
        except StoreUnavailable:
            return NOT_PRIMARY_MESSAGE

        if lease is None or lease.granted_at is None:
            return NOT_PRIMARY_MESSAGE

        elapsed = max(0, int(self._time() - lease.granted_at))
        return f"{NOT_PRIMARY_MESSAGE} (Priority set {elapsed}s ago)"

    # --------------------------------------------------
    # Change notification
    # --------------------------------------------------

    def on_change(self, callback: PriorityListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: PriorityListener) -> None:
        self._listeners = [cb for cb in self._listeners if cb is not callback]

    def _notify(self) -> None:
        allowed = self.can_fetch()
        for callback in list(self._listeners):
            try:
                callback(allowed)
            except Exception as e:
                log.error(f"Error in priority change callback: {e}")

    def _on_store_change(self, key: str) -> None:
        if key not in {StorageLease.LEASE_KEY, StorageLease.HEARTBEAT_KEY}:
            return
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._notify)

    # --------------------------------------------------
    # Background loops
    # --------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.get_running_loop().create_task(
            self._heartbeat_loop(), name="coordinator-heartbeat"
        )

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        try:
            while self._is_priority:
                await asyncio.sleep(self.heartbeat_interval)
                if not self._is_priority or self._holder_id is None:
                    break
                try:
                    still_held = self._lease.renew(
                        self._holder_id, self._time(), self.instance_label
                    )
                except StoreUnavailable as e:
                    log.debug(f"Heartbeat skipped (shared medium unavailable): {e}")
                    continue

                if not still_held:
                    log.warning("Priority lease taken over by another instance")
                    self._is_priority = False
                    self._holder_id = None
                    self._heartbeat_task = None
                    self._notify()
                    break
        except asyncio.CancelledError:
            raise

    async def _monitor_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.monitor_interval)
                self._notify()
        except asyncio.CancelledError:
            raise


__all__ = [
    "InstanceCoordinator",
    "Lease",
    "NOT_PRIMARY_MESSAGE",
    "StorageLease",
    "generate_holder_id",
]
