"""
Process-wide holder of the current ConfigSnapshot.

Readers take a lease on the installed snapshot; install() swaps the slot in one
reference assignment. The lock only ever covers the swap and the lease
counters, never a publish. A superseded snapshot stays fully usable by the
leases already taken on it, and its broker handle is closed once the last of
those leases is released.
"""

import logging
import threading
from typing import Optional

from cdr_amqp.config import ConfigSnapshot
from cdr_amqp.errors import ConfigUnavailable

logger = logging.getLogger(__name__)


class SnapshotLease:
    """
    A held reference to one snapshot.

    Usage:
        with store.current() as snapshot:
            publisher.publish(snapshot, document)
    """

    def __init__(self, store: "ConfigStore", snapshot: ConfigSnapshot) -> None:
        self._store = store
        self.snapshot = snapshot
        self._released = False

    def release(self) -> None:
        """Drop this hold. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self._store._drop(self.snapshot)

    def __enter__(self) -> ConfigSnapshot:
        return self.snapshot

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class ConfigStore:
    """Single slot for the active snapshot, safe for many readers and rare writers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: Optional[ConfigSnapshot] = None
        # id(snapshot) -> number of outstanding leases
        self._holders: dict[int, int] = {}
        self._retired: dict[int, ConfigSnapshot] = {}

    def install(self, snapshot: ConfigSnapshot) -> None:
        """Make snapshot the current one; the previous one is retired."""
        with self._lock:
            previous = self._current
            self._current = snapshot
            to_close = self._retire(previous) if previous is not snapshot else None
        logger.debug("Installed CDR AMQP config | config_hash=%s", snapshot.config_hash[:12])
        _close_handle(to_close)

    def current(self) -> SnapshotLease:
        """
        Lease the installed snapshot.

        Raises:
            ConfigUnavailable: If nothing has been installed, or after release().
        """
        with self._lock:
            snapshot = self._current
            if snapshot is None:
                raise ConfigUnavailable("No CDR AMQP configuration is loaded")
            self._holders[id(snapshot)] = self._holders.get(id(snapshot), 0) + 1
        return SnapshotLease(self, snapshot)

    def release(self) -> None:
        """Drop the process-wide reference. Idempotent."""
        with self._lock:
            previous = self._current
            self._current = None
            to_close = self._retire(previous)
        _close_handle(to_close)

    def is_installed(self) -> bool:
        with self._lock:
            return self._current is not None

    def _retire(self, snapshot: Optional[ConfigSnapshot]) -> Optional[ConfigSnapshot]:
        """Mark a snapshot superseded; returns it if nobody holds it any more. Lock held."""
        if snapshot is None:
            return None
        if self._holders.get(id(snapshot), 0) == 0:
            return snapshot
        self._retired[id(snapshot)] = snapshot
        return None

    def _drop(self, snapshot: ConfigSnapshot) -> None:
        to_close = None
        with self._lock:
            key = id(snapshot)
            remaining = self._holders.get(key, 0) - 1
            if remaining > 0:
                self._holders[key] = remaining
            else:
                self._holders.pop(key, None)
                if key in self._retired:
                    to_close = self._retired.pop(key)
        _close_handle(to_close)


def _close_handle(snapshot: Optional[ConfigSnapshot]) -> None:
    if snapshot is None or snapshot.broker_handle is None:
        return
    try:
        snapshot.broker_handle.close()
    except Exception as exc:
        logger.warning(
            "Closing retired AMQP connection failed | connection=%s | error=%s",
            snapshot.connection_name,
            exc,
        )
