"""Durable record of armed alarms, snoozes and notifier settings.

The store persists one JSON document and only ever replaces it whole: callers
read a snapshot, compute a new one and write it back. Writes go through a temp
file and an atomic rename, serialized by a thread lock plus an advisory lock
file for other processes sharing the same path.
"""

from __future__ import annotations

import fcntl
import json
import logging
import threading
from collections.abc import Callable
from pathlib import Path

from .errors import StoreCorrupt
from .models import NotifierSettings, ScheduleSnapshot

LOGGER = logging.getLogger("calwake.store")

LOCK_FILE_SUFFIX = ".lock"
CORRUPT_SUFFIX = ".corrupt"


def decode_snapshot(raw: str, default_settings: NotifierSettings | None = None) -> ScheduleSnapshot:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StoreCorrupt(f"Schedule file is not valid JSON: {exc}") from exc
    return ScheduleSnapshot.from_dict(payload, default_settings)


def encode_snapshot(snapshot: ScheduleSnapshot) -> str:
    return json.dumps(snapshot.to_json_dict(), indent=2)


class ScheduleStore:
    """Persistent schedule snapshot with whole-record read/modify/write."""

    def __init__(
        self,
        storage_path: Path,
        *,
        default_settings: NotifierSettings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._storage_path = storage_path
        self._default_settings = default_settings or NotifierSettings()
        self._logger = logger or LOGGER
        self._write_lock = threading.Lock()

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def empty(self) -> ScheduleSnapshot:
        return ScheduleSnapshot(settings=self._default_settings)

    def load(self) -> ScheduleSnapshot:
        """Read the current snapshot; unreadable data yields an empty one."""
        if not self._storage_path.exists():
            return self.empty()
        try:
            raw = self._storage_path.read_text(encoding="utf-8")
        except OSError as exc:
            self._logger.warning("[store] Failed to read schedule file %s: %s", self._storage_path, exc)
            return self.empty()
        try:
            return decode_snapshot(raw, self._default_settings)
        except StoreCorrupt as exc:
            self._logger.warning("[store] Discarding corrupt schedule file %s: %s", self._storage_path, exc)
            self._quarantine()
            return self.empty()

    def save(self, snapshot: ScheduleSnapshot) -> None:
        with self._write_lock:
            self._write_locked(encode_snapshot(snapshot))

    def update(self, mutate: Callable[[ScheduleSnapshot], ScheduleSnapshot]) -> ScheduleSnapshot:
        """Apply ``mutate`` to the current snapshot and persist the result."""
        with self._write_lock:
            current = self.load()
            updated = mutate(current)
            self._write_locked(encode_snapshot(updated))
        return updated

    def forget_armed(self) -> ScheduleSnapshot:
        """Drop every armed marker; timers do not survive a reboot but records do."""
        snapshot = self.update(lambda current: current.without_armed())
        self._logger.info(
            "[store] Treating all timers as lost (%d alarm record(s), %d snooze(s) kept)",
            len(snapshot.alarm_details),
            len(snapshot.snoozed),
        )
        return snapshot

    def settings(self) -> NotifierSettings:
        return self.load().settings

    def _write_locked(self, payload: str) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = Path(str(self._storage_path) + LOCK_FILE_SUFFIX)
        lock_fd = None
        try:
            try:
                lock_fd = open(lock_path, "w")
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
            except OSError as exc:
                self._logger.warning("[store] Could not acquire schedule lock: %s", exc)
            tmp_path = self._storage_path.with_suffix(".tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self._storage_path)
        finally:
            if lock_fd is not None:
                try:
                    fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
                except OSError as exc:
                    self._logger.debug("[store] Could not release schedule lock: %s", exc)
                finally:
                    lock_fd.close()

    def _quarantine(self) -> None:
        target = self._storage_path.with_name(self._storage_path.name + CORRUPT_SUFFIX)
        try:
            self._storage_path.replace(target)
        except OSError as exc:
            self._logger.debug("[store] Could not move corrupt schedule file aside: %s", exc)
