"""Persistence of storm events and the notification log."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

from hail_intel.errors import PersistenceFailure
from hail_intel.models import (
    NotificationLogEntry,
    StormEvent,
    entry_from_dict,
    entry_to_dict,
    storm_from_dict,
    storm_to_dict,
)

logger = logging.getLogger(__name__)


class StormStore(Protocol):
    """What the engine needs from storage to survive a restart."""

    def save_storm_event(self, event: StormEvent) -> None: ...

    def load_storm_events(self) -> list[StormEvent]: ...

    def load_active_storm_events(self) -> list[StormEvent]: ...

    def delete_storm_event(self, storm_id: str) -> bool: ...

    def append_notification_log_entry(self, entry: NotificationLogEntry) -> None: ...

    def load_notification_log(self) -> list[NotificationLogEntry]: ...

    def mark_notification_actioned(self, entry_id: str) -> NotificationLogEntry: ...


class MemoryStore:
    """Process-local store; everything is lost on exit."""

    def __init__(self) -> None:
        self._storms: dict[str, dict] = {}
        self._log: list[dict] = []

    def save_storm_event(self, event: StormEvent) -> None:
        self._storms[event.id] = storm_to_dict(event)

    def load_storm_events(self) -> list[StormEvent]:
        return [storm_from_dict(d) for d in self._storms.values()]

    def load_active_storm_events(self) -> list[StormEvent]:
        return [e for e in self.load_storm_events() if e.active]

    def delete_storm_event(self, storm_id: str) -> bool:
        return self._storms.pop(storm_id, None) is not None

    def append_notification_log_entry(self, entry: NotificationLogEntry) -> None:
        self._log.append(entry_to_dict(entry))

    def load_notification_log(self) -> list[NotificationLogEntry]:
        return [entry_from_dict(d) for d in self._log]

    def mark_notification_actioned(self, entry_id: str) -> NotificationLogEntry:
        for data in self._log:
            if data["id"] == entry_id:
                data["actioned"] = True
                return entry_from_dict(data)
        raise KeyError(entry_id)


class JsonFileStore:
    """JSON documents under a directory.

    Layout::

        <root>/storms/<storm id>.json
        <root>/notifications.json

    Writes go through a temporary file and an atomic rename.  Unreadable
    storm files are skipped with a warning rather than failing the load.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._log_lock = threading.Lock()

    @property
    def storms_dir(self) -> Path:
        return self.root / "storms"

    @property
    def log_path(self) -> Path:
        return self.root / "notifications.json"

    def _write(self, path: Path, payload: object) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailure(f"could not write {path}: {exc}") from exc

    # -- storms ------------------------------------------------------------

    def save_storm_event(self, event: StormEvent) -> None:
        self._write(self.storms_dir / f"{event.id}.json", storm_to_dict(event))

    def load_storm_events(self) -> list[StormEvent]:
        if not self.storms_dir.is_dir():
            return []

        events: list[StormEvent] = []
        for f in sorted(self.storms_dir.glob("*.json")):
            try:
                events.append(storm_from_dict(json.loads(f.read_text(encoding="utf-8"))))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid storm file %s: %s", f.name, exc)
                continue
        events.sort(key=lambda e: (e.start_time, e.id))
        return events

    def load_active_storm_events(self) -> list[StormEvent]:
        return [e for e in self.load_storm_events() if e.active]

    def delete_storm_event(self, storm_id: str) -> bool:
        path = self.storms_dir / f"{storm_id}.json"
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PersistenceFailure(f"could not delete {path}: {exc}") from exc
        return True

    # -- notification log --------------------------------------------------

    def _read_log(self) -> list[dict]:
        if not self.log_path.exists():
            return []
        try:
            data = json.loads(self.log_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceFailure(f"could not read {self.log_path}: {exc}") from exc
        if not isinstance(data, list):
            raise PersistenceFailure(f"{self.log_path} does not hold a list")
        return data

    def append_notification_log_entry(self, entry: NotificationLogEntry) -> None:
        with self._log_lock:
            log = self._read_log()
            log.append(entry_to_dict(entry))
            self._write(self.log_path, log)

    def load_notification_log(self) -> list[NotificationLogEntry]:
        entries: list[NotificationLogEntry] = []
        for data in self._read_log():
            try:
                entries.append(entry_from_dict(data))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid notification entry: %s", exc)
        return entries

    def mark_notification_actioned(self, entry_id: str) -> NotificationLogEntry:
        """Flag an entry as actioned.  Raises KeyError for unknown ids."""
        with self._log_lock:
            log = self._read_log()
            for data in log:
                if data.get("id") == entry_id:
                    data["actioned"] = True
                    self._write(self.log_path, log)
                    return entry_from_dict(data)
        raise KeyError(entry_id)
