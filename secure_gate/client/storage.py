"""
secure_gate/client/storage.py - Visitor-side persisted key/value storage
LocalStorage persists to one JSON file per client install (the browser
localStorage equivalent). MemoryStorage is the private-browsing equivalent.
ExpiringStorage wraps either one with per-key expiry (cookie semantics).
Read/write failures raise StorageUnavailable; callers decide how to degrade.
"""
from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Protocol

from secure_gate.core.errors import StorageUnavailable
from secure_gate.utils.timezone import Clock, ensure_utc, parse_epoch_ms, to_epoch_ms, utc_now


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryStorage:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class LocalStorage:
    """JSON-file backed storage. Writes go through a temp file + rename."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read {self.path}: {exc}") from exc
        except json.JSONDecodeError:
            # Corrupt file: start over rather than lock the visitor out
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write_all(self, data: dict[str, str]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot write {self.path}: {exc}") from exc

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)


class ExpiringStorage:
    """Values stored as '<expires_at_ms>|<value>'; expired values read as None."""

    def __init__(self, storage: KeyValueStorage, clock: Clock = utc_now) -> None:
        self.storage = storage
        self._clock = clock

    def set_item(self, key: str, value: str, ttl: timedelta) -> None:
        expires_at = ensure_utc(self._clock()) + ttl
        self.storage.set_item(key, f"{to_epoch_ms(expires_at)}|{value}")

    def get_item(self, key: str) -> Optional[str]:
        raw = self.storage.get_item(key)
        if raw is None:
            return None
        stamp, sep, value = raw.partition("|")
        expires_at = parse_epoch_ms(stamp) if sep else None
        if expires_at is None:
            self.storage.remove_item(key)
            return None
        if expires_at <= ensure_utc(self._clock()):
            self.storage.remove_item(key)
            return None
        return value

    def expires_at(self, key: str) -> Optional[datetime]:
        raw = self.storage.get_item(key)
        if raw is None:
            return None
        return parse_epoch_ms(raw.partition("|")[0])

    def remove_item(self, key: str) -> None:
        self.storage.remove_item(key)
