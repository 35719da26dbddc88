"""
Key-value backing store used by the sync lock, alert cooldowns, status flags and
persisted job state. Values are JSON-serializable; TTLs are enforced by the store.
No compare-and-swap primitive is offered.
"""
from __future__ import annotations

import json
import time
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sitesync.models.sync import KvEntry


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store; clock returns epoch seconds."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        # key -> (value, expiry_ts or None)
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._lock = Lock()
        self._clock = clock

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if expiry is not None and now >= expiry:
                self._data.pop(key, None)
                return None
            return value

    def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expiry = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._data[key] = (value, expiry)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data.keys())


class SqlKeyValueStore:
    """Shared store over the kv_entries table. Expired rows are hidden on read and purged lazily."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def get(self, key: str) -> Any | None:
        db = self._session_factory()
        try:
            row = db.get(KvEntry, key)
            if row is None:
                return None
            if row.expires_at is not None and row.expires_at <= self._clock():
                return None
            return json.loads(row.value_json or 'null')
        finally:
            db.close()

    def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        now = self._clock()
        payload = json.dumps(value, ensure_ascii=False, default=str)
        expires_at = now + timedelta(seconds=int(ttl_seconds)) if ttl_seconds else None
        db = self._session_factory()
        try:
            row = db.get(KvEntry, key)
            if row is None:
                db.add(KvEntry(key=key, value_json=payload, expires_at=expires_at, updated_at=now))
            else:
                row.value_json = payload
                row.expires_at = expires_at
                row.updated_at = now
            try:
                db.commit()
            except IntegrityError:
                # Concurrent insert of the same key: last writer wins.
                db.rollback()
                row = db.get(KvEntry, key)
                if row is not None:
                    row.value_json = payload
                    row.expires_at = expires_at
                    row.updated_at = now
                    db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self._session_factory()
        try:
            db.query(KvEntry).filter(KvEntry.key == key).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def purge_expired(self) -> int:
        db = self._session_factory()
        try:
            removed = (
                db.query(KvEntry)
                .filter(KvEntry.expires_at.isnot(None), KvEntry.expires_at <= self._clock())
                .delete(synchronize_session=False)
            )
            db.commit()
            return int(removed or 0)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
