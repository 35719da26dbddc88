"""
Advisory try-lock over the key-value store.

The check-then-put sequence is not atomic and release() does not verify the holder:
a caller whose lock expired and was re-acquired elsewhere will delete the new holder's
key. The TTL is the only liveness guarantee against crashed holders.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from sitesync.core.kv_store import KeyValueStore

LOCK_PREFIX = 'sync:lock:'
DEFAULT_LOCK_TTL_SECONDS = 300

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockResult:
    acquired: bool
    holder: str | None = None


def lock_key(lock_name: str) -> str:
    return f'{LOCK_PREFIX}{lock_name}'


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def acquire_sync_lock(
    kv: KeyValueStore,
    lock_name: str,
    ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    *,
    clock_ms: Callable[[], int] = _epoch_ms,
) -> LockResult:
    key = lock_key(lock_name)
    existing = kv.get(key)
    if existing is not None:
        return LockResult(acquired=False, holder=str(existing))

    holder = f'{lock_name}-{clock_ms()}'
    kv.put(key, holder, ttl_seconds=ttl_seconds)
    return LockResult(acquired=True, holder=holder)


def release_sync_lock(kv: KeyValueStore, lock_name: str) -> None:
    try:
        kv.delete(lock_key(lock_name))
    except Exception:
        logger.warning('failed to release sync lock %s; it will expire via TTL', lock_name, exc_info=True)


def current_holder(kv: KeyValueStore, lock_name: str) -> str | None:
    value = kv.get(lock_key(lock_name))
    return str(value) if value is not None else None
