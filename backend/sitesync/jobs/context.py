from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from sitesync.core.config import Settings, settings as default_settings
from sitesync.core.kv_store import KeyValueStore
from sitesync.services.source_client import EmployeeSource

KST_OFFSET_MS = 9 * 60 * 60 * 1000


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class JobContext:
    """Collaborators handed to every job handler."""

    kv: KeyValueStore
    session_factory: Callable[[], Session]
    source: EmployeeSource | None = None
    settings: Settings = field(default_factory=lambda: default_settings)
    clock_ms: Callable[[], int] = epoch_ms
    sleep: Callable[[float], None] = time.sleep

    @property
    def source_configured(self) -> bool:
        return self.source is not None and bool(str(self.settings.source_db_host or '').strip())

    def now_utc(self) -> datetime:
        return datetime.fromtimestamp(self.clock_ms() / 1000.0, tz=timezone.utc)

    def now_kst_naive(self) -> datetime:
        """KST wall-clock time (fixed +9h, no tz database) without tzinfo."""
        return datetime.fromtimestamp((self.clock_ms() + KST_OFFSET_MS) / 1000.0, tz=timezone.utc).replace(tzinfo=None)
