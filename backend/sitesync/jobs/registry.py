from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from sitesync.jobs.context import JobContext
from sitesync.services import sync_jobs

FIVE_MINUTES_MS = 5 * 60 * 1000
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS

# Jobs whose failure also leaves a sync failure record.
SOURCE_SYNC_JOBS = {
    'fas-sync': sync_jobs.INCREMENTAL_LOCK,
    'fas-full-sync-daily': sync_jobs.FULL_SYNC_LOCK,
}


@dataclass(frozen=True)
class JobDefinition:
    name: str
    handler: Callable[[JobContext], None]
    interval_ms: int
    kst_hour: int | None = None
    day_of_week: int | None = None  # 0 = Sunday
    day_of_month: int | None = None
    retry_attempts: int = 1
    retry_base_delay_ms: int = 0
    description: str = ''

    @property
    def windowed(self) -> bool:
        return self.kst_hour is not None or self.day_of_week is not None or self.day_of_month is not None

    def schedule(self) -> dict[str, Any]:
        return {
            'intervalMs': self.interval_ms,
            'kstHour': self.kst_hour,
            'dayOfWeek': self.day_of_week,
            'dayOfMonth': self.day_of_month,
        }

    def describe(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'schedule': self.schedule(),
            'retry': {'attempts': self.retry_attempts, 'baseDelayMs': self.retry_base_delay_ms},
        }


def build_job_registry() -> list[JobDefinition]:
    """Registry order is execution order within a tick."""
    full_attempts, full_delay = sync_jobs.FULL_SYNC_RETRY
    inc_attempts, inc_delay = sync_jobs.INCREMENTAL_SYNC_RETRY
    return [
        JobDefinition(
            name='fas-sync',
            handler=sync_jobs.run_fas_sync_job,
            interval_ms=FIVE_MINUTES_MS,
            retry_attempts=inc_attempts,
            retry_base_delay_ms=inc_delay,
            description='Incremental employee sync from the source of record (full sync until one succeeds)',
        ),
        JobDefinition(
            name='fas-full-sync-daily',
            handler=sync_jobs.run_daily_full_sync_job,
            interval_ms=DAY_MS,
            kst_hour=21,
            retry_attempts=full_attempts,
            retry_base_delay_ms=full_delay,
            description='Daily full employee reconciliation at 21:00 KST',
        ),
        JobDefinition(
            name='kv-expired-cleanup',
            handler=sync_jobs.run_kv_cleanup_job,
            interval_ms=WEEK_MS,
            kst_hour=3,
            day_of_week=0,
            description='Weekly purge of expired key-value entries (Sunday 03:00 KST)',
        ),
    ]
