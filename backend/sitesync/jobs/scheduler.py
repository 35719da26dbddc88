"""
Tick-driven job scheduler.

One instance owns one thread. Every tick walks the registry in order and runs each
enabled job that is due. Handler calls, from a tick or a manual trigger, are serialized
by a single lock. Job state (enabled flag, last run) lives in the key-value store so it
survives restarts and is shared by every instance pointed at the same store.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from sitesync.core.alerting import build_job_failure_alert, fire_alert
from sitesync.core.errors import UnknownJobError, error_code_of
from sitesync.core.logging_config import structured_log
from sitesync.jobs.context import KST_OFFSET_MS, JobContext
from sitesync.jobs.registry import SOURCE_SYNC_JOBS, JobDefinition
from sitesync.services.sync_failures import persist_sync_failure
from sitesync.services.sync_jobs import SYNC_TYPE

logger = logging.getLogger(__name__)


def enabled_key(job_name: str) -> str:
    return f'job:{job_name}:enabled'


def last_run_key(job_name: str) -> str:
    return f'job:{job_name}:lastRun'


def kst_datetime(epoch_ms: int) -> datetime:
    """Fixed +9h offset rendered as a UTC-tagged datetime; read only its fields."""
    return datetime.fromtimestamp((int(epoch_ms) + KST_OFFSET_MS) / 1000.0, tz=timezone.utc)


def window_key(kst: datetime) -> str:
    return kst.strftime('%Y-%m-%d-%H')


def kst_day_of_week(kst: datetime) -> int:
    # Python: Monday=0; schedules use Sunday=0.
    return (kst.weekday() + 1) % 7


def is_job_due(job: JobDefinition, now_ms: int, last_run_ms: int | None) -> bool:
    now_kst = kst_datetime(now_ms)
    if job.kst_hour is not None and now_kst.hour != job.kst_hour:
        return False
    if job.day_of_week is not None and kst_day_of_week(now_kst) != job.day_of_week:
        return False
    if job.day_of_month is not None and now_kst.day != job.day_of_month:
        return False
    if last_run_ms is None:
        return True
    if job.windowed:
        return window_key(now_kst) != window_key(kst_datetime(last_run_ms))
    return now_ms - last_run_ms >= job.interval_ms


class JobScheduler:
    def __init__(
        self,
        jobs: Sequence[JobDefinition],
        ctx: JobContext,
        *,
        tick_seconds: float = 60.0,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        names = [j.name for j in jobs]
        if len(set(names)) != len(names):
            raise ValueError('job names must be unique')
        self.jobs = list(jobs)
        self.ctx = ctx
        self.tick_seconds = max(0.05, float(tick_seconds))
        self._clock_ms = clock_ms or ctx.clock_ms
        self._run_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def get(self, job_name: str) -> JobDefinition | None:
        for job in self.jobs:
            if job.name == job_name:
                return job
        return None

    def require(self, job_name: str) -> JobDefinition:
        job = self.get(job_name)
        if job is None:
            raise UnknownJobError(job_name)
        return job

    def is_enabled(self, job_name: str) -> bool:
        value = self.ctx.kv.get(enabled_key(job_name))
        return True if value is None else bool(value)

    def last_run(self, job_name: str) -> int | None:
        value = self.ctx.kv.get(last_run_key(job_name))
        return int(value) if value is not None else None

    def is_due(self, job: JobDefinition, now_ms: int | None = None) -> bool:
        now = self._clock_ms() if now_ms is None else now_ms
        return is_job_due(job, now, self.last_run(job.name))

    def _report_failure(self, job: JobDefinition, exc: Exception) -> None:
        lock_name = SOURCE_SYNC_JOBS.get(job.name)
        if lock_name is not None:
            try:
                persist_sync_failure(self.ctx, SYNC_TYPE, error_code_of(exc), str(exc), lock_name)
            except Exception:
                logger.exception('could not persist failure record for job %s', job.name)
        fire_alert(self.ctx.kv, build_job_failure_alert(job.name, str(exc)))

    def _invoke(self, job: JobDefinition) -> str | None:
        """Run one job. Returns the error message, or None when the handler succeeded."""
        started = self._clock_ms()
        error: str | None = None
        try:
            job.handler(self.ctx)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.exception('job %s failed', job.name)
            self._report_failure(job, exc)
        finally:
            finished = self._clock_ms()
            self.ctx.kv.put(last_run_key(job.name), finished)
            structured_log(
                'info' if error is None else 'error',
                'job finished',
                job=job.name,
                ok=error is None,
                duration_ms=finished - started,
            )
        return error

    def tick(self) -> list[str]:
        """Run every due job once. Returns the names of jobs that ran."""
        ran: list[str] = []
        with self._run_lock:
            now = self._clock_ms()
            for job in self.jobs:
                if not self.is_enabled(job.name):
                    continue
                if not self.is_due(job, now):
                    continue
                self._invoke(job)
                ran.append(job.name)
        return ran

    def status(self) -> list[dict[str, Any]]:
        now = self._clock_ms()
        out = []
        for job in self.jobs:
            enabled = self.is_enabled(job.name)
            out.append(
                {
                    'name': job.name,
                    'enabled': enabled,
                    'lastRun': self.last_run(job.name),
                    'dueNow': enabled and self.is_due(job, now),
                    'schedule': job.schedule(),
                }
            )
        return out

    def list_jobs(self) -> list[dict[str, Any]]:
        return [job.describe() for job in self.jobs]

    def trigger(self, job_name: str) -> dict[str, Any]:
        job = self.get(job_name)
        if job is None:
            return {'ok': False, 'error': 'Job not found'}
        with self._run_lock:
            error = self._invoke(job)
        if error is not None:
            return {'ok': False, 'error': error}
        return {'ok': True}

    def set_enabled(self, job_name: str, enabled: bool) -> dict[str, Any]:
        if self.get(job_name) is None:
            return {'ok': False}
        self.ctx.kv.put(enabled_key(job_name), bool(enabled))
        logger.info('job %s %s', job_name, 'enabled' if enabled else 'disabled')
        return {'ok': True, 'jobName': job_name, 'enabled': bool(enabled)}

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        stop = stop_event or self._stop
        logger.info('scheduler started: %s jobs, tick every %ss', len(self.jobs), self.tick_seconds)
        while not stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception('scheduler tick failed')
            finally:
                stop.wait(self.tick_seconds)
        logger.info('scheduler stopped')

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name='job-scheduler', daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None
