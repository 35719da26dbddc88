from __future__ import annotations

from sitesync.core.config import settings
from sitesync.core.kv_store import SqlKeyValueStore
from sitesync.db.session import SessionLocal
from sitesync.jobs.context import JobContext
from sitesync.jobs.registry import build_job_registry
from sitesync.jobs.scheduler import JobScheduler
from sitesync.services.source_client import build_employee_source, source_configured


def build_job_context() -> JobContext:
    return JobContext(
        kv=SqlKeyValueStore(SessionLocal),
        session_factory=SessionLocal,
        source=build_employee_source() if source_configured() else None,
        settings=settings,
    )


def build_scheduler(ctx: JobContext | None = None) -> JobScheduler:
    return JobScheduler(
        build_job_registry(),
        ctx or build_job_context(),
        tick_seconds=settings.scheduler_tick_seconds,
    )
