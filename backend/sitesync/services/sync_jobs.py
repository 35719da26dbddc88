"""
Full and incremental reconciliation of source employees, and the scheduled handlers
that wrap them with retry, failure records and source-down alerts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sitesync.core.alerting import build_source_down_alert, fire_alert
from sitesync.core.errors import SourceUnavailableError, error_code_of
from sitesync.core.kv_store import SqlKeyValueStore
from sitesync.core.logging_config import structured_log
from sitesync.core.retry import with_retry
from sitesync.core.sync_lock import acquire_sync_lock, current_holder, release_sync_lock
from sitesync.jobs.context import JobContext
from sitesync.services.batch_executor import chunk_list
from sitesync.services.employee_sync import (
    SyncResult,
    active_user_ids,
    append_audit,
    deactivate_retired_employees,
    ensure_site_memberships,
    sync_employees,
)
from sitesync.services.source_client import ExternalEmployee
from sitesync.services.sync_failures import LAST_FULL_SYNC_KEY, SOURCE_STATUS_KEY, persist_sync_failure

FULL_SYNC_LOCK = 'fas-full'
INCREMENTAL_LOCK = 'fas'
SYNC_TYPE = 'FAS_WORKER'

FULL_SYNC_RETRY = (2, 5000)
INCREMENTAL_SYNC_RETRY = (3, 5000)

logger = logging.getLogger(__name__)


@dataclass
class SyncRunSummary:
    mode: str
    fetched: int = 0
    active: int = 0
    retired: int = 0
    deactivated: int = 0
    memberships_created: int = 0
    duration_ms: int = 0
    result: SyncResult = field(default_factory=SyncResult)

    def as_dict(self) -> dict[str, Any]:
        return {
            'mode': self.mode,
            'fetched': self.fetched,
            'active': self.active,
            'retired': self.retired,
            'deactivated': self.deactivated,
            'memberships_created': self.memberships_created,
            'duration_ms': self.duration_ms,
            **self.result.as_dict(),
        }


def _ensure_reachable(ctx: JobContext) -> None:
    if not ctx.source.ping():
        raise SourceUnavailableError('source database did not answer the connectivity check')


def _fetch_all_employees(ctx: JobContext) -> list[ExternalEmployee]:
    page_size = int(ctx.settings.full_sync_page_size or 0)
    if page_size > 0:
        out: list[ExternalEmployee] = []
        for page in ctx.source.iter_all_employees(page_size):
            out.extend(page)
        return out
    return ctx.source.get_updated_employees(None)


def _sync_kwargs(ctx: JobContext) -> dict[str, Any]:
    return {
        'hmac_secret': ctx.settings.hmac_secret,
        'encryption_key': ctx.settings.encryption_key,
        'external_system': ctx.settings.source_system_code,
        'chunk_size': int(ctx.settings.batch_chunk_size or 100),
    }


def _ensure_memberships(ctx: JobContext, user_ids: list[str]) -> int:
    try:
        return ensure_site_memberships(ctx.session_factory, user_ids, chunk_size=int(ctx.settings.batch_chunk_size or 100))
    except Exception:
        logger.exception('site membership ensure failed; continuing')
        return 0


def run_full_sync(ctx: JobContext) -> SyncRunSummary | None:
    if not ctx.source_configured:
        logger.info('full sync skipped: source database not configured')
        return None

    lock = acquire_sync_lock(
        ctx.kv, FULL_SYNC_LOCK, int(ctx.settings.full_sync_lock_ttl_seconds or 600), clock_ms=ctx.clock_ms
    )
    if not lock.acquired:
        logger.info('full sync skipped: lock %s held by %s', FULL_SYNC_LOCK, lock.holder)
        return None

    started = ctx.clock_ms()
    summary = SyncRunSummary(mode='full')
    try:
        _ensure_reachable(ctx)
        employees = with_retry(lambda: _fetch_all_employees(ctx), 3, 1000, sleep=ctx.sleep)
        summary.fetched = len(employees)
        if not employees:
            logger.info('full sync: source returned no employees')
            return summary

        active = [e for e in employees if e.is_active]
        retired_codes = [e.code for e in employees if not e.is_active and e.code]
        summary.active = len(active)
        summary.retired = len(retired_codes)

        kwargs = _sync_kwargs(ctx)
        for batch in chunk_list(active, max(1, int(ctx.settings.full_sync_batch_size or 50))):
            summary.result.merge(sync_employees(batch, ctx.session_factory, **kwargs))

        summary.deactivated = deactivate_retired_employees(
            retired_codes, ctx.session_factory, external_system=kwargs['external_system']
        )
        summary.memberships_created = _ensure_memberships(
            ctx, active_user_ids(ctx.session_factory, external_system=kwargs['external_system'])
        )

        ctx.kv.put(LAST_FULL_SYNC_KEY, ctx.now_utc().isoformat())
        ctx.kv.delete(SOURCE_STATUS_KEY)

        summary.duration_ms = ctx.clock_ms() - started
        append_audit(
            ctx.session_factory,
            'FULL_SYNC_COMPLETED',
            entity='sync',
            target_id=ctx.settings.source_site_cd,
            payload=summary.as_dict(),
        )
        structured_log('info', 'full sync completed', **summary.as_dict())
        return summary
    except Exception as exc:
        logger.error('full sync failed: %s', exc)
        raise
    finally:
        release_sync_lock(ctx.kv, FULL_SYNC_LOCK)


def run_incremental_sync(ctx: JobContext) -> SyncRunSummary | None:
    if not ctx.source_configured:
        logger.info('incremental sync skipped: source database not configured')
        return None

    lock = acquire_sync_lock(
        ctx.kv, INCREMENTAL_LOCK, int(ctx.settings.incremental_lock_ttl_seconds or 240), clock_ms=ctx.clock_ms
    )
    if not lock.acquired:
        logger.info('incremental sync skipped: lock %s held by %s', INCREMENTAL_LOCK, lock.holder)
        return None

    started = ctx.clock_ms()
    summary = SyncRunSummary(mode='incremental')
    try:
        _ensure_reachable(ctx)
        # Source timestamps are KST wall-clock.
        since_dt = ctx.now_kst_naive() - timedelta(minutes=int(ctx.settings.incremental_lookback_minutes or 5))
        since = since_dt.strftime('%Y-%m-%d %H:%M:%S')
        employees = with_retry(lambda: ctx.source.get_updated_employees(since), 3, 1000, sleep=ctx.sleep)
        summary.fetched = len(employees)
        if not employees:
            ctx.kv.delete(SOURCE_STATUS_KEY)
            return summary

        active = [e for e in employees if e.is_active]
        retired = [e for e in employees if not e.is_active]
        summary.active = len(active)
        summary.retired = len(retired)

        kwargs = _sync_kwargs(ctx)
        active_result = sync_employees(active, ctx.session_factory, **kwargs)
        summary.result.merge(active_result)
        if retired:
            summary.result.merge(sync_employees(retired, ctx.session_factory, **kwargs))

        summary.deactivated = deactivate_retired_employees(
            [e.code for e in retired if e.code], ctx.session_factory, external_system=kwargs['external_system']
        )
        summary.memberships_created = _ensure_memberships(ctx, active_result.user_ids)

        summary.duration_ms = ctx.clock_ms() - started
        append_audit(
            ctx.session_factory,
            'INCREMENTAL_SYNC_COMPLETED',
            entity='sync',
            target_id=ctx.settings.source_site_cd,
            payload={'since': since, **summary.as_dict()},
        )
        ctx.kv.delete(SOURCE_STATUS_KEY)
        structured_log('info', 'incremental sync completed', since=since, **summary.as_dict())
        return summary
    except Exception as exc:
        logger.error('incremental sync failed: %s', exc)
        persist_sync_failure(ctx, SYNC_TYPE, error_code_of(exc), str(exc), INCREMENTAL_LOCK)
        raise
    finally:
        release_sync_lock(ctx.kv, INCREMENTAL_LOCK)


def _report_source_down(ctx: JobContext, exc: Exception, lock_name: str) -> None:
    try:
        persist_sync_failure(ctx, SYNC_TYPE, error_code_of(exc), str(exc), lock_name, set_source_down=True)
    except Exception:
        logger.exception('could not persist sync failure record')
    fire_alert(ctx.kv, build_source_down_alert(str(exc)))


def run_fas_sync_job(ctx: JobContext) -> None:
    """Five-minute job: bootstrap with a full sync, then incremental runs."""
    if not ctx.source_configured:
        logger.info('fas-sync skipped: source database not configured')
        return
    ctx.source.pool.cleanup_expired()

    bootstrap = ctx.kv.get(LAST_FULL_SYNC_KEY) is None
    try:
        if bootstrap:
            logger.info('no completed full sync on record, running full sync')
            attempts, delay = FULL_SYNC_RETRY
            with_retry(lambda: run_full_sync(ctx), attempts, delay, sleep=ctx.sleep)
        else:
            attempts, delay = INCREMENTAL_SYNC_RETRY
            with_retry(lambda: run_incremental_sync(ctx), attempts, delay, sleep=ctx.sleep)
    except Exception as exc:
        _report_source_down(ctx, exc, FULL_SYNC_LOCK if bootstrap else INCREMENTAL_LOCK)


def run_daily_full_sync_job(ctx: JobContext) -> None:
    attempts, delay = FULL_SYNC_RETRY
    with_retry(lambda: run_full_sync(ctx), attempts, delay, sleep=ctx.sleep)


def run_kv_cleanup_job(ctx: JobContext) -> None:
    if not isinstance(ctx.kv, SqlKeyValueStore):
        return
    removed = ctx.kv.purge_expired()
    logger.info('purged %s expired key-value entries', removed)


def sync_status(ctx: JobContext) -> dict[str, Any]:
    return {
        'source_configured': ctx.source_configured,
        'last_full_sync': ctx.kv.get(LAST_FULL_SYNC_KEY),
        'source_status': ctx.kv.get(SOURCE_STATUS_KEY) or 'ok',
        'locks': {
            FULL_SYNC_LOCK: current_holder(ctx.kv, FULL_SYNC_LOCK),
            INCREMENTAL_LOCK: current_holder(ctx.kv, INCREMENTAL_LOCK),
        },
    }
