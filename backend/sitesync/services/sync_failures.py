"""
Failure records for source sync runs: one row in sync_failures, a best-effort copy in
the log sink and optionally the shared "source down" flag.
"""
from __future__ import annotations

import json
import logging
import urllib.request
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from sitesync.core.retry import with_retry
from sitesync.models.sync import SyncFailure

if TYPE_CHECKING:
    from sitesync.jobs.context import JobContext

SOURCE_STATUS_KEY = 'sync:source-status'
LAST_FULL_SYNC_KEY = 'sync:last-full-sync'

logger = logging.getLogger(__name__)


def log_sink_index(prefix: str, when: datetime) -> str:
    return f'{prefix}-{when.astimezone(timezone.utc).strftime("%Y.%m.%d")}'


def log_sink_doc_id(sync_type: str, correlation_id: str) -> str:
    return f'{sync_type}-{correlation_id}'


def _put_json(url: str, payload: dict[str, Any], timeout: float) -> int:
    data = json.dumps(payload, ensure_ascii=False, default=str).encode('utf-8')
    req = urllib.request.Request(url, data=data, method='PUT', headers={'Content-Type': 'application/json'})
    with urllib.request.urlopen(req, timeout=timeout) as res:
        return int(res.status)


def emit_to_log_sink(
    ctx: 'JobContext',
    event: dict[str, Any],
    *,
    put: Callable[[str, dict[str, Any], float], int] | None = None,
) -> bool:
    base_url = str(ctx.settings.elasticsearch_url or '').rstrip('/')
    if not base_url:
        return False
    when = datetime.fromisoformat(event['timestamp'])
    url = '/'.join(
        [
            base_url,
            log_sink_index(ctx.settings.elasticsearch_index_prefix, when),
            '_doc',
            log_sink_doc_id(event['syncType'], event['correlationId']),
        ]
    )
    timeout = float(ctx.settings.alert_http_timeout_seconds or 10)

    def _send() -> int:
        status = (put or _put_json)(url, event, timeout)
        if status < 200 or status >= 300:
            raise RuntimeError(f'log sink returned status {status}')
        return status

    try:
        with_retry(_send, 2, 500, sleep=ctx.sleep)
        return True
    except Exception as exc:
        logger.warning('sync failure event %s not shipped to log sink: %s', event['correlationId'], exc)
        return False


def persist_sync_failure(
    ctx: 'JobContext',
    sync_type: str,
    error_code: str,
    error_message: str,
    lock_name: str | None = None,
    set_source_down: bool = False,
    payload: dict[str, Any] | None = None,
) -> str:
    """Record a failed sync run and return its correlation id."""
    correlation_id = str(uuid.uuid4())
    now = ctx.now_utc()
    event = {
        'timestamp': now.isoformat(),
        'correlationId': correlation_id,
        'syncType': sync_type,
        'errorCode': error_code,
        'errorMessage': error_message,
        'lockName': lock_name,
        'payload': payload or {},
    }

    emit_to_log_sink(ctx, event)

    if set_source_down:
        ctx.kv.put(SOURCE_STATUS_KEY, 'down', ttl_seconds=int(ctx.settings.source_status_ttl_seconds or 600))

    db = ctx.session_factory()
    try:
        db.add(
            SyncFailure(
                correlation_id=correlation_id,
                sync_type=sync_type,
                status='OPEN',
                error_code=error_code,
                error_message=error_message,
                lock_name=lock_name,
                payload_json=json.dumps(payload or {}, ensure_ascii=False, default=str),
                created_at=now.replace(tzinfo=None),
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    logger.error('sync failure recorded %s [%s] %s: %s', correlation_id, sync_type, error_code, error_message)
    return correlation_id


def recent_failures(session_factory, limit: int = 50) -> list[dict[str, Any]]:
    db = session_factory()
    try:
        rows = (
            db.query(SyncFailure)
            .order_by(SyncFailure.created_at.desc(), SyncFailure.id.desc())
            .limit(max(1, min(int(limit), 500)))
            .all()
        )
        return [
            {
                'correlation_id': r.correlation_id,
                'sync_type': r.sync_type,
                'status': r.status,
                'error_code': r.error_code,
                'error_message': r.error_message,
                'lock_name': r.lock_name,
                'payload': json.loads(r.payload_json or '{}'),
                'created_at': r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ]
    finally:
        db.close()
