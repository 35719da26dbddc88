"""
Operational alerts delivered to a webhook, deduplicated per alert type with a cooldown
kept in the key-value store. Delivery never raises to the caller.
"""
from __future__ import annotations

import json
import logging
import urllib.request
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.error import URLError

from pydantic import BaseModel, Field, ValidationError

from sitesync.core.config import settings
from sitesync.core.kv_store import KeyValueStore

ALERT_CONFIG_KEY = 'alerting:config'
COOLDOWN_PREFIX = 'alert:cooldown:'

logger = logging.getLogger(__name__)


class AlertConfig(BaseModel):
    webhook_url: str = ''
    cooldown_seconds: int = Field(default=300, ge=60, le=86400)
    enabled: bool = True


class Alert(BaseModel):
    type: str
    severity: str = 'critical'
    title: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def get_alert_config(kv: KeyValueStore) -> AlertConfig:
    defaults = AlertConfig(cooldown_seconds=max(60, int(settings.alert_cooldown_seconds or 300)))
    stored = kv.get(ALERT_CONFIG_KEY)
    if not isinstance(stored, dict):
        return defaults
    try:
        return AlertConfig(**{**defaults.model_dump(), **stored})
    except ValidationError:
        logger.warning('stored alert config is invalid, using defaults')
        return defaults


def set_alert_config(kv: KeyValueStore, updates: dict[str, Any]) -> AlertConfig:
    current = get_alert_config(kv)
    merged = AlertConfig(**{**current.model_dump(), **updates})
    kv.put(ALERT_CONFIG_KEY, merged.model_dump())
    return merged


def build_source_down_alert(error_message: str) -> Alert:
    return Alert(
        type='SOURCE_DOWN',
        severity='critical',
        title='External source sync failed',
        message=f'Employee sync from the source of record failed: {error_message}',
        metadata={'error': error_message},
    )


def build_job_failure_alert(job_name: str, error_message: str) -> Alert:
    return Alert(
        type='JOB_FAILURE',
        severity='warning',
        title=f'Scheduled job failed: {job_name}',
        message=error_message,
        metadata={'job_name': job_name, 'error': error_message},
    )


def _webhook_payload(alert: Alert) -> dict[str, Any]:
    return {
        'text': f'[{alert.severity.upper()}] {alert.title}\n{alert.message}',
        'alert': alert.model_dump(),
    }


def _post_json(url: str, payload: dict[str, Any], timeout: float) -> int:
    data = json.dumps(payload, ensure_ascii=False).encode('utf-8')
    req = urllib.request.Request(url, data=data, method='POST', headers={'Content-Type': 'application/json'})
    with urllib.request.urlopen(req, timeout=timeout) as res:
        return int(res.status)


def fire_alert(
    kv: KeyValueStore,
    alert: Alert,
    fallback_url: str | None = None,
    *,
    post: Callable[[str, dict[str, Any], float], int] = _post_json,
) -> bool:
    """Return True when the alert was delivered, False when skipped or failed."""
    try:
        config = get_alert_config(kv)
        if not config.enabled:
            return False
        url = (config.webhook_url or fallback_url or settings.alert_webhook_url or '').strip()
        if not url:
            logger.info('alert %s not sent: no webhook configured', alert.type)
            return False

        cooldown_key = f'{COOLDOWN_PREFIX}{alert.type}'
        if kv.get(cooldown_key) is not None:
            logger.info('alert %s suppressed by cooldown', alert.type)
            return False

        status = post(url, _webhook_payload(alert), float(settings.alert_http_timeout_seconds or 10))
        if status < 200 or status >= 300:
            logger.error('alert webhook returned status %s for %s', status, alert.type)
            return False
        kv.put(cooldown_key, alert.timestamp, ttl_seconds=config.cooldown_seconds)
        return True
    except (URLError, TimeoutError, OSError) as exc:
        logger.error('alert webhook delivery failed for %s: %s', alert.type, exc)
        return False
    except Exception:
        logger.exception('alert delivery crashed for %s', alert.type)
        return False
