"""
Reconciliation of source employees into local users.

Lookups run in one read session to plan the writes; the writes themselves go through
the batch executor so a failing chunk only loses its own employees.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from sqlalchemy import and_
from sqlalchemy.orm import Session

from sitesync.core.crypto import encrypt, hmac_hex
from sitesync.core.errors import AllChunksFailedError
from sitesync.models.sync import AuditLog, Site, SiteMembership, User
from sitesync.services.batch_executor import DEFAULT_CHUNK_SIZE, WriteOp, chunk_list, execute_chunked
from sitesync.services.source_client import ExternalEmployee

LOOKUP_CHUNK_SIZE = 50

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r'\D+')


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    user_ids: list[str] = field(default_factory=list)

    def merge(self, other: 'SyncResult') -> 'SyncResult':
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        self.user_ids.extend(other.user_ids)
        return self

    def as_dict(self) -> dict[str, Any]:
        return {
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'errors': list(self.errors),
        }


def normalize_phone(value: str | None) -> str:
    return _NON_DIGITS.sub('', str(value or ''))


def mask_name(name: str | None) -> str:
    text = str(name or '').strip()
    if len(text) <= 1:
        return text
    if len(text) == 2:
        return text[0] + '*'
    return text[0] + '*' * (len(text) - 2) + text[-1]


def social_no_to_dob(social_no: str | None) -> str | None:
    """YYMMDD plus the gender/century digit -> YYYYMMDD, or None."""
    digits = normalize_phone(social_no)
    if len(digits) < 7:
        return None
    digits = digits[:7]
    century_digit = digits[6]
    if century_digit in ('1', '2', '5', '6'):
        century = '19'
    elif century_digit in ('3', '4', '7', '8'):
        century = '20'
    elif century_digit in ('9', '0'):
        century = '18'
    else:
        return None
    return century + digits[:6]


@dataclass
class _Plan:
    kind: str  # created | updated
    user_id: str
    op: WriteOp


def _base_fields(emp: ExternalEmployee) -> dict[str, Any]:
    return {
        'name': emp.name,
        'name_masked': mask_name(emp.name),
        'company_code': emp.company_code or None,
        'company_name': emp.company_name or None,
        'entry_day': emp.entry_day or None,
        'retire_day': emp.retire_day or None,
        'source_updated_at': emp.updated_at,
    }


def _pii_fields(phone: str, dob: str | None, hmac_secret: str, encryption_key: str) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if phone:
        out['phone_hash'] = hmac_hex(hmac_secret, phone)
        out['phone_encrypted'] = encrypt(encryption_key, phone)
    if dob:
        out['dob_hash'] = hmac_hex(hmac_secret, dob)
        out['dob_encrypted'] = encrypt(encryption_key, dob)
    return out


def _create_op(user_id: str, values: dict[str, Any]) -> WriteOp:
    def op(db: Session) -> None:
        db.add(User(id=user_id, role='WORKER', **values))

    return op


def _update_op(user_id: str, values: dict[str, Any]) -> WriteOp:
    def op(db: Session) -> None:
        user = db.get(User, user_id)
        if user is None:
            raise LookupError(f'user {user_id} vanished before update')
        for key, value in values.items():
            setattr(user, key, value)

    return op


def _plan_employee(
    db: Session,
    emp: ExternalEmployee,
    *,
    external_system: str,
    hmac_secret: str,
    encryption_key: str,
    claimed_phones: dict[str, str],
    now: datetime,
) -> _Plan:
    phone = normalize_phone(emp.phone)
    dob = social_no_to_dob(emp.social_no)
    pii = _pii_fields(phone, dob, hmac_secret, encryption_key)
    no_phone_pii = {k: v for k, v in pii.items() if not k.startswith('phone_')}
    phone_hash = pii.get('phone_hash')

    values = _base_fields(emp)
    if emp.is_active:
        values['is_active'] = True
        values['deactivated_at'] = None

    user = (
        db.query(User)
        .filter(User.external_system == external_system, User.external_worker_id == emp.code)
        .first()
    )
    if user is not None:
        owner = claimed_phones.get(phone_hash) if phone_hash else None
        if phone_hash and owner is None:
            other = db.query(User.id).filter(User.phone_hash == phone_hash, User.id != user.id).first()
            owner = other[0] if other else None
        if owner is not None and owner != user.id:
            logger.info('employee %s: phone already belongs to another user, PII refresh skipped', emp.code)
        else:
            values.update(pii)
            if phone_hash:
                claimed_phones[phone_hash] = user.id
        return _Plan('updated', user.id, _update_op(user.id, values))

    new_values = {
        **values,
        'external_system': external_system,
        'external_worker_id': emp.code,
        'is_active': emp.is_active,
        'deactivated_at': None if emp.is_active else now,
    }

    if phone_hash and phone_hash in claimed_phones:
        # Another employee of this batch already took the phone.
        logger.info('employee %s: phone shared within batch, creating record without phone', emp.code)
        user_id = str(uuid.uuid4())
        return _Plan('created', user_id, _create_op(user_id, {**new_values, **no_phone_pii}))

    if phone_hash:
        candidate = (
            db.query(User.id, User.external_system, User.external_worker_id)
            .filter(User.phone_hash == phone_hash)
            .first()
        )
        if candidate is not None:
            candidate_id, cand_system, cand_worker = candidate
            if cand_system == external_system and cand_worker and cand_worker != emp.code:
                logger.info('employee %s: phone reused by worker %s, creating record without phone', emp.code, cand_worker)
                user_id = str(uuid.uuid4())
                return _Plan('created', user_id, _create_op(user_id, {**new_values, **no_phone_pii}))
            values.update(pii)
            values['external_system'] = external_system
            values['external_worker_id'] = emp.code
            claimed_phones[phone_hash] = candidate_id
            return _Plan('updated', candidate_id, _update_op(candidate_id, values))

    user_id = str(uuid.uuid4())
    if phone_hash:
        claimed_phones[phone_hash] = user_id
    return _Plan('created', user_id, _create_op(user_id, {**new_values, **pii}))


def sync_employees(
    employees: Sequence[ExternalEmployee],
    session_factory: Callable[[], Session],
    *,
    hmac_secret: str,
    encryption_key: str,
    external_system: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    now: Callable[[], datetime] = datetime.utcnow,
) -> SyncResult:
    result = SyncResult()
    plans: list[_Plan] = []
    claimed_phones: dict[str, str] = {}
    stamp = now()

    db = session_factory()
    try:
        for emp in employees:
            if not emp.code:
                result.skipped += 1
                continue
            try:
                plans.append(
                    _plan_employee(
                        db,
                        emp,
                        external_system=external_system,
                        hmac_secret=hmac_secret,
                        encryption_key=encryption_key,
                        claimed_phones=claimed_phones,
                        now=stamp,
                    )
                )
            except Exception as exc:
                logger.warning('employee %s could not be planned: %s', emp.code, exc)
                result.errors.append(f'{emp.code}: {exc}')
    finally:
        db.close()

    if not plans:
        return result

    try:
        batch = execute_chunked(session_factory, [p.op for p in plans], chunk_size)
    except AllChunksFailedError as exc:
        # Every chunk rolled back; the failed chunks are reported below.
        batch = exc.result
        logger.error('employee sync wrote nothing: %s', exc)
    failed_indexes = {e.chunk_index: e for e in batch.errors}
    for index, chunk in enumerate(chunk_list(plans, chunk_size)):
        failure = failed_indexes.get(index)
        if failure is not None:
            result.errors.append(f'chunk {index}: {failure.error} ({len(chunk)} employees not written)')
            continue
        for plan in chunk:
            if plan.kind == 'created':
                result.created += 1
            else:
                result.updated += 1
            result.user_ids.append(plan.user_id)
    return result


def deactivate_retired_employees(
    codes: Iterable[str],
    session_factory: Callable[[], Session],
    *,
    external_system: str,
    now: Callable[[], datetime] = datetime.utcnow,
) -> int:
    """Soft-deactivate local users whose source record is retired. Rows are never deleted."""
    wanted = [c for c in dict.fromkeys(codes) if c]
    if not wanted:
        return 0
    deactivated = 0
    db = session_factory()
    try:
        for chunk in chunk_list(wanted, LOOKUP_CHUNK_SIZE):
            count = (
                db.query(User)
                .filter(
                    User.external_system == external_system,
                    User.external_worker_id.in_(chunk),
                    User.is_active.is_(True),
                )
                .update({'is_active': False, 'deactivated_at': now()}, synchronize_session=False)
            )
            db.commit()
            deactivated += int(count or 0)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    return deactivated


def active_user_ids(session_factory: Callable[[], Session], *, external_system: str) -> list[str]:
    db = session_factory()
    try:
        rows = (
            db.query(User.id)
            .filter(User.external_system == external_system, User.is_active.is_(True))
            .order_by(User.id)
            .all()
        )
        return [r[0] for r in rows]
    finally:
        db.close()


def _membership_op(user_id: str, site_id: int) -> WriteOp:
    def op(db: Session) -> None:
        db.add(SiteMembership(user_id=user_id, site_id=site_id, role='WORKER', status='ACTIVE'))

    return op


def ensure_site_memberships(
    session_factory: Callable[[], Session],
    user_ids: Sequence[str],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Add missing memberships of the given users to every active site. Returns rows created."""
    ids = [u for u in dict.fromkeys(user_ids) if u]
    if not ids:
        return 0

    ops: list[WriteOp] = []
    db = session_factory()
    try:
        site_ids = [r[0] for r in db.query(Site.id).filter(Site.active.is_(True)).order_by(Site.id).all()]
        if not site_ids:
            return 0
        for chunk in chunk_list(ids, LOOKUP_CHUNK_SIZE):
            existing = {
                (r[0], r[1])
                for r in db.query(SiteMembership.user_id, SiteMembership.site_id)
                .filter(and_(SiteMembership.user_id.in_(chunk), SiteMembership.site_id.in_(site_ids)))
                .all()
            }
            for user_id in chunk:
                for site_id in site_ids:
                    if (user_id, site_id) not in existing:
                        ops.append(_membership_op(user_id, site_id))
    finally:
        db.close()

    if not ops:
        return 0
    result = execute_chunked(session_factory, ops, chunk_size)
    if result.degraded:
        logger.warning('membership ensure degraded: %s chunk(s) failed', result.failed_chunks)
    return result.completed_ops


def append_audit(
    session_factory: Callable[[], Session],
    action: str,
    *,
    entity: str,
    target_id: str | None = None,
    payload: dict[str, Any] | None = None,
    actor: str = 'system',
) -> None:
    db = session_factory()
    try:
        db.add(
            AuditLog(
                entity=entity,
                action=action,
                actor=actor,
                target_id=target_id,
                payload_json=json.dumps(payload or {}, ensure_ascii=False, default=str),
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
