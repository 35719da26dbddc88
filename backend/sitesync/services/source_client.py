"""
Read-only client for the external source of record (legacy MariaDB attendance system).

One cached connection per process: reused while younger than the TTL and answering a
bounded ping, otherwise closed and replaced.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Iterator

import mysql.connector

from sitesync.core.config import settings

logger = logging.getLogger(__name__)

ACTIVE_STATE_FLAG = 'W'

EMPLOYEE_SELECT = (
    'e.empl_cd, e.empl_nm, e.part_cd, e.tel_no, e.social_no, '
    'e.state_flag, e.entr_day, e.retr_day, e.update_dt, '
    'e.gojo_cd, e.jijo_cd, e.care_cd, e.role_cd, '
    'p.part_nm'
)
EMPLOYEE_FROM = (
    'FROM employee e '
    'LEFT JOIN partner p ON e.site_cd = p.site_cd AND e.part_cd = p.part_cd'
)


@dataclass(frozen=True)
class ExternalEmployee:
    code: str
    name: str = ''
    company_code: str = ''
    company_name: str = ''
    phone: str = ''
    social_no: str = ''
    job_code: str = ''
    position_code: str = ''
    care_code: str = ''
    role_code: str = ''
    state_flag: str = ''
    entry_day: str = ''
    retire_day: str = ''
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.state_flag == ACTIVE_STATE_FLAG


def _text(row: dict, key: str) -> str:
    value = row.get(key)
    if value is None:
        return ''
    return str(value).strip()


def map_employee_row(row: dict) -> ExternalEmployee:
    updated = row.get('update_dt')
    return ExternalEmployee(
        code=_text(row, 'empl_cd'),
        name=_text(row, 'empl_nm'),
        company_code=_text(row, 'part_cd'),
        company_name=_text(row, 'part_nm'),
        phone=_text(row, 'tel_no'),
        social_no=_text(row, 'social_no'),
        job_code=_text(row, 'gojo_cd'),
        position_code=_text(row, 'jijo_cd'),
        care_code=_text(row, 'care_cd'),
        role_code=_text(row, 'role_cd'),
        state_flag=_text(row, 'state_flag'),
        entry_day=_text(row, 'entr_day'),
        retire_day=_text(row, 'retr_day'),
        updated_at=updated if isinstance(updated, datetime) else None,
    )


def _set_socket_timeout(conn: Any, seconds: float) -> None:
    # Best effort: pure-python connections expose the socket wrapper.
    try:
        sock = getattr(conn, '_socket', None)
        if sock is None:
            return
        if hasattr(sock, 'set_connection_timeout'):
            sock.set_connection_timeout(seconds)
        inner = getattr(sock, 'sock', None)
        if inner is not None:
            inner.settimeout(seconds)
    except Exception as exc:
        logger.debug('setting source socket timeout failed: %s', exc)


def default_connect(timeout_seconds: float) -> Any:
    cfg = {
        'host': settings.source_db_host,
        'port': settings.source_db_port,
        'user': settings.source_db_user,
        'password': settings.source_db_password,
        'database': settings.source_db_name,
        'connection_timeout': max(1, int(timeout_seconds)),
        'use_pure': True,
        'autocommit': True,
    }
    return mysql.connector.connect(**cfg)


class SourceConnectionPool:
    def __init__(
        self,
        connect: Callable[[float], Any] = default_connect,
        *,
        ttl_seconds: float = 30.0,
        ping_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._connect = connect
        self._ttl_seconds = float(ttl_seconds)
        self._ping_timeout_seconds = float(ping_timeout_seconds)
        self._clock = clock
        self._lock = Lock()
        self._connection: Any = None
        self._last_used: float = 0.0

    @property
    def ping_timeout_seconds(self) -> float:
        return self._ping_timeout_seconds

    def ping(self, conn: Any) -> None:
        _set_socket_timeout(conn, self._ping_timeout_seconds)
        conn.ping(reconnect=False)

    def get_connection(self) -> Any:
        now = self._clock()
        with self._lock:
            cached = self._connection
            if cached is not None and now - self._last_used < self._ttl_seconds:
                try:
                    self.ping(cached)
                    self._last_used = now
                    return cached
                except Exception as exc:
                    logger.debug('cached source connection ping failed, rotating: %s', exc)
                    self._close_locked()
            elif cached is not None:
                self._close_locked()

            conn = self._connect(self._ping_timeout_seconds)
            self._connection = conn
            self._last_used = now
            return conn

    def discard(self) -> None:
        with self._lock:
            self._close_locked()

    def cleanup_expired(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._connection is None or now - self._last_used <= self._ttl_seconds:
                return False
            self._close_locked()
            return True

    def _close_locked(self) -> None:
        conn = self._connection
        self._connection = None
        if conn is None:
            return
        try:
            conn.close()
        except Exception as exc:
            logger.debug('closing source connection failed: %s', exc)


class EmployeeSource:
    def __init__(
        self,
        pool: SourceConnectionPool,
        *,
        site_cd: str,
        query_timeout_seconds: float = 10.0,
    ) -> None:
        self.pool = pool
        self.site_cd = site_cd
        self.query_timeout_seconds = float(query_timeout_seconds)

    def ping(self) -> bool:
        try:
            conn = self.pool.get_connection()
            self.pool.ping(conn)
            return True
        except Exception as exc:
            logger.warning('source connection test failed: %s', exc)
            self.pool.discard()
            return False

    def _query(self, sql: str, params: tuple = ()) -> list[dict]:
        conn = self.pool.get_connection()
        try:
            _set_socket_timeout(conn, self.query_timeout_seconds)
            cursor = conn.cursor(dictionary=True)
            try:
                cursor.execute(sql, params)
                return list(cursor.fetchall())
            finally:
                cursor.close()
        except Exception:
            self.pool.discard()
            raise

    def get_employee(self, code: str) -> ExternalEmployee | None:
        rows = self._query(
            f'SELECT {EMPLOYEE_SELECT} {EMPLOYEE_FROM} WHERE e.site_cd = %s AND e.empl_cd = %s LIMIT 1',
            (self.site_cd, code),
        )
        if not rows:
            return None
        return map_employee_row(rows[0])

    def get_updated_employees(self, since: str | None) -> list[ExternalEmployee]:
        """All employees of the site, or only those with update_dt > since (KST wall-clock)."""
        sql = f'SELECT {EMPLOYEE_SELECT} {EMPLOYEE_FROM} WHERE e.site_cd = %s'
        params: list[Any] = [self.site_cd]
        if since:
            sql += ' AND e.update_dt > %s'
            params.append(since)
        sql += ' ORDER BY e.update_dt ASC'
        return [map_employee_row(row) for row in self._query(sql, tuple(params))]

    def get_all_employees_paginated(self, offset: int, limit: int) -> tuple[list[ExternalEmployee], int]:
        count_rows = self._query(
            f'SELECT COUNT(*) AS cnt {EMPLOYEE_FROM} WHERE e.site_cd = %s',
            (self.site_cd,),
        )
        total = int((count_rows[0] if count_rows else {}).get('cnt') or 0)
        rows = self._query(
            f'SELECT {EMPLOYEE_SELECT} {EMPLOYEE_FROM} WHERE e.site_cd = %s '
            'ORDER BY e.empl_cd ASC LIMIT %s OFFSET %s',
            (self.site_cd, int(limit), int(offset)),
        )
        return [map_employee_row(row) for row in rows], total

    def iter_all_employees(self, page_size: int) -> Iterator[list[ExternalEmployee]]:
        offset = 0
        while True:
            page, total = self.get_all_employees_paginated(offset, page_size)
            if not page:
                break
            yield page
            offset += len(page)
            if offset >= total:
                break


def build_employee_source() -> EmployeeSource:
    pool = SourceConnectionPool(
        ttl_seconds=settings.source_connection_ttl_seconds,
        ping_timeout_seconds=settings.source_ping_timeout_seconds,
    )
    return EmployeeSource(
        pool,
        site_cd=settings.source_site_cd,
        query_timeout_seconds=settings.source_query_timeout_seconds,
    )


def source_configured() -> bool:
    return bool(str(settings.source_db_host or '').strip() and str(settings.source_db_user or '').strip())
