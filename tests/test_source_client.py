import sys
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

from sitesync.services.source_client import (  # noqa: E402
    EmployeeSource,
    SourceConnectionPool,
    _set_socket_timeout,
    map_employee_row,
)


class FakeConnection:
    def __init__(self, rows=None, ping_error=None):
        self.rows = rows or []
        self.ping_error = ping_error
        self.closed = False
        self.queries = []

    def ping(self, reconnect=False):
        if self.ping_error:
            raise self.ping_error

    def close(self):
        self.closed = True

    def cursor(self, dictionary=False):
        conn = self
        cursor = MagicMock()

        def _execute(sql, params=()):
            conn.queries.append((sql, params))

        def _fetchall():
            if conn.queries and 'COUNT(*)' in conn.queries[-1][0]:
                return [{'cnt': len(conn.rows)}]
            sql, params = conn.queries[-1]
            if 'LIMIT %s OFFSET %s' in sql:
                limit, offset = params[-2], params[-1]
                return conn.rows[offset:offset + limit]
            return list(conn.rows)

        cursor.execute.side_effect = _execute
        cursor.fetchall.side_effect = _fetchall
        return cursor


class SourceConnectionPoolTests(unittest.TestCase):
    def setUp(self):
        self.now = 0.0
        self.created = []

    def _connect(self, _timeout):
        conn = FakeConnection()
        self.created.append(conn)
        return conn

    def _pool(self):
        return SourceConnectionPool(self._connect, ttl_seconds=30, ping_timeout_seconds=5, clock=lambda: self.now)

    def test_reuses_connection_within_ttl(self):
        pool = self._pool()
        first = pool.get_connection()
        self.now = 29
        self.assertIs(pool.get_connection(), first)
        self.assertEqual(len(self.created), 1)

    def test_replaces_connection_after_ttl(self):
        pool = self._pool()
        first = pool.get_connection()
        self.now = 31
        second = pool.get_connection()
        self.assertIsNot(second, first)
        self.assertTrue(first.closed)

    def test_rotates_when_ping_fails(self):
        pool = self._pool()
        first = pool.get_connection()
        first.ping_error = OSError('broken pipe')
        self.now = 1
        second = pool.get_connection()
        self.assertIsNot(second, first)
        self.assertTrue(first.closed)

    def test_cleanup_expired_closes_idle_connection(self):
        pool = self._pool()
        first = pool.get_connection()
        self.now = 10
        self.assertFalse(pool.cleanup_expired())
        self.now = 45
        self.assertTrue(pool.cleanup_expired())
        self.assertTrue(first.closed)


class EmployeeSourceTests(unittest.TestCase):
    def _source(self, rows):
        self.conn = FakeConnection(rows)
        pool = SourceConnectionPool(lambda _t: self.conn, clock=lambda: 0.0)
        return EmployeeSource(pool, site_cd='10')

    def test_map_employee_row(self):
        emp = map_employee_row(
            {
                'empl_cd': ' E1 ', 'empl_nm': 'Kim', 'part_cd': 'P01', 'part_nm': None,
                'tel_no': '010-1', 'social_no': '9001011', 'state_flag': 'W',
                'update_dt': datetime(2026, 1, 1, 9, 0), 'entr_day': '20250101', 'retr_day': None,
            }
        )
        self.assertEqual(emp.code, 'E1')
        self.assertEqual(emp.company_name, '')
        self.assertEqual(emp.retire_day, '')
        self.assertTrue(emp.is_active)
        self.assertEqual(emp.updated_at, datetime(2026, 1, 1, 9, 0))
        self.assertFalse(map_employee_row({'empl_cd': 'E2', 'state_flag': 'R'}).is_active)

    def test_incremental_query_filters_by_site_and_update_time(self):
        source = self._source([{'empl_cd': 'E1', 'state_flag': 'W'}])
        employees = source.get_updated_employees('2026-01-01 09:00:00')
        self.assertEqual([e.code for e in employees], ['E1'])
        sql, params = self.conn.queries[-1]
        self.assertIn('e.update_dt > %s', sql)
        self.assertIn('ORDER BY e.update_dt ASC', sql)
        self.assertEqual(params, ('10', '2026-01-01 09:00:00'))

    def test_full_query_has_no_time_filter(self):
        source = self._source([])
        source.get_updated_employees(None)
        sql, params = self.conn.queries[-1]
        self.assertNotIn('update_dt >', sql)
        self.assertEqual(params, ('10',))

    def test_iter_all_employees_pages_until_total(self):
        rows = [{'empl_cd': f'E{i}', 'state_flag': 'W'} for i in range(5)]
        source = self._source(rows)
        pages = list(source.iter_all_employees(2))
        self.assertEqual([len(p) for p in pages], [2, 2, 1])

    def test_ping_reports_failure_and_discards(self):
        source = self._source([])
        self.conn.ping_error = OSError('timeout')
        self.assertFalse(source.ping())


class SocketTimeoutTests(unittest.TestCase):
    def test_applies_timeout_to_wrapped_socket(self):
        conn = MagicMock()
        _set_socket_timeout(conn, 10)
        conn._socket.set_connection_timeout.assert_called_once_with(10)
        conn._socket.sock.settimeout.assert_called_once_with(10)

    def test_setup_failure_is_logged_not_raised(self):
        conn = MagicMock()
        conn._socket.set_connection_timeout.side_effect = OSError('bad fd')
        with self.assertLogs('sitesync.services.source_client', level='DEBUG') as logs:
            _set_socket_timeout(conn, 10)
        self.assertIn('bad fd', logs.output[0])


if __name__ == '__main__':
    unittest.main()
