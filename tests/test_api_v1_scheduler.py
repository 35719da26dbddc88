import os
import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

os.environ.setdefault('DATABASE_URL', 'sqlite:///./data/test_sitesync_v1.db')

from sitesync.main import app  # noqa: E402
from sitesync.core.config import settings  # noqa: E402
from sitesync.core.kv_store import InMemoryKeyValueStore  # noqa: E402
from sitesync.db.base import Base  # noqa: E402
from sitesync.jobs.context import JobContext  # noqa: E402
from sitesync.jobs.registry import JobDefinition  # noqa: E402
from sitesync.jobs.scheduler import JobScheduler  # noqa: E402
from sitesync.models.sync import SyncFailure  # noqa: E402

NOW_MS = 1767268800000


class ApiV1SchedulerTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        self.kv = InMemoryKeyValueStore()
        self.handler = MagicMock()
        ctx = JobContext(kv=self.kv, session_factory=self.Session, clock_ms=lambda: NOW_MS)
        self.scheduler = JobScheduler(
            [
                JobDefinition(name='fas-sync', handler=self.handler, interval_ms=300000),
                JobDefinition(name='fas-full-sync-daily', handler=MagicMock(), interval_ms=86400000, kst_hour=21),
            ],
            ctx,
        )
        app.state.scheduler = self.scheduler
        self.addCleanup(lambda: setattr(app.state, 'scheduler', None))
        self.client = TestClient(app)

    def _post(self, body, **kwargs):
        return self.client.post('/api/v1/scheduler', json=body, **kwargs)

    def test_status_lists_jobs(self):
        r = self._post({'action': 'status'})
        self.assertEqual(r.status_code, 200)
        jobs = r.json()['jobs']
        self.assertEqual([j['name'] for j in jobs], ['fas-sync', 'fas-full-sync-daily'])
        self.assertTrue(all(j['dueNow'] for j in jobs))
        self.assertIsNone(jobs[0]['lastRun'])

    def test_list_returns_registry(self):
        r = self._post({'action': 'list'})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()['jobs'][1]['schedule']['kstHour'], 21)

    def test_trigger_runs_job(self):
        r = self._post({'action': 'trigger', 'jobName': 'fas-sync'})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {'ok': True})
        self.handler.assert_called_once()
        self.assertEqual(self.kv.get('job:fas-sync:lastRun'), NOW_MS)

    def test_trigger_failure_carries_reason(self):
        self.handler.side_effect = RuntimeError('source offline')
        with patch('sitesync.jobs.scheduler.fire_alert', return_value=False), \
                patch('sitesync.jobs.scheduler.persist_sync_failure'):
            r = self._post({'action': 'trigger', 'jobName': 'fas-sync'})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {'ok': False, 'error': 'source offline'})

    def test_trigger_unknown_job_is_404(self):
        r = self._post({'action': 'trigger', 'jobName': 'nope'})
        self.assertEqual(r.status_code, 404)
        body = r.json()
        self.assertEqual(body['error_code'], 'UNKNOWN_JOB')
        self.assertEqual(body['details'], {'jobName': 'nope'})
        self.assertIn('trace_id', body)

    def test_enable_and_disable(self):
        r = self._post({'action': 'disable', 'jobName': 'fas-sync'})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {'ok': True, 'jobName': 'fas-sync', 'enabled': False})
        self.assertFalse(self._post({'action': 'status'}).json()['jobs'][0]['enabled'])
        r = self._post({'action': 'enable', 'jobName': 'fas-sync'})
        self.assertEqual(r.json()['enabled'], True)
        self.assertEqual(self._post({'action': 'enable', 'jobName': 'ghost'}).status_code, 404)

    def test_malformed_requests_are_400(self):
        cases = [
            {'action': 'explode'},
            {'jobName': 'fas-sync'},
            {'action': 'trigger'},
            {'action': 'enable', 'jobName': '   '},
            ['status'],
        ]
        for body in cases:
            r = self._post(body)
            self.assertEqual(r.status_code, 400, body)
            self.assertEqual(r.json()['error_code'], 'INVALID_REQUEST')
        r = self.client.post('/api/v1/scheduler', content=b'{not json', headers={'content-type': 'application/json'})
        self.assertEqual(r.status_code, 400)

    def test_non_post_is_405(self):
        for method in ('get', 'put', 'delete'):
            r = getattr(self.client, method)('/api/v1/scheduler')
            self.assertEqual(r.status_code, 405, method)

    def test_control_token_required_when_configured(self):
        with patch.object(settings, 'scheduler_control_token', 'secret-token'):
            self.assertEqual(self._post({'action': 'status'}).status_code, 401)
            bad = self._post({'action': 'status'}, headers={'Authorization': 'Bearer wrong'})
            self.assertEqual(bad.status_code, 401)
            self.assertEqual(bad.json()['error_code'], 'UNAUTHORIZED')
            ok = self._post({'action': 'status'}, headers={'Authorization': 'Bearer secret-token'})
            self.assertEqual(ok.status_code, 200)

    def test_sync_status_and_failures(self):
        db = self.Session()
        try:
            db.add(SyncFailure(correlation_id='c-1', sync_type='FAS_WORKER', error_code='UNKNOWN', error_message='x'))
            db.commit()
        finally:
            db.close()
        self.kv.put('sync:source-status', 'down')

        status = self.client.get('/api/v1/sync/status')
        self.assertEqual(status.status_code, 200)
        self.assertEqual(status.json()['source_status'], 'down')
        self.assertFalse(status.json()['source_configured'])

        failures = self.client.get('/api/v1/sync/failures', params={'limit': 10})
        self.assertEqual(failures.status_code, 200)
        self.assertEqual(failures.json()[0]['correlation_id'], 'c-1')

    def test_health_reports_db_and_unconfigured_source(self):
        r = self.client.get('/api/v1/health')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()['db_ok'], True)
        self.assertIsNone(r.json()['source_ok'])


if __name__ == '__main__':
    unittest.main()
