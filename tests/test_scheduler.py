import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

from sitesync.core.errors import UnknownJobError  # noqa: E402
from sitesync.core.kv_store import InMemoryKeyValueStore  # noqa: E402
from sitesync.jobs.context import JobContext  # noqa: E402
from sitesync.jobs.registry import FIVE_MINUTES_MS, JobDefinition, build_job_registry  # noqa: E402
from sitesync.jobs.scheduler import JobScheduler, is_job_due, kst_datetime, window_key  # noqa: E402

# 2026-01-01T12:00:00Z == 2026-01-01 21:00 KST (Thursday)
THU_21_KST = 1767268800000
HOUR = 60 * 60 * 1000
DAY = 24 * HOUR


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class FakeStopEvent:
    def __init__(self, stop_after):
        self.waits = []
        self.stop_after = stop_after

    def is_set(self):
        return len(self.waits) >= self.stop_after

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return self.is_set()


def _job(name, handler=None, **kwargs):
    return JobDefinition(name=name, handler=handler or MagicMock(), interval_ms=kwargs.pop('interval_ms', FIVE_MINUTES_MS), **kwargs)


class DueRuleTests(unittest.TestCase):
    def test_window_key_and_kst_offset(self):
        kst = kst_datetime(THU_21_KST)
        self.assertEqual(kst.hour, 21)
        self.assertEqual(window_key(kst), '2026-01-01-21')

    def test_windowed_job_runs_once_per_kst_hour(self):
        job = _job('daily', kst_hour=21, interval_ms=DAY)
        self.assertTrue(is_job_due(job, THU_21_KST, None))
        self.assertFalse(is_job_due(job, THU_21_KST + 30 * 60 * 1000, THU_21_KST))
        self.assertFalse(is_job_due(job, THU_21_KST + HOUR, THU_21_KST))
        self.assertFalse(is_job_due(job, THU_21_KST - HOUR, None))
        self.assertTrue(is_job_due(job, THU_21_KST + DAY, THU_21_KST))

    def test_interval_job(self):
        job = _job('interval', interval_ms=300000)
        self.assertTrue(is_job_due(job, THU_21_KST, None))
        self.assertFalse(is_job_due(job, THU_21_KST + 299999, THU_21_KST))
        self.assertTrue(is_job_due(job, THU_21_KST + 300000, THU_21_KST))

    def test_day_of_week_uses_sunday_zero(self):
        job = _job('weekly', day_of_week=0, kst_hour=3, interval_ms=7 * DAY)
        sunday_03_kst = THU_21_KST + 2 * DAY + 6 * HOUR  # Sun 03:00 KST
        self.assertEqual(kst_datetime(sunday_03_kst).strftime('%a %H'), 'Sun 03')
        self.assertTrue(is_job_due(job, sunday_03_kst, None))
        self.assertFalse(is_job_due(job, THU_21_KST, None))
        self.assertFalse(is_job_due(job, sunday_03_kst + HOUR, None))

    def test_day_of_month(self):
        job = _job('monthly', day_of_month=1, interval_ms=DAY)
        self.assertTrue(is_job_due(job, THU_21_KST, None))
        self.assertFalse(is_job_due(job, THU_21_KST + DAY, None))


class JobSchedulerTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(THU_21_KST)
        self.kv = InMemoryKeyValueStore()
        self.ctx = JobContext(kv=self.kv, session_factory=MagicMock(), clock_ms=self.clock)
        alert_patcher = patch('sitesync.jobs.scheduler.fire_alert', return_value=False)
        self.fire_alert = alert_patcher.start()
        self.addCleanup(alert_patcher.stop)

    def _scheduler(self, jobs):
        return JobScheduler(jobs, self.ctx, tick_seconds=60)

    def test_tick_runs_due_jobs_in_registry_order(self):
        calls = []
        first = _job('first', handler=lambda ctx: calls.append('first'))
        second = _job('second', handler=lambda ctx: calls.append('second'))
        scheduler = self._scheduler([first, second])
        self.assertEqual(scheduler.tick(), ['first', 'second'])
        self.assertEqual(calls, ['first', 'second'])
        self.assertEqual(self.kv.get('job:first:lastRun'), THU_21_KST)

        self.clock.now += 60000
        self.assertEqual(scheduler.tick(), [])
        self.clock.now = THU_21_KST + FIVE_MINUTES_MS
        self.assertEqual(scheduler.tick(), ['first', 'second'])

    def test_last_run_recorded_after_failure_and_tick_continues(self):
        def failing(ctx):
            self.clock.now += 1500
            raise RuntimeError('handler exploded')

        after = _job('after')
        scheduler = self._scheduler([_job('broken', handler=failing), after])
        self.assertEqual(scheduler.tick(), ['broken', 'after'])
        self.assertEqual(self.kv.get('job:broken:lastRun'), THU_21_KST + 1500)
        after.handler.assert_called_once_with(self.ctx)
        self.fire_alert.assert_called_once()
        # A failed job is not retried in the same interval.
        self.assertNotIn('broken', scheduler.tick())

    def test_source_sync_job_failure_persists_record(self):
        job = _job('fas-sync', handler=MagicMock(side_effect=RuntimeError('db down')))
        scheduler = self._scheduler([job])
        with patch('sitesync.jobs.scheduler.persist_sync_failure') as persist:
            scheduler.tick()
        args = persist.call_args[0]
        self.assertEqual(args[1:], ('FAS_WORKER', 'UNKNOWN', 'db down', 'fas'))

    def test_disabled_job_is_skipped(self):
        job = _job('fas-sync')
        scheduler = self._scheduler([job])
        self.assertEqual(scheduler.set_enabled('fas-sync', False), {'ok': True, 'jobName': 'fas-sync', 'enabled': False})
        self.assertIs(self.kv.get('job:fas-sync:enabled'), False)
        self.assertEqual(scheduler.tick(), [])
        job.handler.assert_not_called()
        status = scheduler.status()[0]
        self.assertFalse(status['enabled'])
        self.assertFalse(status['dueNow'])

        scheduler.set_enabled('fas-sync', True)
        self.assertTrue(scheduler.status()[0]['dueNow'])

    def test_set_enabled_unknown_job(self):
        self.assertEqual(self._scheduler([]).set_enabled('nope', True), {'ok': False})

    def test_trigger_bypasses_due_check(self):
        job = _job('fas-sync')
        scheduler = self._scheduler([job])
        scheduler.tick()
        self.assertEqual(scheduler.trigger('fas-sync'), {'ok': True})
        self.assertEqual(job.handler.call_count, 2)
        self.assertEqual(scheduler.trigger('nope'), {'ok': False, 'error': 'Job not found'})

    def test_trigger_reports_failure(self):
        scheduler = self._scheduler([_job('x', handler=MagicMock(side_effect=ValueError('bad')))])
        self.assertEqual(scheduler.trigger('x'), {'ok': False, 'error': 'bad'})
        self.assertIsNotNone(scheduler.last_run('x'))

    def test_require_raises_for_unknown_job(self):
        scheduler = self._scheduler([_job('fas-sync')])
        self.assertEqual(scheduler.require('fas-sync').name, 'fas-sync')
        with self.assertRaises(UnknownJobError) as ctx:
            scheduler.require('nope')
        self.assertEqual(ctx.exception.code, 'UNKNOWN_JOB')
        self.assertEqual(ctx.exception.job_name, 'nope')

    def test_status_shape(self):
        scheduler = self._scheduler([_job('daily', kst_hour=21, interval_ms=DAY)])
        status = scheduler.status()
        self.assertEqual(status[0]['name'], 'daily')
        self.assertIsNone(status[0]['lastRun'])
        self.assertTrue(status[0]['dueNow'])
        self.assertEqual(status[0]['schedule']['kstHour'], 21)

    def test_run_forever_rearms_after_tick_error(self):
        scheduler = self._scheduler([])
        stop = FakeStopEvent(stop_after=3)
        with patch.object(scheduler, 'tick', side_effect=[RuntimeError('tick failed'), [], []]) as tick:
            scheduler.run_forever(stop)
        self.assertEqual(tick.call_count, 3)
        self.assertEqual(stop.waits, [60.0, 60.0, 60.0])

    def test_duplicate_job_names_rejected(self):
        with self.assertRaises(ValueError):
            self._scheduler([_job('a'), _job('a')])

    def test_registry_contents(self):
        jobs = {j.name: j for j in build_job_registry()}
        self.assertEqual(list(jobs), ['fas-sync', 'fas-full-sync-daily', 'kv-expired-cleanup'])
        self.assertEqual(jobs['fas-sync'].interval_ms, 300000)
        self.assertFalse(jobs['fas-sync'].windowed)
        self.assertEqual(jobs['fas-full-sync-daily'].kst_hour, 21)
        self.assertEqual((jobs['fas-full-sync-daily'].retry_attempts, jobs['fas-full-sync-daily'].retry_base_delay_ms), (2, 5000))
        self.assertEqual(jobs['kv-expired-cleanup'].day_of_week, 0)


if __name__ == '__main__':
    unittest.main()
