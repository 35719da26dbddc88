import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

from sitesync.core.retry import backoff_delay_ms, with_retry  # noqa: E402


class WithRetryTests(unittest.TestCase):
    def setUp(self):
        self.sleeps = []

    def _sleep(self, seconds):
        self.sleeps.append(seconds)

    def test_returns_first_success_without_sleeping(self):
        calls = []

        def fn():
            calls.append(1)
            return 'ok'

        self.assertEqual(with_retry(fn, 3, 1000, sleep=self._sleep), 'ok')
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.sleeps, [])

    def test_succeeds_on_third_attempt_with_exponential_backoff(self):
        attempts = {'n': 0}

        def fn():
            attempts['n'] += 1
            if attempts['n'] < 3:
                raise RuntimeError('transient')
            return attempts['n']

        self.assertEqual(with_retry(fn, 3, 1000, sleep=self._sleep), 3)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_raises_last_error_after_max_attempts(self):
        attempts = {'n': 0}

        def fn():
            attempts['n'] += 1
            raise ValueError(f'failure {attempts["n"]}')

        with self.assertRaises(ValueError) as ctx:
            with_retry(fn, 2, 5000, sleep=self._sleep)
        self.assertEqual(str(ctx.exception), 'failure 2')
        self.assertEqual(attempts['n'], 2)
        self.assertEqual(self.sleeps, [5.0])

    def test_backoff_delay_doubles(self):
        self.assertEqual([backoff_delay_ms(a, 500) for a in (1, 2, 3)], [500, 1000, 2000])


if __name__ == '__main__':
    unittest.main()
