#!/usr/bin/env python3
"""
Unit tests for the retry helper used when binding to directory servers.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ou_path_sync.retry import retry_call, create_retry_callback, MaxRetriesExceeded


class TestRetryCall(unittest.TestCase):
    """Test cases for retry_call."""

    def test_success_first_attempt(self):
        func = Mock(return_value='ok')
        self.assertEqual(retry_call(func, max_attempts=3, delay=0), 'ok')
        func.assert_called_once()

    @patch('ou_path_sync.retry.time.sleep')
    def test_success_after_failures(self, mock_sleep):
        func = Mock(side_effect=[ConnectionError('reset'), ConnectionError('reset'), 'ok'])

        result = retry_call(func, max_attempts=3, delay=2, backoff=2.0)

        self.assertEqual(result, 'ok')
        self.assertEqual(func.call_count, 3)
        self.assertEqual([c[0][0] for c in mock_sleep.call_args_list], [2, 4])

    @patch('ou_path_sync.retry.time.sleep')
    def test_max_retries_exceeded(self, mock_sleep):
        error = ConnectionError('down')
        func = Mock(side_effect=error)

        with self.assertRaises(MaxRetriesExceeded) as cm:
            retry_call(func, max_attempts=2, delay=1)

        self.assertEqual(cm.exception.attempts, 2)
        self.assertIs(cm.exception.last_exception, error)
        self.assertEqual(mock_sleep.call_count, 1)

    def test_unlisted_exception_propagates(self):
        func = Mock(side_effect=KeyError('x'))

        with self.assertRaises(KeyError):
            retry_call(func, max_attempts=3, delay=0, exceptions=(ConnectionError,))
        func.assert_called_once()

    def test_zero_attempts_still_calls_once(self):
        func = Mock(return_value=1)
        self.assertEqual(retry_call(func, max_attempts=0, delay=0), 1)

    @patch('ou_path_sync.retry.time.sleep')
    def test_on_retry_callback(self, mock_sleep):
        callback = Mock()
        func = Mock(side_effect=[ValueError('bad'), 'ok'])

        retry_call(func, max_attempts=2, delay=0, on_retry=callback)

        callback.assert_called_once()
        self.assertEqual(callback.call_args[0][0], 1)

    @patch('ou_path_sync.retry.time.sleep')
    def test_failing_callback_does_not_stop_retry(self, mock_sleep):
        callback = Mock(side_effect=RuntimeError('callback broke'))
        func = Mock(side_effect=[ValueError('bad'), 'ok'])

        self.assertEqual(retry_call(func, max_attempts=2, delay=0, on_retry=callback), 'ok')

    def test_create_retry_callback_logs(self):
        callback = create_retry_callback('Bind to ldap://dc01')
        with self.assertLogs('ou_path_sync.retry', level='WARNING') as logs:
            callback(1, ConnectionError('refused'))
        self.assertIn('Bind to ldap://dc01 failed on attempt 1', logs.output[0])


if __name__ == '__main__':
    unittest.main()
