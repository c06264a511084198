#!/usr/bin/env python3
"""
Unit tests for email notifications.
"""

import os
import sys
import smtplib
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ou_path_sync.notifications import (
    format_elapsed,
    send_email,
    send_failure_notification,
    send_run_summary
)
from ou_path_sync.reconcile import RunSummary, DomainSummary


class TestFormatElapsed(unittest.TestCase):

    def test_format(self):
        self.assertEqual(format_elapsed(0), "0 hours, 0 minutes, 0 seconds")
        self.assertEqual(format_elapsed(3725.4), "1 hours, 2 minutes, 5 seconds")


class TestNotifications(unittest.TestCase):
    """Test cases for SMTP notifications."""

    def setUp(self):
        self.config = {
            'enable_email': True,
            'email_on_failure': True,
            'email_on_success': True,
            'smtp_server': 'smtp.contoso.com',
            'smtp_port': 587,
            'smtp_tls': True,
            'smtp_username': 'relay',
            'smtp_password': 'relay-pass',
            'email_from': 'oupathsync@contoso.com',
            'email_to': 'directory-team@contoso.com'
        }

    def test_disabled(self):
        self.config['enable_email'] = False
        with patch('ou_path_sync.notifications.smtplib.SMTP') as mock_smtp:
            self.assertFalse(send_email('s', 'b', self.config))
        mock_smtp.assert_not_called()

    @patch('ou_path_sync.notifications.smtplib.SMTP')
    def test_send_with_tls_and_login(self, mock_smtp):
        server = mock_smtp.return_value

        self.assertTrue(send_email('Subject', 'Body', self.config))

        mock_smtp.assert_called_once_with('smtp.contoso.com', 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('relay', 'relay-pass')
        from_addr, to_addrs, _ = server.sendmail.call_args[0]
        self.assertEqual(from_addr, 'oupathsync@contoso.com')
        self.assertEqual(to_addrs, ['directory-team@contoso.com'])

    @patch('ou_path_sync.notifications.smtplib.SMTP_SSL')
    def test_ssl_port(self, mock_smtp_ssl):
        self.config['smtp_port'] = 465
        self.assertTrue(send_email('Subject', 'Body', self.config))
        mock_smtp_ssl.assert_called_once_with('smtp.contoso.com', 465)

    @patch('ou_path_sync.notifications.smtplib.SMTP')
    def test_smtp_failure_returns_false(self, mock_smtp):
        mock_smtp.side_effect = smtplib.SMTPConnectError(421, 'busy')
        self.assertFalse(send_email('Subject', 'Body', self.config))

    @patch('ou_path_sync.notifications.smtplib.SMTP')
    def test_connection_closed_when_login_fails(self, mock_smtp):
        server = mock_smtp.return_value
        server.__exit__.return_value = False
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b'bad credentials')

        self.assertFalse(send_email('Subject', 'Body', self.config))

        server.__exit__.assert_called_once()
        server.sendmail.assert_not_called()

    @patch('ou_path_sync.notifications.smtplib.SMTP')
    def test_connection_closed_after_send(self, mock_smtp):
        server = mock_smtp.return_value
        server.__exit__.return_value = False

        self.assertTrue(send_email('Subject', 'Body', self.config))

        server.__exit__.assert_called_once()

    def test_missing_recipients(self):
        self.config['email_to'] = []
        self.assertFalse(send_email('Subject', 'Body', self.config))

    @patch('ou_path_sync.notifications.send_email', return_value=True)
    def test_failure_notification(self, mock_send):
        self.assertTrue(send_failure_notification('Domain Resolution Failed', "Domain 'x' not found", self.config,
                                                  {'Requested': 'x'}))
        subject, body, _ = mock_send.call_args[0]
        self.assertIn('Domain Resolution Failed', subject)
        self.assertIn("Domain 'x' not found", body)
        self.assertIn('Requested: x', body)

    @patch('ou_path_sync.notifications.send_email')
    def test_failure_notification_disabled(self, mock_send):
        self.config['email_on_failure'] = False
        self.assertFalse(send_failure_notification('t', 'e', self.config))
        mock_send.assert_not_called()

    @patch('ou_path_sync.notifications.send_email', return_value=True)
    def test_run_summary(self, mock_send):
        summary = RunSummary(dry_run=True)
        summary.merge(DomainSummary(domain='contoso.com', objects_seen=10, adds=2, updates=3))

        self.assertTrue(send_run_summary(summary, 65, self.config))

        body = mock_send.call_args[0][1]
        self.assertIn('WhatIf', body)
        self.assertIn('Attributes added: 2', body)
        self.assertIn('contoso.com: 2 added, 3 updated, 0 failed of 10', body)
        self.assertIn('0 hours, 1 minutes, 5 seconds', body)

    @patch('ou_path_sync.notifications.send_email')
    def test_run_summary_disabled(self, mock_send):
        self.config['email_on_success'] = False
        self.assertFalse(send_run_summary(RunSummary(), 1, self.config))
        mock_send.assert_not_called()


if __name__ == '__main__':
    unittest.main()
