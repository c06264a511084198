"""
Email notification utilities for OU Path Sync.

This module provides functionality to send email notifications for
fatal run failures and end-of-run summaries.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


def format_elapsed(seconds: float) -> str:
    """Render a duration as 'H hours, M minutes, S seconds'."""
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours} hours, {minutes} minutes, {secs} seconds"


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary

    Returns:
        True if email sent successfully, False otherwise
    """
    if not config.get('enable_email', False):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = config.get('email_to', [])

    if not smtp_server:
        logger.error("SMTP server not configured")
        return False

    if not email_to:
        logger.error("No email recipients configured")
        return False

    if isinstance(email_to, str):
        email_to = [email_to]

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)

        # quit/close on the way out, also when starttls, login or sendmail raise
        with server:
            if smtp_tls and smtp_port != 465:
                server.starttls()

            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)

            server.sendmail(email_from, email_to, msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False

    logger.info(f"Email notification sent successfully: {subject}")
    return True


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for a run that could not complete.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "OU Path Sync Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "Please check the application logs for more detailed information.",
        "",
        "This is an automated message from OU Path Sync."
    ])

    return send_email(f"OU Path Sync Alert: {title}", '\n'.join(body_lines), config)


def send_run_summary(summary, elapsed_seconds: float, config: Dict[str, Any]) -> bool:
    """
    Send the end-of-run summary.

    Args:
        summary: RunSummary of the finished run
        elapsed_seconds: Wall-clock duration of the run
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Summary email notifications disabled")
        return False

    mode = "WhatIf (no changes written)" if summary.dry_run else "Live"
    body_lines = [
        "OU Path Sync Summary Report",
        f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Mode: {mode}",
        "",
        f"  Total runtime: {format_elapsed(elapsed_seconds)}",
        f"  Domains processed: {summary.domains_processed}",
        f"  Domains failed: {summary.domains_failed}",
        f"  Objects examined: {summary.objects_seen}",
        f"  Attributes added: {summary.adds}",
        f"  Attributes updated: {summary.updates}",
        f"  Write failures: {summary.failures}",
        f"  Skipped: {summary.skipped}",
        ""
    ]

    for domain_name, details in summary.domain_details.items():
        body_lines.append(f"  {domain_name}: {details.adds} added, {details.updates} updated, "
                          f"{details.failures} failed of {details.objects_seen}")

    body_lines.extend(["", "This is an automated message from OU Path Sync."])

    return send_email("OU Path Sync: Run Complete", '\n'.join(body_lines), config)
