"""
Email notification utilities for Minutes Sync.

This module sends action item reminders to the people responsible for them,
and failure alerts to the administrators configured under ``notifications``.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, List, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Exception raised when notification sending fails."""
    pass


def send_email(subject: str, body: str, config: Dict[str, Any],
               recipients: Optional[List[str]] = None) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary
        recipients: Addresses to send to; defaults to ``email_to`` from config

    Returns:
        True if email was sent, False if email notifications are disabled

    Raises:
        NotificationError: If SMTP is not configured or delivery fails
    """
    if not config.get('enable_email', True):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = recipients if recipients is not None else config.get('email_to', [])

    if not smtp_server:
        raise NotificationError("SMTP server not configured")

    # Ensure email_to is a list
    if isinstance(email_to, str):
        email_to = [email_to]

    if not email_to:
        raise NotificationError("No email recipients configured")

    logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")

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

        try:
            if smtp_tls and smtp_port != 465:
                server.starttls()
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.sendmail(email_from, email_to, msg.as_string())
        finally:
            server.quit()
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationError(f"Failed to send email '{subject}': {e}")

    logger.info(f"Email sent successfully: {subject}")
    return True


class ActionItemsMailHandler:
    """
    Collects the open action items of one recipient and mails them in one message.

    Instances are created per recipient by the finalize dispatcher.
    """

    def __init__(self, recipient: str, minutes=None, config: Optional[Dict[str, Any]] = None):
        self.recipient = recipient
        self.minutes = minutes
        self.config = config or {}
        self.action_items = []

    def add_action_item(self, item):
        self.action_items.append(item)

    def subject(self) -> str:
        meeting_name = getattr(self.minutes, 'meeting_name', '') or 'Meeting'
        date = getattr(self.minutes, 'date', None)
        if date:
            return f"[{meeting_name}] Your action items from {date}"
        return f"[{meeting_name}] Your action items"

    def body(self) -> str:
        meeting_name = getattr(self.minutes, 'meeting_name', '') or 'the meeting'
        lines = [
            f"Hello {self.recipient},",
            "",
            f"The following action items from {meeting_name} are assigned to you:",
            ""
        ]

        for i, item in enumerate(self.action_items, 1):
            lines.append(f"  {i}. {item.subject}")
            if getattr(item, 'priority', None):
                lines.append(f"     Priority: {item.priority}")
            if getattr(item, 'duedate', None):
                lines.append(f"     Due: {item.duedate}")
            for detail in getattr(item, 'details', None) or []:
                lines.append(f"     - {detail}")

        lines.extend([
            "",
            "This is an automated message from Minutes Sync."
        ])
        return '\n'.join(lines)

    def send(self) -> bool:
        """
        Send the collected action items to the recipient.

        Raises:
            NotificationError: If delivery fails
        """
        if not self.action_items:
            logger.debug(f"No action items for {self.recipient}, nothing to send")
            return False

        sent = send_email(self.subject(), self.body(), self.config, recipients=[self.recipient])
        if sent:
            logger.info(f"Sent {len(self.action_items)} action items to {self.recipient}")
        return sent


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send an alert to the configured administrators.

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

    subject = f"Minutes Sync Alert: {title}"

    body_lines = [
        "Minutes Sync Failure Report",
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
        "This is an automated message from Minutes Sync."
    ])

    return send_email(subject, '\n'.join(body_lines), config)


def send_ldap_failure(error_message: str, config: Dict[str, Any], server_url: str = '') -> bool:
    """
    Send an alert for a failed directory user fetch.

    Args:
        error_message: LDAP error description
        config: Notification configuration
        server_url: Directory server that was queried

    Returns:
        True if notification sent successfully
    """
    additional_info = {
        'Component': 'LDAP User Fetch',
        'Server': server_url or 'unknown',
        'Impact': 'No users returned - directory data not refreshed'
    }

    return send_failure_notification(
        "LDAP User Fetch Failed",
        error_message,
        config,
        additional_info
    )
