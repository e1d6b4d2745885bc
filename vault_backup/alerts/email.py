"""Email notifications."""

import logging
from datetime import datetime, timezone
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Sends plain-text notifications to a fixed list of recipients."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        mailbox: str,
        recipients: list[str],
        log: Optional[logging.Logger] = None,
    ):
        if not host:
            raise ValueError("SMTP host is required")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.mailbox = mailbox or (username or "")
        self.recipients = list(recipients)
        self._log = log or logger

    async def notify(self, subject: str, body: str) -> None:
        """
        Send an email to every recipient.

        Raises:
            aiosmtplib.SMTPException: When the message cannot be delivered
        """
        if not self.recipients:
            self._log.warning("No recipients for notification")
            return

        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.mailbox
        msg["To"] = ", ".join(self.recipients)

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=True,
            )
            self._log.info(f"Email sent to {len(self.recipients)} recipient(s): {subject}")

        except Exception as e:
            self._log.error(f"Failed to send email '{subject}': {e}")
            raise


def generate_alert_content(alert_type: str, details: str) -> tuple[str, str]:
    """Generate email subject and body for an alert."""
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

    subjects = {
        "backup_failed": "Vault Backup - Backup Failed",
        "retention_failed": "Vault Backup - Retention Cleanup Failed",
        "reauth_failed": "Vault Backup - Authentication Lost",
    }

    subject = subjects.get(alert_type, f"Vault Backup - {alert_type}")

    body = f"""Vault Backup Alert

Alert Type: {alert_type}
Time: {timestamp}

Details:
{details}
"""

    return subject, body


async def send_alert(notifier: Optional[EmailNotifier], alert_type: str, details: str) -> bool:
    """Send an alert if a notifier is configured. Delivery errors are logged, not raised."""
    if notifier is None:
        logger.debug(f"Notifications disabled, not sending {alert_type} alert")
        return False

    subject, body = generate_alert_content(alert_type, details)
    try:
        await notifier.notify(subject, body)
    except Exception as e:
        logger.warning(f"Could not send {alert_type} alert: {e}")
        return False
    return True
