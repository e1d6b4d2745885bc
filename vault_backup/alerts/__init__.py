"""Outbound notifications."""

from vault_backup.alerts.email import EmailNotifier, send_alert

__all__ = ["EmailNotifier", "send_alert"]
