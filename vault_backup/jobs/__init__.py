"""Background jobs: backup pipeline, retention sweep and their scheduler."""

from vault_backup.jobs.scheduler import setup_scheduler, shutdown_scheduler

__all__ = ["setup_scheduler", "shutdown_scheduler"]
