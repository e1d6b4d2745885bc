"""Trigger sources and the event merger."""

from vault_backup.triggers.events import Trigger, TriggerSource
from vault_backup.triggers.merger import EventMerger
from vault_backup.triggers.push import PushSource
from vault_backup.triggers.timer import TimerSource

__all__ = ["EventMerger", "PushSource", "TimerSource", "Trigger", "TriggerSource"]
