"""Fixed-interval trigger source."""

import logging
from typing import Optional

from vault_backup.triggers.events import Trigger, TriggerSource
from vault_backup.triggers.merger import EventMerger

logger = logging.getLogger(__name__)


class TimerSource:
    """Enqueues a scheduled trigger every time the scheduler fires ``fire``."""

    def __init__(self, merger: EventMerger, destination: str, log: Optional[logging.Logger] = None):
        self._merger = merger
        self.destination = destination
        self._log = log or logger
        self.fired = 0

    async def fire(self) -> None:
        self._log.info("Performing scheduled backup...")
        await self._merger.put(Trigger(TriggerSource.SCHEDULED, self.destination))
        self.fired += 1
