"""Trigger source fed by the Vault event subscription websocket."""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from vault_backup.errors import PushSourceError
from vault_backup.triggers.events import Trigger, TriggerSource
from vault_backup.triggers.merger import EventMerger
from vault_backup.vault.client import TOKEN_HEADER
from vault_backup.vault.credential import CredentialHandle

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


def decode_event(message: Union[str, bytes]) -> Optional[str]:
    """
    Decode one Vault event message and return its event type.

    Raises:
        ValueError: When the message is not a JSON object
    """
    if isinstance(message, bytes):
        message = message.decode("utf-8")
    payload = json.loads(message)
    if not isinstance(payload, dict):
        raise ValueError("Vault event is not a JSON object")
    data = payload.get("data")
    if isinstance(data, dict):
        event_type = data.get("event_type")
        return str(event_type) if event_type else None
    return None


class PushSource:
    """
    Holds one long-lived event subscription and turns every message into a trigger.

    The connection is owned by this source and closed only by it. A decode
    error ends the source; a dropped connection ends it too unless
    reconnection is enabled.
    """

    def __init__(
        self,
        url: str,
        handle: CredentialHandle,
        destination: str,
        merger: EventMerger,
        connector: Connector = connect,
        max_reconnects: int = 0,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 60.0,
        log: Optional[logging.Logger] = None,
    ):
        self.url = url
        self.destination = destination
        self._handle = handle
        self._merger = merger
        self._connector = connector
        self._max_reconnects = max_reconnects
        self._base_delay = reconnect_base_delay
        self._max_delay = reconnect_max_delay
        self._log = log or logger
        self._connection: Any = None
        self._closing = False
        self.received = 0

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """
        Open the subscription with the current credential.

        Raises:
            PushSourceError: When the websocket cannot be opened
        """
        try:
            self._connection = await self._connector(
                self.url,
                additional_headers={TOKEN_HEADER: self._handle.token()},
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise PushSourceError(f"Unable to subscribe to Vault events at {self.url}: {e}") from e

        self._log.info(f"Connected to vault events at {self.url}")

    async def run(self) -> None:
        """Read events until the connection fails or the source is closed."""
        if self._connection is None:
            await self.connect()

        self._log.info("Listening for vault events...")
        try:
            while not self._closing:
                try:
                    message = await self._connection.recv()
                except ConnectionClosed as e:
                    if self._closing:
                        break
                    self._log.error(f"WebSocket read error: {e}")
                    if not await self._reconnect():
                        break
                    continue

                try:
                    event_type = decode_event(message)
                except (ValueError, UnicodeDecodeError) as e:
                    self._log.error(f"Unable to decode vault event, stopping listener: {e}")
                    break

                trigger = Trigger(TriggerSource.PUSH, self.destination, event_type)
                await self._merger.put(trigger)
                self.received += 1
        finally:
            await self._close_connection()
            self._log.info("Vault event listener stopped")

    async def _reconnect(self) -> bool:
        """Try to reopen the subscription with exponential backoff."""
        await self._close_connection()
        delay = self._base_delay

        for attempt in range(1, self._max_reconnects + 1):
            self._log.info(f"Reconnecting to vault events in {delay:.1f}s (attempt {attempt}/{self._max_reconnects})")
            await asyncio.sleep(delay)
            if self._closing:
                return False
            try:
                await self.connect()
                return True
            except PushSourceError as e:
                self._log.warning(f"Reconnect attempt {attempt} failed: {e}")
            delay = min(delay * 2, self._max_delay)

        return False

    async def close(self) -> None:
        """Stop the listener and close the connection."""
        self._closing = True
        await self._close_connection()

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except (OSError, WebSocketException) as e:
            self._log.warning(f"Error closing vault event connection: {e}")
