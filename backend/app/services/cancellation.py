"""
Cooperative cancellation for long-running syncs.

The orchestrator checks the token between stages and between items. A
cancelled sync finishes the item in flight, then stops; network calls
already issued are not interrupted.
"""

import asyncio
from typing import Optional


class SyncCancelledError(Exception):
    """Raised inside a sync when its cancellation token was triggered."""
    pass


class CancellationToken:
    """
    Example:
        >>> token = CancellationToken()
        >>> asyncio.create_task(consume(sync_service.sync_channel(slug, identity, token)))
        >>> token.cancel("client disconnected")
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Sync cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelledError(self.reason or "Sync cancelled")

    async def wait(self) -> None:
        await self._event.wait()
