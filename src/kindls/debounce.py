from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_DELAY_MS = 150
_WORKSPACE_KEY = "*"

E = TypeVar("E")


class DebounceScope(str, Enum):
    PER_FILE = "per_file"
    # One timer for the whole workspace: a burst touching several files
    # delivers only the last file's event.
    WORKSPACE = "workspace"


class Debouncer(Generic[E]):
    """Coalesce bursts of edit events into single deliveries.

    Each event resets the quiescence timer for its key and replaces the
    event waiting there. Deliveries run one at a time. Once a timer has
    fired its delivery is committed: later events start a new timer instead
    of cancelling a pass that is queued or already running.
    """

    def __init__(
        self,
        callback: Callable[[str, E], Awaitable[None]],
        *,
        delay_ms: int = DEFAULT_DELAY_MS,
        scope: DebounceScope = DebounceScope.PER_FILE,
    ) -> None:
        self._callback = callback
        self.delay = max(delay_ms, 0) / 1000.0
        self.scope = DebounceScope(scope)
        self._pending: dict[str, asyncio.Task[None]] = {}
        self._committed: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()
        self.delivered = 0
        self.dropped = 0

    @property
    def lock(self) -> asyncio.Lock:
        """Held for the duration of each delivery; share it to serialize other passes."""
        return self._lock

    def _key(self, uri: str) -> str:
        if self.scope is DebounceScope.WORKSPACE:
            return _WORKSPACE_KEY
        return uri

    def pending(self) -> list[str]:
        return sorted(self._pending)

    def schedule(self, uri: str, event: E) -> None:
        key = self._key(uri)
        superseded = self._pending.pop(key, None)
        if superseded is not None:
            superseded.cancel()
            self.dropped += 1
            logger.debug("superseded pending event for %s", key)
        task = asyncio.get_running_loop().create_task(self._deliver_later(key, uri, event))
        self._pending[key] = task

    def cancel(self, uri: str) -> bool:
        """Drop the event waiting for ``uri``; a delivery already under way is kept."""
        task = self._pending.pop(self._key(uri), None)
        if task is None:
            return False
        task.cancel()
        self.dropped += 1
        return True

    async def _deliver_later(self, key: str, uri: str, event: E) -> None:
        await asyncio.sleep(self.delay)
        task = asyncio.current_task()
        if self._pending.get(key) is task:
            del self._pending[key]
        if task is not None:
            self._committed.add(task)
        try:
            async with self._lock:
                self.delivered += 1
                try:
                    await self._callback(uri, event)
                except Exception:
                    logger.exception("debounced handler failed for %s", uri)
        finally:
            if task is not None:
                self._committed.discard(task)

    async def flush(self) -> None:
        """Wait until every scheduled event has been delivered or dropped."""
        while self._pending or self._committed:
            tasks = list(self._pending.values()) + list(self._committed)
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        for task in self._pending.values():
            task.cancel()
        pending = list(self._pending.values())
        self._pending.clear()
        await asyncio.gather(*pending, return_exceptions=True)
        await self.flush()
