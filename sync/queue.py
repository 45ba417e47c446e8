"""
Debounced, per-entity coalescing queue for remote sync operations.

Each entity id holds at most one queued operation (last write wins) and
at most one operation in flight. Anything enqueued for an id while its
operation is in flight waits as that id's follow-up.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class _Entry:
    operation: Operation
    dispatched: bool = False


class SyncQueue:
    """Pending-operation map keyed by entity id.

    Must be used from inside a running asyncio event loop.
    """

    def __init__(self, debounce_seconds: float = 0.1):
        self.debounce_seconds = debounce_seconds
        self._entries: dict[str, _Entry] = {}
        self._followups: dict[str, Operation] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._timer_tasks: set[asyncio.Task] = set()
        self._batches: set[asyncio.Future] = set()

    def __len__(self) -> int:
        return len(self._entries) + len(self._followups)

    def enqueue(self, entity_id: str, operation: Operation) -> None:
        entry = self._entries.get(entity_id)
        if entry is not None and entry.dispatched:
            self._followups[entity_id] = operation
            return
        self._entries[entity_id] = _Entry(operation)
        self._arm_timer()

    def cancel(self, entity_id: str) -> bool:
        """Drops a not-yet-dispatched operation. Returns True if one was dropped."""
        if entity_id in self._followups:
            del self._followups[entity_id]
            return True
        entry = self._entries.get(entity_id)
        if entry is None or entry.dispatched:
            return False
        del self._entries[entity_id]
        return True

    def is_pending(self, entity_id: str) -> bool:
        return entity_id in self._entries or entity_id in self._followups

    def is_queued(self, entity_id: str) -> bool:
        """True if an operation for the id is waiting and not yet dispatched."""
        entry = self._entries.get(entity_id)
        return entry is not None and not entry.dispatched

    def is_in_flight(self, entity_id: str) -> bool:
        entry = self._entries.get(entity_id)
        return entry is not None and entry.dispatched

    def pending_ids(self) -> list[str]:
        return list(dict.fromkeys([*self._entries, *self._followups]))

    async def flush(self) -> None:
        """Dispatches every queued entry concurrently and waits for them."""
        self._cancel_timer()
        batch = [
            (entity_id, entry)
            for entity_id, entry in self._entries.items()
            if not entry.dispatched
        ]
        if not batch:
            return
        for _, entry in batch:
            entry.dispatched = True
        logger.debug("Flushing %d sync operation(s)", len(batch))

        future = asyncio.gather(*(self._run(entity_id, entry) for entity_id, entry in batch))
        self._batches.add(future)
        future.add_done_callback(self._batches.discard)
        await future

    async def drain(self) -> None:
        """Flushes until nothing is queued, parked or in flight."""
        while True:
            if any(not entry.dispatched for entry in self._entries.values()):
                await self.flush()
                continue
            running = [future for future in self._batches if not future.done()]
            if not running:
                break
            await asyncio.wait(running)

    async def close(self) -> None:
        self._cancel_timer()
        await self.drain()

    async def _run(self, entity_id: str, entry: _Entry) -> None:
        try:
            await entry.operation()
        except Exception:
            # The mutator records the failure on the cached entity.
            logger.warning("Sync operation for %s failed", entity_id, exc_info=True)
        finally:
            if self._entries.get(entity_id) is entry:
                del self._entries[entity_id]
            followup = self._followups.pop(entity_id, None)
            if followup is not None:
                self._entries[entity_id] = _Entry(followup)
                self._arm_timer()

    def _arm_timer(self) -> None:
        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._timer_tasks.add(task)
        task.add_done_callback(self._timer_tasks.discard)
