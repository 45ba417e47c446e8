"""
Per-owner bundle of the task, task list and note mutators.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from shared.types import EntityKind, Note, Task
from sync.config import SyncSettings, get_sync_settings
from sync.mirror import LocalMirror
from sync.mutator import OptimisticMutator
from sync.notes import OptimisticNotes
from sync.offline import OfflineSyncResult, push_local_entities
from sync.store import RemoteStore
from sync.task_lists import OptimisticTaskLists
from sync.tasks import OptimisticTasks

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    owner_id: str
    tasks: OptimisticTasks
    task_lists: OptimisticTaskLists
    notes: OptimisticNotes

    @property
    def mutators(self) -> tuple[OptimisticMutator, ...]:
        return (self.task_lists.mutator, self.tasks.mutator, self.notes.mutator)

    async def refresh(self) -> None:
        await asyncio.gather(*(mutator.refresh() for mutator in self.mutators))

    def start_subscriptions(self) -> None:
        for mutator in self.mutators:
            mutator.start_subscription()

    def stop_subscriptions(self) -> None:
        for mutator in self.mutators:
            mutator.stop_subscription()

    async def drain(self) -> None:
        await asyncio.gather(*(mutator.drain() for mutator in self.mutators))

    async def close(self) -> None:
        await asyncio.gather(*(mutator.close() for mutator in self.mutators))

    async def sync_offline(
        self, *, update_existing: bool = False
    ) -> dict[EntityKind, OfflineSyncResult]:
        """Pushes entities that exist only on this device.

        Lists go first so tasks created in them are stored with the
        lists' server ids.
        """
        results = {}
        for mutator in self.mutators:
            results[mutator.kind] = await push_local_entities(
                mutator, update_existing=update_existing
            )
        return results

    async def restore(
        self, notes: Iterable[Note], tasks: Iterable[Task]
    ) -> dict[EntityKind, OfflineSyncResult]:
        """Adds imported notes and tasks and creates them remotely.

        Tasks whose list is not cached move to the default list, which is
        created when missing.
        """
        list_ids = {task_list.id for task_list in self.task_lists.lists}
        placed = []
        for task in tasks:
            if task.list_id not in list_ids:
                default_id = self.task_lists.ensure_default_list().id
                list_ids.add(default_id)
                task = dataclasses.replace(task, list_id=default_id)
            placed.append(task)
        self.tasks.mutator.add_local(placed)
        self.notes.mutator.add_local(notes)
        return await self.sync_offline()


def open_workspace(
    owner_id: str,
    *,
    remote_for: Optional[Callable[[EntityKind], RemoteStore]] = None,
    mirror: Optional[LocalMirror] = None,
    settings: Optional[SyncSettings] = None,
) -> Workspace:
    """Builds fresh caches, queues and mutators for one owner.

    Stores and the mirror default to the process-wide ones from
    sync.dependencies.
    """
    if remote_for is None or mirror is None:
        from sync import dependencies

        remote_for = remote_for or dependencies.get_remote_store
        mirror = mirror if mirror is not None else dependencies.get_mirror()
    settings = settings or get_sync_settings()

    def mutator(kind: EntityKind) -> OptimisticMutator:
        return OptimisticMutator(
            kind, owner_id, remote_for(kind), mirror=mirror, settings=settings
        )

    tasks = OptimisticTasks(mutator(EntityKind.TASKS))
    task_lists = OptimisticTaskLists(mutator(EntityKind.TASK_LISTS), tasks)
    notes = OptimisticNotes(mutator(EntityKind.NOTES))
    logger.debug("Opened workspace for %s", owner_id)
    return Workspace(owner_id=owner_id, tasks=tasks, task_lists=task_lists, notes=notes)
