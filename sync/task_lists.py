"""
Task list operations, including the batch delete that reassigns or
cascades a list's tasks.
"""

from __future__ import annotations

import logging
from typing import Optional

from shared.errors import NotFoundError, ValidationError
from shared.types import DEFAULT_LIST_COLOR, DEFAULT_LIST_NAME, TaskList
from sync.mutator import OptimisticMutator
from sync.tasks import OptimisticTasks

logger = logging.getLogger(__name__)

ALL_LISTS = "all"


class OptimisticTaskLists:
    """Lists for one owner. Keeps the linked task cache consistent on delete."""

    def __init__(
        self,
        mutator: OptimisticMutator[TaskList],
        tasks: Optional[OptimisticTasks] = None,
    ):
        self.mutator = mutator
        self.tasks = tasks
        self.active_list_id = ALL_LISTS
        if tasks is not None:
            tasks.link_lists(mutator)
        mutator.add_resolution_listener(self._follow_active_list)

    def _follow_active_list(self, placeholder_id: str, server_id: str) -> None:
        if self.active_list_id == placeholder_id:
            self.active_list_id = server_id

    @property
    def lists(self) -> list[TaskList]:
        return self.mutator.entities()

    @property
    def default_list(self) -> Optional[TaskList]:
        for task_list in self.lists:
            if not task_list.deletable:
                return task_list
        return None

    def get(self, list_id: str) -> TaskList:
        task_list = self.mutator.get(list_id)
        if task_list is None:
            raise NotFoundError(self.mutator.kind, list_id)
        return task_list

    def select(self, list_id: str) -> None:
        if list_id != ALL_LISTS:
            self.get(list_id)
        self.active_list_id = list_id

    def create_list(
        self,
        name: str,
        *,
        color: str = DEFAULT_LIST_COLOR,
        icon: Optional[str] = None,
        is_default: bool = False,
    ) -> TaskList:
        return self.mutator.create(
            {
                "name": (name or "").strip(),
                "color": color or DEFAULT_LIST_COLOR,
                "icon": icon,
                "is_default": is_default,
            }
        )

    def ensure_default_list(self) -> TaskList:
        """Returns the owner's default list, creating it when missing."""
        existing = self.default_list
        if existing is not None:
            return existing
        return self.create_list(DEFAULT_LIST_NAME, is_default=True)

    def update_list(self, list_id: str, **changes) -> TaskList:
        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
        if "is_default" in changes and changes["is_default"] != self.get(list_id).is_default:
            raise ValidationError("The default list cannot be changed")
        return self.mutator.update(list_id, changes)

    def delete_list(
        self, list_id: str, move_tasks_to_list_id: Optional[str] = None
    ) -> None:
        """Deletes a list, moving its tasks to another list or deleting them.

        Raises:
            ValidationError: The list is the default list, or the target is
                the list itself or is being deleted.
            NotFoundError: The list or the target list is not cached.
        """
        task_list = self.get(list_id)
        if not task_list.deletable:
            raise ValidationError("The default list cannot be deleted")
        if move_tasks_to_list_id is not None:
            target = self.get(move_tasks_to_list_id)
            if target.id == task_list.id:
                raise ValidationError("Tasks must move to a different list")
            entry = self.mutator.cache.get(target.id)
            if entry is not None and entry.is_deleting:
                raise ValidationError(f"List {target.id} is being deleted")

        deleted_ids = {list_id, task_list.id}

        async def remote_delete(server_id: str) -> dict:
            target_id = None
            if move_tasks_to_list_id is not None:
                target_id = (await self.mutator.wait_settled(move_tasks_to_list_id)).id
            return await self.mutator.remote.delete_task_list(
                server_id, self.mutator.owner_id, target_id
            )

        def on_deleted(server_id: str) -> None:
            deleted_ids.add(server_id)
            if self.tasks is not None:
                if move_tasks_to_list_id is not None:
                    target_id = self.mutator.resolve_id(move_tasks_to_list_id)
                    moved = self.tasks.reassign_list(deleted_ids, target_id)
                    logger.debug("Moved %d task(s) to list %s", moved, target_id)
                else:
                    dropped = self.tasks.drop_list(deleted_ids)
                    logger.debug("Dropped %d task(s) with list %s", dropped, server_id)
            if self.active_list_id in deleted_ids:
                self.active_list_id = ALL_LISTS

        self.mutator.delete(list_id, remote_delete=remote_delete, on_deleted=on_deleted)
