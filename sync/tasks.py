"""
Task operations on top of the optimistic mutator: toggles, steps and filters.

Steps travel inside their task, so every step operation is an update of
the task's `steps` field with `order_index` renumbered to 0..n-1.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime
from typing import Iterable, Literal, Optional

from shared.errors import NotFoundError, ValidationError
from shared.filters import TaskFilter, filter_tasks
from shared.types import Step, Task, TaskList, is_placeholder_id, utc_now
from sync.mutator import OptimisticMutator

logger = logging.getLogger(__name__)

STEP_FIELDS = frozenset({"title", "completed", "due_date", "assignee"})


def ordered_steps(task: Task) -> list[Step]:
    return sorted(task.steps, key=lambda step: step.order_index)


def renumber(steps: Iterable[Step]) -> list[Step]:
    """Returns copies of steps with dense, zero-based order indexes."""
    return [
        step if step.order_index == index else dataclasses.replace(step, order_index=index)
        for index, step in enumerate(steps)
    ]


def new_step(title: str, **fields) -> Step:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Step title is required")
    now = utc_now()
    return Step(id=uuid.uuid4().hex, title=title, created_at=now, updated_at=now, **fields)


class OptimisticTasks:
    def __init__(self, mutator: OptimisticMutator[Task]):
        self.mutator = mutator
        self._lists: Optional[OptimisticMutator[TaskList]] = None

    def link_lists(self, lists: OptimisticMutator[TaskList]) -> None:
        """Keeps task listIds pointing at server list ids.

        Outgoing documents wait for a placeholder list to be created, and
        cached tasks follow the list once its server id is known.
        """
        self._lists = lists
        self.mutator.resolve_references = self._resolve_list_id
        lists.add_resolution_listener(self._follow_list)

    async def _resolve_list_id(self, document: dict) -> dict:
        list_id = document.get("listId")
        if self._lists is None or not list_id or not is_placeholder_id(list_id):
            return document
        task_list = await self._lists.wait_settled(list_id)
        if is_placeholder_id(task_list.id):
            raise ValidationError(f"List {list_id} has not been saved yet")
        return {**document, "listId": task_list.id}

    def _follow_list(self, placeholder_id: str, server_id: str) -> None:
        moved = self.mutator.rewrite_field("list_id", placeholder_id, server_id)
        if moved:
            logger.debug("Moved %d task(s) from list %s to %s", moved, placeholder_id, server_id)

    @property
    def tasks(self) -> list[Task]:
        return self.mutator.entities()

    def get(self, task_id: str) -> Task:
        task = self.mutator.get(task_id)
        if task is None:
            raise NotFoundError(self.mutator.kind, task_id)
        return task

    def filtered(self, task_filter: TaskFilter) -> list[Task]:
        return filter_tasks(self.tasks, task_filter)

    def create_task(
        self,
        title: str,
        list_id: str,
        *,
        completed: bool = False,
        important: bool = False,
        notes: Optional[str] = None,
        due_date: Optional[datetime] = None,
        steps: Optional[Iterable[Step]] = None,
    ) -> Task:
        return self.mutator.create(
            {
                "title": (title or "").strip(),
                "list_id": list_id,
                "completed": completed,
                "important": important,
                "notes": notes,
                "due_date": due_date,
                "steps": renumber(steps or []),
            }
        )

    def update_task(self, task_id: str, **changes) -> Task:
        if "title" in changes:
            changes["title"] = (changes["title"] or "").strip()
        if "steps" in changes:
            changes["steps"] = renumber(changes["steps"])
        return self.mutator.update(task_id, changes)

    def delete_task(self, task_id: str) -> None:
        self.mutator.delete(task_id)

    def toggle_completion(self, task_id: str) -> Task:
        return self.mutator.toggle(task_id, "completed")

    def toggle_importance(self, task_id: str) -> Task:
        return self.mutator.toggle(task_id, "important")

    # Steps.

    def _set_steps(self, task_id: str, steps: list[Step]) -> Task:
        return self.mutator.update(task_id, {"steps": renumber(steps)})

    def _step_position(self, steps: list[Step], step_id: str) -> int:
        for index, step in enumerate(steps):
            if step.id == step_id:
                return index
        raise NotFoundError("step", step_id)

    def add_step(
        self,
        task_id: str,
        title: str,
        *,
        due_date: Optional[datetime] = None,
        assignee: Optional[str] = None,
    ) -> Step:
        steps = ordered_steps(self.get(task_id))
        step = new_step(
            title, order_index=len(steps), due_date=due_date, assignee=assignee
        )
        self._set_steps(task_id, steps + [step])
        return step

    def update_step(self, task_id: str, step_id: str, **changes) -> Step:
        unknown = sorted(set(changes) - STEP_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown step field(s): {', '.join(unknown)}")
        if "title" in changes:
            changes["title"] = (changes["title"] or "").strip()
            if not changes["title"]:
                raise ValidationError("Step title is required")
        steps = ordered_steps(self.get(task_id))
        position = self._step_position(steps, step_id)
        steps[position] = dataclasses.replace(
            steps[position], **changes, updated_at=utc_now()
        )
        self._set_steps(task_id, steps)
        return steps[position]

    def toggle_step(self, task_id: str, step_id: str) -> Step:
        steps = ordered_steps(self.get(task_id))
        step = steps[self._step_position(steps, step_id)]
        return self.update_step(task_id, step_id, completed=not step.completed)

    def remove_step(self, task_id: str, step_id: str) -> None:
        steps = ordered_steps(self.get(task_id))
        del steps[self._step_position(steps, step_id)]
        self._set_steps(task_id, steps)

    def move_step(
        self, task_id: str, step_id: str, direction: Literal["up", "down"]
    ) -> None:
        """Swaps a step with its neighbour. No-op at either end."""
        steps = ordered_steps(self.get(task_id))
        position = self._step_position(steps, step_id)
        target = position - 1 if direction == "up" else position + 1
        if target < 0 or target >= len(steps):
            return
        steps[position], steps[target] = steps[target], steps[position]
        self._set_steps(task_id, steps)

    def reorder_steps(self, task_id: str, step_ids: list[str]) -> None:
        steps = {step.id: step for step in self.get(task_id).steps}
        if sorted(step_ids) != sorted(steps):
            raise ValidationError("step_ids must list every step exactly once")
        self._set_steps(task_id, [steps[step_id] for step_id in step_ids])

    # Effects of list deletion, already persisted by the list batch.

    def reassign_list(self, list_ids: Iterable[str], new_list_id: str) -> int:
        list_ids = set(list_ids)
        moved = [task for task in self.tasks if task.list_id in list_ids]
        for task in moved:
            self.mutator.apply_remote_change(task.id, {"list_id": new_list_id})
        return len(moved)

    def drop_list(self, list_ids: Iterable[str]) -> int:
        list_ids = set(list_ids)
        dropped = [task for task in self.tasks if task.list_id in list_ids]
        for task in dropped:
            self.mutator.apply_remote_removal(task.id)
        return len(dropped)
