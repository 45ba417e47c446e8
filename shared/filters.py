# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import StrEnum
from typing import Iterable, Optional

from shared.types import Task

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


class DueFilter(StrEnum):
    TODAY = "today"
    UPCOMING = "upcoming"
    OVERDUE = "overdue"


class SortBy(StrEnum):
    CREATED_AT = "createdAt"
    DUE_DATE = "dueDate"
    IMPORTANCE = "importance"
    ALPHABETICAL = "alphabetical"


@dataclass
class TaskFilter:
    search: str = ""
    completed: bool = False
    important: bool = False
    due: Optional[DueFilter] = None
    sort_by: SortBy = SortBy.CREATED_AT
    list_id: Optional[str] = None


def _matches_due(task: Task, due: DueFilter, start_of_today: datetime) -> bool:
    if task.due_date is None:
        return False
    if due == DueFilter.TODAY:
        return start_of_today <= task.due_date < start_of_today + timedelta(days=1)
    if due == DueFilter.UPCOMING:
        return task.due_date >= start_of_today
    if due == DueFilter.OVERDUE:
        return task.due_date < start_of_today and not task.completed
    return True


def _sort_key(task: Task, sort_by: SortBy):
    # Incomplete tasks always come first.
    if sort_by == SortBy.DUE_DATE:
        return (task.completed, task.due_date is None, task.due_date or _FAR_FUTURE)
    if sort_by == SortBy.IMPORTANCE:
        return (task.completed, not task.important)
    if sort_by == SortBy.ALPHABETICAL:
        return (task.completed, task.title.casefold())
    return (task.completed, -task.created_at.timestamp())


def filter_tasks(
    tasks: Iterable[Task],
    task_filter: TaskFilter,
    *,
    today: date | None = None,
) -> list[Task]:
    """Applies the list/search/flag/due filters and returns sorted tasks."""
    today = today or datetime.now(timezone.utc).date()
    start_of_today = datetime.combine(today, time.min, tzinfo=timezone.utc)
    search = task_filter.search.lower()

    selected = []
    for task in tasks:
        if task_filter.list_id and task.list_id != task_filter.list_id:
            continue
        if search and not (
            search in task.title.lower()
            or (task.notes and search in task.notes.lower())
        ):
            continue
        if task_filter.completed and not task.completed:
            continue
        if task_filter.important and not task.important:
            continue
        if task_filter.due and not _matches_due(task, task_filter.due, start_of_today):
            continue
        selected.append(task)

    # sorted() is stable, so ties keep cache order.
    return sorted(selected, key=lambda task: _sort_key(task, task_filter.sort_by))
