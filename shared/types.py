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

import itertools
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any, ClassVar, List, Optional, Type, TypeVar, Union

from dacite import Config, from_dict

from shared.json_utils import convert_keys

DEFAULT_LIST_ID = "default"
DEFAULT_LIST_NAME = "Tarefas"
DEFAULT_LIST_COLOR = "#3B82F6"

PLACEHOLDER_PREFIX = "optimistic-"
LOCAL_ID_PREFIX = "local-"

_placeholder_counter = itertools.count(1)


class SyncStatus(StrEnum):
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class EntityKind(StrEnum):
    """Entity kinds. Values double as remote collection names."""

    TASKS = "tasks"
    TASK_LISTS = "taskLists"
    NOTES = "notes"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_placeholder_id() -> str:
    """Returns a client-side id that can never collide with a server id."""
    return f"{PLACEHOLDER_PREFIX}{next(_placeholder_counter)}-{uuid.uuid4().hex[:8]}"


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


def is_placeholder_id(entity_id: str) -> bool:
    """True for ids that have not been persisted remotely yet."""
    return entity_id.startswith(PLACEHOLDER_PREFIX) or entity_id.startswith(
        LOCAL_ID_PREFIX
    )


def parse_timestamp(value: Any) -> datetime:
    """Normalizes stored timestamp values into timezone-aware datetimes.

    Accepts datetimes (including Firestore's DatetimeWithNanoseconds),
    ISO-8601 strings, dates and epoch seconds.
    """
    if value is None:
        # Pending server timestamps surface as None in local snapshots.
        return utc_now()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        return parse_timestamp(datetime.fromisoformat(value))
    raise TypeError(f"Unsupported timestamp value: {value!r}")


@dataclass
class Step:
    id: str
    title: str
    completed: bool = False
    order_index: int = 0
    due_date: Optional[datetime] = None
    assignee: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class Task:
    KIND: ClassVar[EntityKind] = EntityKind.TASKS
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("title", "list_id")

    id: str
    owner_id: str
    title: str
    list_id: str
    completed: bool = False
    important: bool = False
    notes: Optional[str] = None
    due_date: Optional[datetime] = None
    steps: List[Step] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class TaskList:
    KIND: ClassVar[EntityKind] = EntityKind.TASK_LISTS
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("name",)

    id: str
    owner_id: str
    name: str
    color: str = DEFAULT_LIST_COLOR
    icon: Optional[str] = None
    is_default: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def deletable(self) -> bool:
        return not (self.is_default or self.id == DEFAULT_LIST_ID)


@dataclass
class Note:
    KIND: ClassVar[EntityKind] = EntityKind.NOTES
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("title",)

    id: str
    owner_id: str
    title: str
    content: str = ""
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


Entity = Union[Task, TaskList, Note]
EntityT = TypeVar("EntityT", Task, TaskList, Note)

ENTITY_TYPES: dict[EntityKind, Type] = {
    EntityKind.TASKS: Task,
    EntityKind.TASK_LISTS: TaskList,
    EntityKind.NOTES: Note,
}

_DACITE_CONFIG = Config(type_hooks={datetime: parse_timestamp}, check_types=False)


def entity_from_dict(entity_type: Type[EntityT], data: dict) -> EntityT:
    """Builds an entity dataclass from a camelCase document."""
    return from_dict(
        data_class=entity_type,
        data=convert_keys(data, "camel_to_snake"),
        config=_DACITE_CONFIG,
    )


def entity_to_dict(entity: Entity, *, json_safe: bool = False) -> dict:
    """Converts an entity into its camelCase document form.

    With json_safe, datetimes become ISO-8601 strings.
    """
    data = convert_keys(asdict(entity), "snake_to_camel")
    if json_safe:
        return _isoformat_values(data)
    return data


def _isoformat_values(data: Any) -> Any:
    if isinstance(data, dict):
        return {key: _isoformat_values(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_isoformat_values(item) for item in data]
    if isinstance(data, datetime):
        return data.isoformat()
    return data
