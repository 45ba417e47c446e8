"""
Remote store contract plus an in-memory implementation for tests/dev.

Stores are bound to one entity kind and exchange camelCase documents with
an `ownerId` field; the mutator owns conversion to dataclasses.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

from shared.errors import NotFoundError, PermissionDeniedError, ValidationError
from shared.types import DEFAULT_LIST_ID, EntityKind, utc_now

OnChange = Callable[[list[dict]], None]
Unsubscribe = Callable[[], None]

# (field, descending) per kind.
ORDER_BY: dict[EntityKind, tuple[str, bool]] = {
    EntityKind.TASKS: ("createdAt", True),
    EntityKind.TASK_LISTS: ("createdAt", False),
    EntityKind.NOTES: ("updatedAt", True),
}

PROTECTED_FIELDS = ("id", "ownerId", "createdAt", "updatedAt")


class RemoteStore(Protocol):
    """Async CRUD over one collection, scoped by owner id."""

    kind: EntityKind

    async def list(self, owner_id: str) -> list[dict]:
        ...

    async def get(self, entity_id: str, owner_id: str) -> dict:
        ...

    async def create(self, draft: dict, owner_id: str) -> dict:
        ...

    async def update(self, entity_id: str, patch: dict, owner_id: str) -> dict:
        ...

    async def delete(self, entity_id: str, owner_id: str) -> dict:
        ...

    def subscribe(self, owner_id: str, on_change: OnChange) -> Unsubscribe:
        ...

    async def delete_task_list(
        self,
        list_id: str,
        owner_id: str,
        move_tasks_to_list_id: Optional[str] = None,
    ) -> dict:
        ...


def strip_none(data: Any) -> Any:
    """Drops None values so optional fields are never written as nulls.

    Applies to nested maps too, such as the steps inside a task.
    """
    if isinstance(data, dict):
        return {key: strip_none(value) for key, value in data.items() if value is not None}
    if isinstance(data, list):
        return [strip_none(item) for item in data]
    return data


def strip_protected(patch: dict) -> dict:
    return {key: value for key, value in patch.items() if key not in PROTECTED_FIELDS}


def sort_documents(kind: EntityKind, documents: list[dict]) -> list[dict]:
    order_field, descending = ORDER_BY[kind]
    return sorted(documents, key=lambda doc: doc[order_field], reverse=descending)


@dataclass
class InMemoryRegistry:
    """Documents for every kind, shared so list deletion can touch tasks."""

    collections: dict[EntityKind, dict[str, dict]] = field(
        default_factory=lambda: {kind: {} for kind in EntityKind}
    )
    listeners: list[tuple[EntityKind, str, OnChange]] = field(default_factory=list)
    _last_stamp: Optional[datetime] = None

    def stamp(self) -> datetime:
        """Server clock. Strictly increasing so ordering is deterministic."""
        now = utc_now()
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    def reset(self) -> None:
        for documents in self.collections.values():
            documents.clear()
        self.listeners.clear()

    def publish(self, kind: EntityKind, owner_id: str) -> None:
        for listener_kind, listener_owner, on_change in list(self.listeners):
            if listener_kind == kind and listener_owner == owner_id:
                on_change(self.snapshot(kind, owner_id))

    def snapshot(self, kind: EntityKind, owner_id: str) -> list[dict]:
        documents = [
            copy.deepcopy(doc)
            for doc in self.collections[kind].values()
            if doc.get("ownerId") == owner_id
        ]
        return sort_documents(kind, documents)


class InMemoryRemoteStore:
    """Remote store backed by a process-local registry.

    Supports simulated latency and injected failures so sync behaviour can
    be exercised without a network.
    """

    def __init__(
        self, kind: EntityKind, registry: Optional[InMemoryRegistry] = None
    ):
        self.kind = kind
        self.registry = registry or InMemoryRegistry()
        self.latency_seconds: float = 0.0
        self.calls: list[tuple[str, Any]] = []
        self._failures: list[tuple[Callable[[str, dict], bool], Exception]] = []

    @property
    def documents(self) -> dict[str, dict]:
        return self.registry.collections[self.kind]

    def fail_when(
        self, predicate: Callable[[str, dict], bool], error: Exception
    ) -> None:
        """Raises error for every call where predicate(operation, payload) holds."""
        self._failures.append((predicate, error))

    def clear_failures(self) -> None:
        self._failures.clear()

    def calls_to(self, operation: str) -> list[Any]:
        return [payload for name, payload in self.calls if name == operation]

    async def _enter(self, operation: str, payload: dict) -> None:
        self.calls.append((operation, copy.deepcopy(payload)))
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        for predicate, error in self._failures:
            if predicate(operation, payload):
                raise error

    def _owned(self, entity_id: str, owner_id: str, kind: EntityKind | None = None) -> dict:
        kind = kind or self.kind
        document = self.registry.collections[kind].get(entity_id)
        if document is None:
            raise NotFoundError(kind, entity_id)
        if document.get("ownerId") != owner_id:
            raise PermissionDeniedError(kind, entity_id)
        return document

    async def list(self, owner_id: str) -> list[dict]:
        await self._enter("list", {"ownerId": owner_id})
        return self.registry.snapshot(self.kind, owner_id)

    async def get(self, entity_id: str, owner_id: str) -> dict:
        await self._enter("get", {"id": entity_id, "ownerId": owner_id})
        return copy.deepcopy(self._owned(entity_id, owner_id))

    async def create(self, draft: dict, owner_id: str) -> dict:
        await self._enter("create", draft)
        now = self.registry.stamp()
        document = {
            **strip_none(strip_protected(copy.deepcopy(draft))),
            "id": uuid.uuid4().hex,
            "ownerId": owner_id,
            "createdAt": now,
            "updatedAt": now,
        }
        self.documents[document["id"]] = document
        self.registry.publish(self.kind, owner_id)
        return copy.deepcopy(document)

    async def update(self, entity_id: str, patch: dict, owner_id: str) -> dict:
        await self._enter("update", {"id": entity_id, **patch})
        document = self._owned(entity_id, owner_id)
        for key, value in strip_protected(copy.deepcopy(patch)).items():
            if value is None:
                document.pop(key, None)
            else:
                document[key] = strip_none(value)
        document["updatedAt"] = self.registry.stamp()
        self.registry.publish(self.kind, owner_id)
        return copy.deepcopy(document)

    async def delete(self, entity_id: str, owner_id: str) -> dict:
        await self._enter("delete", {"id": entity_id})
        self._owned(entity_id, owner_id)
        del self.documents[entity_id]
        self.registry.publish(self.kind, owner_id)
        return {"success": True}

    def subscribe(self, owner_id: str, on_change: OnChange) -> Unsubscribe:
        listener = (self.kind, owner_id, on_change)
        self.registry.listeners.append(listener)
        on_change(self.registry.snapshot(self.kind, owner_id))

        def unsubscribe() -> None:
            if listener in self.registry.listeners:
                self.registry.listeners.remove(listener)

        return unsubscribe

    async def delete_task_list(
        self,
        list_id: str,
        owner_id: str,
        move_tasks_to_list_id: Optional[str] = None,
    ) -> dict:
        if self.kind != EntityKind.TASK_LISTS:
            raise ValidationError("delete_task_list needs a task list store")
        await self._enter(
            "delete_task_list",
            {"id": list_id, "moveTasksToListId": move_tasks_to_list_id},
        )
        task_list = self._owned(list_id, owner_id)
        if task_list.get("isDefault") or list_id == DEFAULT_LIST_ID:
            raise ValidationError("The default list cannot be deleted")
        if move_tasks_to_list_id is not None:
            if move_tasks_to_list_id == list_id:
                raise ValidationError("Tasks must move to a different list")
            self._owned(move_tasks_to_list_id, owner_id)

        tasks = self.registry.collections[EntityKind.TASKS]
        now = self.registry.stamp()
        for task_id, task in list(tasks.items()):
            if task.get("ownerId") != owner_id or task.get("listId") != list_id:
                continue
            if move_tasks_to_list_id is not None:
                task["listId"] = move_tasks_to_list_id
                task["updatedAt"] = now
            else:
                del tasks[task_id]
        del self.documents[list_id]
        self.registry.publish(EntityKind.TASKS, owner_id)
        self.registry.publish(self.kind, owner_id)
        return {"success": True}
