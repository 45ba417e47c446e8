"""
Firestore implementation of the remote store contract.

Documents live in the `tasks`, `taskLists` and `notes` collections and are
owned through a `userId` field. The Firestore SDK is blocking, so every
call runs in a worker thread via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from firebase_admin import firestore
from google.api_core import exceptions
from google.cloud.firestore_v1 import DELETE_FIELD, SERVER_TIMESTAMP, Query
from google.cloud.firestore_v1.base_query import FieldFilter

from shared.errors import (
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from shared.types import DEFAULT_LIST_ID, EntityKind
from sync.store import ORDER_BY, OnChange, Unsubscribe, strip_none, strip_protected

logger = logging.getLogger(__name__)

OWNER_FIELD = "userId"


class FirestoreRemoteStore:
    """Remote store for one entity kind backed by a Firestore collection."""

    def __init__(self, kind: EntityKind, client: Any = None):
        self.kind = kind
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = firestore.client()
        return self._client

    def _collection(self, kind: Optional[EntityKind] = None):
        return self.client.collection(str(kind or self.kind))

    def _owner_query(self, owner_id: str):
        order_field, descending = ORDER_BY[self.kind]
        return (
            self._collection()
            .where(filter=FieldFilter(OWNER_FIELD, "==", owner_id))
            .order_by(
                order_field,
                direction=Query.DESCENDING if descending else Query.ASCENDING,
            )
        )

    @staticmethod
    def _to_document(snapshot) -> dict:
        data = snapshot.to_dict() or {}
        owner_id = data.pop(OWNER_FIELD, None)
        return {**data, "id": snapshot.id, "ownerId": owner_id}

    def _owned_snapshot(
        self, entity_id: str, owner_id: str, kind: Optional[EntityKind] = None
    ):
        kind = kind or self.kind
        snapshot = self._collection(kind).document(entity_id).get()
        if not snapshot.exists:
            raise NotFoundError(kind, entity_id)
        if (snapshot.to_dict() or {}).get(OWNER_FIELD) != owner_id:
            raise PermissionDeniedError(kind, entity_id)
        return snapshot

    async def _call(self, func: Callable, *args, entity_id: str = "") -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except exceptions.NotFound as e:
            raise NotFoundError(self.kind, entity_id) from e
        except exceptions.PermissionDenied as e:
            raise PermissionDeniedError(self.kind, entity_id) from e
        except (exceptions.GoogleAPICallError, exceptions.RetryError) as e:
            logger.warning("Firestore %s call failed: %s", self.kind, e)
            raise NetworkError(str(e)) from e

    # Blocking implementations, run off the event loop.

    def _list_sync(self, owner_id: str) -> list[dict]:
        return [self._to_document(snapshot) for snapshot in self._owner_query(owner_id).stream()]

    def _get_sync(self, entity_id: str, owner_id: str) -> dict:
        return self._to_document(self._owned_snapshot(entity_id, owner_id))

    def _create_sync(self, draft: dict, owner_id: str) -> dict:
        data = strip_none(strip_protected(draft))
        data[OWNER_FIELD] = owner_id
        data["createdAt"] = SERVER_TIMESTAMP
        data["updatedAt"] = SERVER_TIMESTAMP
        doc_ref = self._collection().document()
        doc_ref.set(data)
        return self._to_document(doc_ref.get())

    def _update_sync(self, entity_id: str, patch: dict, owner_id: str) -> dict:
        snapshot = self._owned_snapshot(entity_id, owner_id)
        data = {
            key: DELETE_FIELD if value is None else strip_none(value)
            for key, value in strip_protected(patch).items()
            if key != OWNER_FIELD
        }
        data["updatedAt"] = SERVER_TIMESTAMP
        snapshot.reference.update(data)
        return self._to_document(snapshot.reference.get())

    def _delete_sync(self, entity_id: str, owner_id: str) -> dict:
        snapshot = self._owned_snapshot(entity_id, owner_id)
        snapshot.reference.delete()
        return {"success": True}

    def _delete_task_list_sync(
        self, list_id: str, owner_id: str, move_tasks_to_list_id: Optional[str]
    ) -> dict:
        list_snapshot = self._owned_snapshot(list_id, owner_id)
        if (list_snapshot.to_dict() or {}).get("isDefault") or list_id == DEFAULT_LIST_ID:
            raise ValidationError("The default list cannot be deleted")
        if move_tasks_to_list_id is not None:
            if move_tasks_to_list_id == list_id:
                raise ValidationError("Tasks must move to a different list")
            self._owned_snapshot(move_tasks_to_list_id, owner_id)

        tasks = (
            self._collection(EntityKind.TASKS)
            .where(filter=FieldFilter(OWNER_FIELD, "==", owner_id))
            .where(filter=FieldFilter("listId", "==", list_id))
            .stream()
        )
        # One batch so tasks and their list change atomically.
        batch = self.client.batch()
        for task in tasks:
            if move_tasks_to_list_id is not None:
                batch.update(
                    task.reference,
                    {"listId": move_tasks_to_list_id, "updatedAt": SERVER_TIMESTAMP},
                )
            else:
                batch.delete(task.reference)
        batch.delete(list_snapshot.reference)
        batch.commit()
        return {"success": True}

    # RemoteStore interface.

    async def list(self, owner_id: str) -> list[dict]:
        return await self._call(self._list_sync, owner_id)

    async def get(self, entity_id: str, owner_id: str) -> dict:
        return await self._call(self._get_sync, entity_id, owner_id, entity_id=entity_id)

    async def create(self, draft: dict, owner_id: str) -> dict:
        return await self._call(self._create_sync, draft, owner_id)

    async def update(self, entity_id: str, patch: dict, owner_id: str) -> dict:
        return await self._call(
            self._update_sync, entity_id, patch, owner_id, entity_id=entity_id
        )

    async def delete(self, entity_id: str, owner_id: str) -> dict:
        return await self._call(self._delete_sync, entity_id, owner_id, entity_id=entity_id)

    def subscribe(self, owner_id: str, on_change: OnChange) -> Unsubscribe:
        """Pushes the owner's full collection on every change.

        on_change runs on a Firestore watch thread, not the event loop.
        """

        def on_snapshot(snapshots, changes, read_time):
            on_change([self._to_document(snapshot) for snapshot in snapshots])

        watch = self._owner_query(owner_id).on_snapshot(on_snapshot)
        return watch.unsubscribe

    async def delete_task_list(
        self,
        list_id: str,
        owner_id: str,
        move_tasks_to_list_id: Optional[str] = None,
    ) -> dict:
        if self.kind != EntityKind.TASK_LISTS:
            raise ValidationError("delete_task_list needs a task list store")
        return await self._call(
            self._delete_task_list_sync,
            list_id,
            owner_id,
            move_tasks_to_list_id,
            entity_id=list_id,
        )
