"""
Ordered in-memory cache of one entity kind, annotated with sync status.

The cache never performs I/O. The optimistic mutator is its only writer;
views read through `visible()` and get notified through `subscribe()`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Iterator, Optional

from shared.types import EntityT, SyncStatus, is_placeholder_id

logger = logging.getLogger(__name__)


@dataclass
class CachedEntity(Generic[EntityT]):
    """An entity plus client-side sync state. Never persisted remotely."""

    entity: EntityT
    sync_status: SyncStatus = SyncStatus.SYNCED
    is_deleting: bool = False
    error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.entity.id

    @property
    def failed_create(self) -> bool:
        return self.sync_status == SyncStatus.ERROR and is_placeholder_id(
            self.entity.id
        )


Observer = Callable[["EntityCache"], None]


class EntityCache(Generic[EntityT]):
    """Ordered collection keyed by entity id.

    With newest_first, new entries are inserted at the head (tasks, notes);
    otherwise they are appended (task lists).
    """

    def __init__(self, *, newest_first: bool = True):
        self.newest_first = newest_first
        self._entries: dict[str, CachedEntity[EntityT]] = {}
        self._order: list[str] = []
        self._observers: list[Observer] = []

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entries

    def __iter__(self) -> Iterator[CachedEntity[EntityT]]:
        return iter(self.list())

    def list(self) -> list[CachedEntity[EntityT]]:
        return [self._entries[entity_id] for entity_id in self._order]

    def visible(self) -> list[CachedEntity[EntityT]]:
        """All entries except creates that failed and await eviction."""
        return [entry for entry in self.list() if not entry.failed_create]

    def entities(self) -> list[EntityT]:
        return [entry.entity for entry in self.visible()]

    def get(self, entity_id: str) -> Optional[CachedEntity[EntityT]]:
        return self._entries.get(entity_id)

    def upsert(
        self,
        entity: EntityT,
        *,
        status: SyncStatus = SyncStatus.SYNCED,
        error: Optional[str] = None,
        is_deleting: bool = False,
    ) -> CachedEntity[EntityT]:
        entry = CachedEntity(
            entity=entity, sync_status=status, is_deleting=is_deleting, error=error
        )
        if entity.id not in self._entries:
            if self.newest_first:
                self._order.insert(0, entity.id)
            else:
                self._order.append(entity.id)
        self._entries[entity.id] = entry
        self._notify()
        return entry

    def replace(
        self,
        old_id: str,
        entity: EntityT,
        *,
        status: SyncStatus = SyncStatus.SYNCED,
    ) -> CachedEntity[EntityT]:
        """Swaps the entry keyed by old_id for entity, keeping its position.

        If an entry for entity.id already exists (e.g. pushed by a
        subscription first), that entry wins the position and the old one
        is dropped, so one logical entity never appears twice.
        """
        if old_id not in self._entries:
            return self.upsert(entity, status=status)
        if old_id == entity.id:
            return self.upsert(entity, status=status)

        entry = CachedEntity(entity=entity, sync_status=status)
        if entity.id in self._entries:
            self._order.remove(old_id)
        else:
            self._order[self._order.index(old_id)] = entity.id
        del self._entries[old_id]
        self._entries[entity.id] = entry
        self._notify()
        return entry

    def set_status(
        self, entity_id: str, status: SyncStatus, *, error: Optional[str] = None
    ) -> None:
        entry = self._entries.get(entity_id)
        if not entry:
            return
        entry.sync_status = status
        entry.error = error
        self._notify()

    def set_deleting(self, entity_id: str, is_deleting: bool) -> None:
        entry = self._entries.get(entity_id)
        if not entry:
            return
        entry.is_deleting = is_deleting
        self._notify()

    def remove(self, entity_id: str) -> None:
        if entity_id not in self._entries:
            return
        del self._entries[entity_id]
        self._order.remove(entity_id)
        self._notify()

    def reset(self, entries: Iterable[CachedEntity[EntityT]]) -> None:
        """Replaces the whole cache. Entries keep the given order."""
        self._entries = {}
        self._order = []
        for entry in entries:
            if entry.id not in self._entries:
                self._order.append(entry.id)
            self._entries[entry.id] = entry
        self._notify()

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Registers an observer called after every change.

        Returns a function that removes the observer.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self)
            except Exception:
                logger.exception("Cache observer failed")
