"""
Optimistic mutator: applies mutations to the entity cache immediately and
reconciles them with the remote store in the background.

Entity lifecycle:
    create:  pending -> syncing -> synced (placeholder replaced by server id)
                                 -> error  (evicted after a grace period)
    update:  pending -> syncing -> synced | error (optimistic values kept)
    delete:  deleting -> removed | error (entity restored)

One mutator serves one (owner, kind) pair and is the only writer of its
cache and queue.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    Optional,
    Type,
    TypeVar,
)

from dacite import DaciteError

from shared.errors import (
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    TaskpadError,
    ValidationError,
)
from shared.json_utils import convert_keys
from shared.types import (
    ENTITY_TYPES,
    EntityKind,
    EntityT,
    SyncStatus,
    entity_from_dict,
    entity_to_dict,
    is_placeholder_id,
    new_placeholder_id,
    utc_now,
)
from sync.cache import CachedEntity, EntityCache, Observer
from sync.config import SyncSettings, get_sync_settings
from sync.mirror import LocalMirror
from sync.queue import SyncQueue
from sync.store import RemoteStore

logger = logging.getLogger(__name__)

SYNC_ERROR_MESSAGE = "Falha ao sincronizar"

PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at"})

T = TypeVar("T")

RemoteDelete = Callable[[str], Awaitable[Any]]
OnDeleted = Callable[[str], None]
ResolutionListener = Callable[[str, str], None]
ReferenceResolver = Callable[[dict], Awaitable[dict]]


@dataclasses.dataclass
class _DeleteHooks:
    remote_delete: Optional[RemoteDelete] = None
    on_deleted: Optional[OnDeleted] = None


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def _error_message(error: BaseException) -> str:
    detail = str(error)
    return f"{SYNC_ERROR_MESSAGE}: {detail}" if detail else SYNC_ERROR_MESSAGE


class OptimisticMutator(Generic[EntityT]):
    """Create/update/delete with immediate local effect and deferred sync."""

    def __init__(
        self,
        kind: EntityKind,
        owner_id: str,
        remote: RemoteStore,
        *,
        entity_type: Optional[Type[EntityT]] = None,
        cache: Optional[EntityCache[EntityT]] = None,
        queue: Optional[SyncQueue] = None,
        mirror: Optional[LocalMirror] = None,
        settings: Optional[SyncSettings] = None,
    ):
        if not owner_id:
            raise ValidationError("owner_id is required")
        self.kind = kind
        self.owner_id = owner_id
        self.remote = remote
        self.entity_type = entity_type or ENTITY_TYPES[kind]
        self.settings = settings or get_sync_settings()
        self.cache = cache or EntityCache(newest_first=kind != EntityKind.TASK_LISTS)
        self.queue = queue or SyncQueue(self.settings.debounce_seconds)
        self.mirror = mirror

        self._field_names = {f.name for f in dataclasses.fields(self.entity_type)}
        # Edits not yet sent, keyed by entity id.
        self._patches: dict[str, dict] = {}
        # Placeholders whose delete waits for their in-flight create.
        self._pending_deletes: dict[str, _DeleteHooks] = {}
        self._delete_hooks: dict[str, _DeleteHooks] = {}
        self._resolved_ids: dict[str, str] = {}
        self._outcomes: dict[str, asyncio.Future] = {}
        self._in_flight: dict[str, asyncio.Future] = {}
        self._evictions: dict[str, asyncio.TimerHandle] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._resolution_listeners: list[ResolutionListener] = []
        # Rewrites ids inside an outgoing document, e.g. a task's listId.
        self.resolve_references: Optional[ReferenceResolver] = None

    # Reads.

    def list(self) -> list[CachedEntity[EntityT]]:
        return self.cache.list()

    def visible(self) -> list[CachedEntity[EntityT]]:
        return self.cache.visible()

    def entities(self) -> list[EntityT]:
        return self.cache.entities()

    def get(self, entity_id: str) -> Optional[EntityT]:
        entry = self.cache.get(self.resolve_id(entity_id))
        return entry.entity if entry else None

    def resolve_id(self, entity_id: str) -> str:
        """Maps a settled placeholder to its server id."""
        return self._resolved_ids.get(entity_id, entity_id)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        return self.cache.subscribe(observer)

    # Mutations.

    def create(self, draft: dict) -> EntityT:
        """Adds an entity with a placeholder id and queues the remote create.

        Raises:
            ValidationError: A required field is empty or a field is unknown.
        """
        values = {k: v for k, v in draft.items() if k not in PROTECTED_FIELDS}
        self._validate(values, creating=True)
        now = utc_now()
        entity = self.entity_type(
            **values,
            id=new_placeholder_id(),
            owner_id=self.owner_id,
            created_at=now,
            updated_at=now,
        )
        self.cache.upsert(entity, status=SyncStatus.PENDING)
        self._queue_create(entity.id)
        return entity

    def add_local(self, entities: Iterable[EntityT]) -> int:
        """Caches entities that exist nowhere else yet, without syncing them.

        Ids must be placeholders; `push_local` sends them later.
        """
        added = 0
        for entity in entities:
            if not is_placeholder_id(entity.id):
                raise ValidationError(f"{self.kind} {entity.id} is not a local id")
            if entity.owner_id != self.owner_id:
                entity = dataclasses.replace(entity, owner_id=self.owner_id)
            self.cache.upsert(entity, status=SyncStatus.PENDING)
            added += 1
        return added

    def is_local_only(self, entity_id: str) -> bool:
        """True for a cached placeholder whose create was never queued."""
        entry = self.cache.get(entity_id)
        return (
            entry is not None
            and is_placeholder_id(entity_id)
            and entity_id not in self._resolved_ids
            and not entry.failed_create
            and not entry.is_deleting
            and not self.queue.is_queued(entity_id)
            and not self.queue.is_in_flight(entity_id)
        )

    def push_local(self, *, update_existing: bool = False) -> list[str]:
        """Queues remote writes for entities the remote has not seen.

        Local-only placeholders get their create queued. With
        update_existing, every other idle cached entity is written back
        with its cached values.

        Returns:
            The ids whose operations were queued.
        """
        queued = []
        for entry in self.cache.list():
            if self.is_local_only(entry.id):
                self._queue_create(entry.id)
                queued.append(entry.id)
            elif (
                update_existing
                and not is_placeholder_id(entry.id)
                and not entry.is_deleting
                and not self.queue.is_queued(entry.id)
                and not self.queue.is_in_flight(entry.id)
            ):
                values = {
                    f.name: getattr(entry.entity, f.name)
                    for f in dataclasses.fields(self.entity_type)
                    if f.name not in PROTECTED_FIELDS
                }
                self._patches.setdefault(entry.id, {}).update(values)
                self._expect(entry.id)
                self.queue.enqueue(
                    entry.id, functools.partial(self._remote_update, entry.id)
                )
                queued.append(entry.id)
        return queued

    def add_resolution_listener(self, listener: ResolutionListener) -> None:
        """Calls listener(placeholder_id, server_id) whenever a create lands."""
        self._resolution_listeners.append(listener)

    def rewrite_field(self, field_name: str, old_value: Any, new_value: Any) -> int:
        """Swaps a field value in cached entities and unsent edits, locally only."""
        rewritten = 0
        for entry in self.cache.list():
            if getattr(entry.entity, field_name) != old_value:
                continue
            self.cache.upsert(
                dataclasses.replace(entry.entity, **{field_name: new_value}),
                status=entry.sync_status,
                error=entry.error,
                is_deleting=entry.is_deleting,
            )
            rewritten += 1
        for patch in self._patches.values():
            if patch.get(field_name) == old_value:
                patch[field_name] = new_value
        return rewritten

    def update(self, entity_id: str, patch: dict) -> EntityT:
        """Merges patch into the cached entity and queues the remote update.

        Raises:
            NotFoundError: The id is not cached.
            ValidationError: A required field would become empty, a field is
                unknown, or the entity is being deleted.
        """
        entry = self._require(entity_id)
        entity_id = entry.id
        if entry.is_deleting:
            raise ValidationError(f"{self.kind} {entity_id} is being deleted")
        changes = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS}
        self._validate(changes, creating=False)
        if not changes:
            return entry.entity

        updated = dataclasses.replace(
            entry.entity,
            **changes,
            updated_at=max(utc_now(), entry.entity.updated_at),
        )
        self.cache.upsert(updated, status=SyncStatus.PENDING)

        if is_placeholder_id(entity_id):
            if self.queue.is_queued(entity_id):
                # The queued create reads the cached entity when it runs.
                return updated
            if self.queue.is_in_flight(entity_id):
                self._patches.setdefault(entity_id, {}).update(changes)
                self._expect(entity_id)
                return updated
            if not self.is_local_only(entity_id):
                return updated
            # Restored from the mirror or an import: its create was never sent.
            self._queue_create(entity_id)
            return updated

        self._patches.setdefault(entity_id, {}).update(changes)
        self._expect(entity_id)
        self.queue.enqueue(entity_id, functools.partial(self._remote_update, entity_id))
        return updated

    def delete(
        self,
        entity_id: str,
        *,
        remote_delete: Optional[RemoteDelete] = None,
        on_deleted: Optional[OnDeleted] = None,
    ) -> None:
        """Marks the entity as deleting and queues the remote delete.

        The entity stays cached until the remote delete succeeds.

        Args:
            entity_id: Id of a cached entity.
            remote_delete: Replaces remote.delete; called with the server id.
            on_deleted: Called with the id once the entity is gone.

        Raises:
            NotFoundError: The id is not cached.
        """
        entry = self._require(entity_id)
        entity_id = entry.id
        if entry.is_deleting:
            return
        hooks = _DeleteHooks(remote_delete, on_deleted)

        if is_placeholder_id(entity_id):
            if self.queue.is_in_flight(entity_id):
                self._pending_deletes[entity_id] = hooks
                self._patches.pop(entity_id, None)
                self._expect(entity_id)
                self.cache.set_deleting(entity_id, True)
                return
            # Never reached the server: drop it locally.
            self.queue.cancel(entity_id)
            self._patches.pop(entity_id, None)
            self.cache.remove(entity_id)
            self._settle(entity_id, error=NotFoundError(self.kind, entity_id))
            if on_deleted is not None:
                on_deleted(entity_id)
            return

        self._patches.pop(entity_id, None)
        self._delete_hooks[entity_id] = hooks
        self._expect(entity_id)
        self.cache.set_deleting(entity_id, True)
        self.queue.enqueue(entity_id, functools.partial(self._remote_delete, entity_id))

    def toggle(self, entity_id: str, field_name: str) -> EntityT:
        entry = self._require(entity_id)
        return self.update(entity_id, {field_name: not getattr(entry.entity, field_name)})

    def apply_remote_change(self, entity_id: str, changes: dict) -> None:
        """Applies changes another operation already persisted remotely.

        Nothing is queued. Unsent local edits to the same fields are
        overridden so they cannot undo the remote change.
        """
        entry = self.cache.get(self.resolve_id(entity_id))
        if entry is None:
            return
        pending = self._patches.get(entry.id)
        if pending:
            pending.update({k: v for k, v in changes.items() if k in pending})
        self.cache.upsert(
            dataclasses.replace(entry.entity, **changes),
            status=entry.sync_status,
            error=entry.error,
            is_deleting=entry.is_deleting,
        )

    def apply_remote_removal(self, entity_id: str) -> None:
        """Drops an entity another operation already deleted remotely."""
        entity_id = self.resolve_id(entity_id)
        self.queue.cancel(entity_id)
        self._patches.pop(entity_id, None)
        self.cache.remove(entity_id)

    async def wait_settled(self, entity_id: str) -> EntityT:
        """Waits for the remote outcome of the latest queued operation.

        Returns the confirmed entity, or raises the error that failed it.
        For a placeholder, the outcome is that of its create.
        """
        resolved_id = self.resolve_id(entity_id)
        for key in dict.fromkeys((entity_id, resolved_id)):
            future = self._outcomes.get(key) or self._in_flight.get(key)
            if future is not None:
                entity, error = await asyncio.shield(future)
                if error is not None:
                    raise error
                return entity

        entry = self.cache.get(resolved_id)
        if entry is None:
            raise NotFoundError(self.kind, entity_id)
        if entry.sync_status == SyncStatus.ERROR:
            raise TaskpadError(entry.error or SYNC_ERROR_MESSAGE)
        return entry.entity

    # Remote reads, mirror and subscriptions.

    def seed_from_mirror(self) -> int:
        """Fills an empty cache from the local mirror. Returns entries loaded."""
        if self.mirror is None or len(self.cache):
            return 0
        items = self.mirror.load(self.owner_id, self.kind)
        if not items:
            return 0
        entries = [
            CachedEntity(
                entity=entity,
                sync_status=(
                    SyncStatus.PENDING if is_placeholder_id(entity.id) else SyncStatus.SYNCED
                ),
            )
            for entity in self._entities_from_documents(items)
        ]
        self.cache.reset(entries)
        logger.debug("Seeded %d %s from mirror", len(entries), self.kind)
        return len(entries)

    async def refresh(self) -> list[EntityT]:
        """Loads the owner's entities from the remote store.

        An empty cache is seeded from the mirror first so callers can render
        before the round-trip completes.
        """
        self.seed_from_mirror()
        documents = await self._call_remote(lambda: self.remote.list(self.owner_id))
        self.apply_remote_snapshot(documents)
        return self.cache.entities()

    def apply_remote_snapshot(self, documents: list[dict]) -> None:
        """Replaces the cache with server truth, keeping unsynced local state."""
        server_entries: list[CachedEntity[EntityT]] = []
        for entity in self._entities_from_documents(documents):
            local = self.cache.get(entity.id)
            if local is not None and (
                local.is_deleting
                or local.sync_status in (SyncStatus.PENDING, SyncStatus.SYNCING)
            ):
                server_entries.append(local)
            else:
                server_entries.append(CachedEntity(entity=entity))

        server_ids = {entry.id for entry in server_entries}
        local_only = [
            entry
            for entry in self.cache.list()
            if is_placeholder_id(entry.id)
            and entry.id not in server_ids
            and entry.id not in self._resolved_ids
        ]
        if self.cache.newest_first:
            self.cache.reset(local_only + server_entries)
        else:
            self.cache.reset(server_entries + local_only)
        self.write_mirror()

    def start_subscription(self) -> None:
        """Follows remote changes in real time. Needs a running event loop."""
        if self._unsubscribe is not None:
            return
        loop = asyncio.get_running_loop()

        def on_change(documents: list[dict]) -> None:
            # Firestore calls this from its watch thread.
            try:
                loop.call_soon_threadsafe(self.apply_remote_snapshot, documents)
            except RuntimeError:
                logger.debug("Dropping %s snapshot: event loop closed", self.kind)

        self._unsubscribe = self.remote.subscribe(self.owner_id, on_change)

    def stop_subscription(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def flush(self) -> None:
        await self.queue.flush()

    async def drain(self) -> None:
        await self.queue.drain()

    async def close(self) -> None:
        self.stop_subscription()
        await self.queue.close()
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()

    # Remote operations run by the sync queue.

    async def _remote_create(self, placeholder_id: str) -> None:
        entry = self.cache.get(placeholder_id)
        if entry is None:
            return
        outcome = self._begin(placeholder_id)
        document = self._to_document(entry.entity)
        self._mark(placeholder_id, SyncStatus.SYNCING)
        try:
            if self.resolve_references is not None:
                document = await self.resolve_references(document)
            created = await self._call_remote(
                lambda: self.remote.create(document, self.owner_id)
            )
            server_entity = self._from_document(created)
        except Exception as e:
            logger.warning("Create of %s %s failed: %s", self.kind, placeholder_id, e)
            self._patches.pop(placeholder_id, None)
            self._pending_deletes.pop(placeholder_id, None)
            self._settle(placeholder_id, error=e)
            self._mark(placeholder_id, SyncStatus.ERROR, error=_error_message(e))
            self.cache.set_deleting(placeholder_id, False)
            self._schedule_eviction(placeholder_id)
            self._finish(placeholder_id, outcome, error=e)
            return

        server_id = server_entity.id
        self._resolved_ids[placeholder_id] = server_id
        later = self._outcomes.pop(placeholder_id, None)
        if later is not None:
            self._outcomes[server_id] = later

        if placeholder_id in self._pending_deletes:
            self._delete_hooks[server_id] = self._pending_deletes.pop(placeholder_id)
            self.cache.replace(placeholder_id, server_entity, status=SyncStatus.PENDING)
            self.cache.set_deleting(server_id, True)
            self._expect(server_id)
            self.queue.enqueue(server_id, functools.partial(self._remote_delete, server_id))
        elif placeholder_id in self._patches:
            patch = self._patches.pop(placeholder_id)
            self.cache.replace(
                placeholder_id,
                dataclasses.replace(server_entity, **patch),
                status=SyncStatus.PENDING,
            )
            self._patches.setdefault(server_id, {}).update(patch)
            self._expect(server_id)
            self.queue.enqueue(server_id, functools.partial(self._remote_update, server_id))
        else:
            self.cache.replace(placeholder_id, server_entity, status=SyncStatus.SYNCED)
        logger.debug("Created %s %s as %s", self.kind, placeholder_id, server_id)
        for listener in list(self._resolution_listeners):
            listener(placeholder_id, server_id)
        self._finish(placeholder_id, outcome, entity=server_entity)

    async def _remote_update(self, entity_id: str) -> None:
        patch = self._patches.pop(entity_id, None)
        outcome = self._begin(entity_id)
        if not patch or entity_id not in self.cache:
            self._finish(entity_id, outcome, entity=self.get(entity_id))
            return
        self._mark(entity_id, SyncStatus.SYNCING)
        try:
            document = self._patch_to_document(patch)
            if self.resolve_references is not None:
                document = await self.resolve_references(document)
            updated = await self._call_remote(
                lambda: self.remote.update(entity_id, document, self.owner_id)
            )
            server_entity = self._from_document(updated)
        except Exception as e:
            logger.warning("Update of %s %s failed: %s", self.kind, entity_id, e)
            self._mark(entity_id, SyncStatus.ERROR, error=_error_message(e))
            self._finish(entity_id, outcome, error=e)
            return

        entry = self.cache.get(entity_id)
        if entry is not None:
            newer = self._patches.get(entity_id)
            if newer:
                # Edits made while this update was in flight stay visible.
                self.cache.upsert(
                    dataclasses.replace(server_entity, **newer),
                    status=SyncStatus.PENDING,
                    is_deleting=entry.is_deleting,
                )
            else:
                self.cache.upsert(
                    server_entity,
                    status=entry.sync_status if entry.is_deleting else SyncStatus.SYNCED,
                    is_deleting=entry.is_deleting,
                )
        self._finish(entity_id, outcome, entity=server_entity)

    async def _remote_delete(self, entity_id: str) -> None:
        outcome = self._begin(entity_id)
        hooks = self._delete_hooks.pop(entity_id, None) or _DeleteHooks()
        entry = self.cache.get(entity_id)
        if entry is None:
            self._finish(entity_id, outcome, entity=None)
            return
        if hooks.remote_delete is not None:
            call = functools.partial(hooks.remote_delete, entity_id)
        else:
            call = functools.partial(self.remote.delete, entity_id, self.owner_id)
        try:
            await self._call_remote(call)
        except NotFoundError:
            logger.debug("%s %s was already deleted remotely", self.kind, entity_id)
        except Exception as e:
            logger.warning("Delete of %s %s failed: %s", self.kind, entity_id, e)
            current = self.cache.get(entity_id)
            if current is not None:
                self.cache.upsert(
                    current.entity,
                    status=SyncStatus.ERROR,
                    error=_error_message(e),
                    is_deleting=False,
                )
            self._finish(entity_id, outcome, error=e)
            return
        self.cache.remove(entity_id)
        if hooks.on_deleted is not None:
            hooks.on_deleted(entity_id)
        self._finish(entity_id, outcome, entity=entry.entity)

    async def _call_remote(self, call: Callable[[], Awaitable[T]]) -> T:
        """Runs a remote call with a timeout and bounded retries.

        Only transient failures (NetworkError, timeouts) are retried, with
        exponential backoff.
        """
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(
                    call(), timeout=self.settings.remote_timeout_seconds
                )
            except asyncio.TimeoutError as e:
                error: NetworkError = NetworkError(
                    f"timed out after {self.settings.remote_timeout_seconds}s"
                )
                error.__cause__ = e
            except NetworkError as e:
                error = e
            except (NotFoundError, PermissionDeniedError, ValidationError):
                raise
            if attempt >= self.settings.max_retries:
                raise error
            delay = self.settings.retry_backoff_seconds * (2**attempt)
            attempt += 1
            logger.info(
                "Retrying %s call (%d/%d) in %.2fs: %s",
                self.kind,
                attempt,
                self.settings.max_retries,
                delay,
                error,
            )
            await asyncio.sleep(delay)

    # Helpers.

    def _require(self, entity_id: str) -> CachedEntity[EntityT]:
        entry = self.cache.get(self.resolve_id(entity_id))
        if entry is None or entry.failed_create:
            raise NotFoundError(self.kind, entity_id)
        return entry

    def _validate(self, values: dict, *, creating: bool) -> None:
        unknown = sorted(set(values) - self._field_names)
        if unknown:
            raise ValidationError(f"Unknown {self.kind} field(s): {', '.join(unknown)}")
        for name in self.entity_type.REQUIRED_FIELDS:
            if not creating and name not in values:
                continue
            value = values.get(name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{name} is required")

    def _mark(
        self, entity_id: str, status: SyncStatus, *, error: Optional[str] = None
    ) -> None:
        self.cache.set_status(entity_id, status, error=error)

    def _queue_create(self, placeholder_id: str) -> None:
        self._expect(placeholder_id)
        self.queue.enqueue(
            placeholder_id, functools.partial(self._remote_create, placeholder_id)
        )
        logger.debug("Queued create of %s %s", self.kind, placeholder_id)

    def _expect(self, entity_id: str) -> None:
        future = self._outcomes.get(entity_id)
        if future is None or future.done():
            self._outcomes[entity_id] = asyncio.get_running_loop().create_future()

    def _begin(self, entity_id: str) -> Optional[asyncio.Future]:
        """Moves the queued outcome for an id to in-flight."""
        future = self._outcomes.pop(entity_id, None)
        if future is not None:
            self._in_flight[entity_id] = future
        return future

    def _finish(
        self,
        entity_id: str,
        future: Optional[asyncio.Future],
        *,
        entity: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if future is not None and self._in_flight.get(entity_id) is future:
            del self._in_flight[entity_id]
        self._resolve_outcome(future, entity=entity, error=error)

    def _settle(
        self,
        entity_id: str,
        *,
        entity: Optional[EntityT] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self._resolve_outcome(self._outcomes.pop(entity_id, None), entity=entity, error=error)

    @staticmethod
    def _resolve_outcome(
        future: Optional[asyncio.Future],
        *,
        entity: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        # Results are (entity, error) pairs so an unawaited failure never
        # logs "exception was never retrieved".
        if future is not None and not future.done():
            future.set_result((entity, error))

    def _schedule_eviction(self, placeholder_id: str) -> None:
        loop = asyncio.get_running_loop()
        previous = self._evictions.pop(placeholder_id, None)
        if previous is not None:
            previous.cancel()
        self._evictions[placeholder_id] = loop.call_later(
            self.settings.create_error_grace_seconds, self._evict, placeholder_id
        )

    def _evict(self, placeholder_id: str) -> None:
        self._evictions.pop(placeholder_id, None)
        entry = self.cache.get(placeholder_id)
        if entry is not None and entry.failed_create:
            self.cache.remove(placeholder_id)
            logger.debug("Evicted failed create %s", placeholder_id)

    def _to_document(self, entity: EntityT) -> dict:
        document = entity_to_dict(entity)
        for key in ("id", "ownerId", "createdAt", "updatedAt"):
            document.pop(key, None)
        return document

    @staticmethod
    def _patch_to_document(patch: dict) -> dict:
        return convert_keys({key: _plain(value) for key, value in patch.items()}, "snake_to_camel")

    def _from_document(self, document: dict) -> EntityT:
        return entity_from_dict(self.entity_type, document)

    def _entities_from_documents(self, documents: list[dict]) -> list[EntityT]:
        entities = []
        for document in documents:
            try:
                entities.append(self._from_document(document))
            except (DaciteError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed %s document: %s", self.kind, e)
        return entities

    def write_mirror(self) -> None:
        """Saves the cached entities to the local mirror, if there is one.

        Failed creates are kept so the next reconnect sends them again.
        """
        if self.mirror is None:
            return
        items = [entity_to_dict(entry.entity, json_safe=True) for entry in self.cache.list()]
        self.mirror.save(self.owner_id, self.kind, items)
