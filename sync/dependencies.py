"""
Dependency wiring for the sync layer.

Remote stores and the mirror are shared per process (they hold
connections); caches, queues and mutators are created per owner by
`open_workspace`.
"""

from __future__ import annotations

import firebase_admin

from shared.types import EntityKind
from sync.config import SyncSettings, get_sync_settings
from sync.firestore_store import FirestoreRemoteStore
from sync.mirror import InMemoryMirror, JsonFileMirror, LocalMirror, RedisMirror
from sync.store import InMemoryRegistry, InMemoryRemoteStore, RemoteStore

_remote_stores: dict[EntityKind, RemoteStore] = {}
_registry: InMemoryRegistry | None = None
_mirror: LocalMirror | None = None


def _ensure_firebase_app(settings: SyncSettings) -> None:
    try:
        firebase_admin.get_app()
    except ValueError:
        options = (
            {"projectId": settings.firebase_project_id}
            if settings.firebase_project_id
            else None
        )
        firebase_admin.initialize_app(options=options)


def get_in_memory_registry() -> InMemoryRegistry:
    global _registry
    if _registry is None:
        _registry = InMemoryRegistry()
    return _registry


def get_remote_store(kind: EntityKind) -> RemoteStore:
    """
    Return the singleton remote store for an entity kind.
    """
    store = _remote_stores.get(kind)
    if store:
        return store

    settings = get_sync_settings()
    if settings.use_in_memory_remote:
        store = InMemoryRemoteStore(kind, get_in_memory_registry())
    else:
        _ensure_firebase_app(settings)
        store = FirestoreRemoteStore(kind)
    _remote_stores[kind] = store
    return store


def get_mirror() -> LocalMirror:
    global _mirror
    if _mirror is not None:
        return _mirror

    settings = get_sync_settings()
    if settings.mirror_backend == "redis" and settings.redis_url:
        _mirror = RedisMirror(url=settings.redis_url, key_prefix=settings.redis_key_prefix)
    elif settings.mirror_backend == "memory":
        _mirror = InMemoryMirror()
    else:
        _mirror = JsonFileMirror(settings.mirror_dir)
    return _mirror


def reset_dependencies() -> None:
    """Forget cached clients (tests)."""
    global _registry, _mirror
    _remote_stores.clear()
    _registry = None
    _mirror = None
