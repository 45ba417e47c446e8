"""
Local mirror: a best-effort snapshot of the last known-good entity set.

One serialized blob per (owner, kind), overwritten wholesale after every
successful remote read. Failures are logged and never raised; the mirror
is not a source of truth.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from shared.types import EntityKind

logger = logging.getLogger(__name__)


def mirror_key(owner_id: str, kind: EntityKind, prefix: str = "taskpad") -> str:
    return f"{prefix}:{owner_id}:{kind}"


class LocalMirror(Protocol):
    """Interface for local snapshot persistence."""

    def load(self, owner_id: str, kind: EntityKind) -> Optional[list[dict]]:
        ...

    def save(self, owner_id: str, kind: EntityKind, items: list[dict]) -> None:
        ...

    def clear(self, owner_id: str, kind: EntityKind) -> None:
        ...


def _decode(raw: str | bytes, key: str) -> Optional[list[dict]]:
    try:
        items = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring corrupt mirror blob %s", key)
        return None
    if not isinstance(items, list):
        logger.warning("Ignoring mirror blob %s: expected a list", key)
        return None
    return items


@dataclass
class InMemoryMirror:
    """Dict-backed mirror for tests/dev. Stores JSON text like the others."""

    blobs: dict[str, str] = field(default_factory=dict)

    def load(self, owner_id: str, kind: EntityKind) -> Optional[list[dict]]:
        key = mirror_key(owner_id, kind)
        raw = self.blobs.get(key)
        return None if raw is None else _decode(raw, key)

    def save(self, owner_id: str, kind: EntityKind, items: list[dict]) -> None:
        self.blobs[mirror_key(owner_id, kind)] = json.dumps(items)

    def clear(self, owner_id: str, kind: EntityKind) -> None:
        self.blobs.pop(mirror_key(owner_id, kind), None)


class JsonFileMirror:
    """One JSON file per key under a directory, replaced atomically."""

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, owner_id: str, kind: EntityKind) -> str:
        safe_key = re.sub(r"[^A-Za-z0-9_.-]", "_", mirror_key(owner_id, kind))
        return os.path.join(self.directory, f"{safe_key}.json")

    def load(self, owner_id: str, kind: EntityKind) -> Optional[list[dict]]:
        path = self._path(owner_id, kind)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        except OSError:
            logger.exception("Failed to read mirror %s", path)
            return None
        return _decode(raw, path)

    def save(self, owner_id: str, kind: EntityKind, items: list[dict]) -> None:
        path = self._path(owner_id, kind)
        try:
            os.makedirs(self.directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f)
            os.replace(tmp_path, path)
        except OSError:
            logger.exception("Failed to write mirror %s", path)

    def clear(self, owner_id: str, kind: EntityKind) -> None:
        try:
            os.remove(self._path(owner_id, kind))
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Failed to clear mirror")


@dataclass
class RedisMirror:
    """Redis-backed mirror using plain GET/SET on one key per blob."""

    url: str
    key_prefix: str = "taskpad"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _reconnect(self) -> None:
        # Connection resets happen on managed Redis; the next call retries.
        self.client = redis.Redis.from_url(self.url)

    def load(self, owner_id: str, kind: EntityKind) -> Optional[list[dict]]:
        key = mirror_key(owner_id, kind, self.key_prefix)
        try:
            raw = self.client.get(key)
        except redis_exceptions.ConnectionError:
            self._reconnect()
            return None
        except redis_exceptions.RedisError:
            logger.exception("Failed to read mirror %s", key)
            return None
        return None if raw is None else _decode(raw, key)

    def save(self, owner_id: str, kind: EntityKind, items: list[dict]) -> None:
        key = mirror_key(owner_id, kind, self.key_prefix)
        try:
            self.client.set(key, json.dumps(items))
        except redis_exceptions.ConnectionError:
            logger.warning("Redis unavailable, mirror %s not written", key)
            self._reconnect()
        except redis_exceptions.RedisError:
            logger.exception("Failed to write mirror %s", key)

    def clear(self, owner_id: str, kind: EntityKind) -> None:
        try:
            self.client.delete(mirror_key(owner_id, kind, self.key_prefix))
        except redis_exceptions.ConnectionError:
            self._reconnect()
        except redis_exceptions.RedisError:
            logger.exception("Failed to clear mirror")
