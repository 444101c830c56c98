"""
Execution-scoped static-data store.

Every workflow execution gets its own mutable ``mapping<str, Any>``. All
script invocations of one execution share it (writes are visible to later
invocations); two executions never see each other's writes.

Writes serialize behind a lock, reads do not. Concurrent writers to the same
key are last-write-wins, with no merge.

Backends: Redis (preferred, one hash per execution) or in-memory.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any

import redis

from scriptstep.core.config import settings
from scriptstep.core.redis_client import get_redis

_LOG = logging.getLogger(__name__)

STATIC_KEY_PREFIX = "static:"

_MISSING = object()


class StaticDataHandle(ABC):
    """Host-side handle on one execution's store."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any: ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> list[str]: ...

    def items(self) -> list[tuple[str, Any]]:
        return [(k, self.get(k)) for k in self.keys()]

    def to_dict(self) -> dict[str, Any]:
        return dict(self.items())

    def apply_changes(self, set_values: Mapping[str, Any], deleted: list[str]) -> None:
        """Replay writes made elsewhere (e.g. in an external worker)."""
        for k, v in set_values.items():
            self.set(k, v)
        for k in deleted:
            self.delete(k)

    def __getitem__(self, key: str) -> Any:
        v = self.get(key, _MISSING)
        if v is _MISSING:
            raise KeyError(key)
        return v

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: str) -> None:
        self.delete(key)

    def __contains__(self, key: object) -> bool:
        return key in self.keys()

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self.keys())


class StaticDataView(MutableMapping):
    """
    What guest code sees as ``static_data``: one view per invocation over the
    execution's handle. Item assignment and deletion go through
    ``__guarded_setitem__``/``__guarded_delitem__``; attributes cannot be
    rebound. Once revoked every call raises.
    """

    __slots__ = ("_handle", "_revoked")

    def __init__(self, handle: StaticDataHandle) -> None:
        self._handle = handle
        self._revoked = False

    def revoke(self) -> None:
        self._revoked = True

    def _live(self) -> StaticDataHandle:
        if self._revoked:
            raise RuntimeError("static_data is no longer available: the invocation has ended")
        return self._handle

    def get(self, key: str, default: Any = None) -> Any:
        return self._live().get(key, default)

    def set(self, key: str, value: Any) -> None:
        # Stored as JSON so every backend keeps the same value
        self._live().set(key, json.loads(json.dumps(value, default=str)))

    def delete(self, key: str) -> None:
        self._live().delete(key)

    def keys(self) -> list[str]:  # type: ignore[override]
        return self._live().keys()

    def items(self) -> list[tuple[str, Any]]:  # type: ignore[override]
        return self._live().items()

    def to_dict(self) -> dict[str, Any]:
        return self._live().to_dict()

    def __getitem__(self, key: str) -> Any:
        return self._live()[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: str) -> None:
        self.delete(key)

    __guarded_setitem__ = __setitem__
    __guarded_delitem__ = __delitem__

    def __contains__(self, key: object) -> bool:
        return key in self._live()

    def __iter__(self) -> Iterator[str]:
        return iter(self._live().keys())

    def __len__(self) -> int:
        return len(self._live().keys())

    def __repr__(self) -> str:
        return f"StaticDataView({self._handle.execution_id!r})"


class MemoryStaticData(StaticDataHandle):
    def __init__(self, execution_id: str, initial: Mapping[str, Any] | None = None) -> None:
        super().__init__(execution_id)
        self._data: dict[str, Any] = dict(initial or {})
        self._write_lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(str(key), default)

    def set(self, key: str, value: Any) -> None:
        with self._write_lock:
            self._data[str(key)] = value

    def delete(self, key: str) -> None:
        with self._write_lock:
            self._data.pop(str(key), None)

    def keys(self) -> list[str]:
        return list(self._data)


class RedisStaticData(StaticDataHandle):
    """One Redis hash per execution; values are JSON-encoded."""

    def __init__(self, execution_id: str, client: Any, *, ttl_seconds: int) -> None:
        super().__init__(execution_id)
        self._client = client
        self._key = STATIC_KEY_PREFIX + execution_id
        self._ttl = ttl_seconds

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._client.hget(self._key, str(key))
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._client.hset(self._key, str(key), json.dumps(value, default=str))
        if self._ttl > 0:
            self._client.expire(self._key, self._ttl)

    def delete(self, key: str) -> None:
        self._client.hdel(self._key, str(key))

    def keys(self) -> list[str]:
        return list(self._client.hkeys(self._key))

    def items(self) -> list[tuple[str, Any]]:
        return [(k, json.loads(v)) for k, v in self._client.hgetall(self._key).items()]


class RecordingStaticData(MemoryStaticData):
    """In-memory copy of a snapshot that remembers which keys were written."""

    def __init__(self, execution_id: str, initial: Mapping[str, Any] | None = None) -> None:
        super().__init__(execution_id, initial)
        self._set: dict[str, Any] = {}
        self._deleted: set[str] = set()

    def set(self, key: str, value: Any) -> None:
        super().set(key, value)
        with self._write_lock:
            self._set[str(key)] = value
            self._deleted.discard(str(key))

    def delete(self, key: str) -> None:
        super().delete(key)
        with self._write_lock:
            self._set.pop(str(key), None)
            self._deleted.add(str(key))

    def changes(self) -> dict[str, Any]:
        return {"set": dict(self._set), "deleted": sorted(self._deleted)}


class StaticDataArena:
    """Hands out one in-memory handle per execution id."""

    def __init__(self) -> None:
        self._handles: dict[str, MemoryStaticData] = {}
        self._lock = threading.Lock()

    def handle(self, execution_id: str) -> StaticDataHandle:
        with self._lock:
            h = self._handles.get(execution_id)
            if h is None:
                h = MemoryStaticData(execution_id)
                self._handles[execution_id] = h
            return h

    def release(self, execution_id: str) -> None:
        with self._lock:
            self._handles.pop(execution_id, None)

    def __contains__(self, execution_id: object) -> bool:
        return execution_id in self._handles


class RedisStaticDataArena(StaticDataArena):
    def __init__(self, client: Any, *, ttl_seconds: int | None = None) -> None:
        super().__init__()
        self._client = client
        self._ttl = settings.STATIC_DATA_TTL_SECONDS if ttl_seconds is None else ttl_seconds

    def handle(self, execution_id: str) -> StaticDataHandle:
        return RedisStaticData(execution_id, self._client, ttl_seconds=self._ttl)

    def release(self, execution_id: str) -> None:
        try:
            self._client.delete(STATIC_KEY_PREFIX + execution_id)
        except redis.RedisError as e:
            _LOG.warning("static data release failed for %s: %s", execution_id, e)

    def __contains__(self, execution_id: object) -> bool:
        return bool(self._client.exists(STATIC_KEY_PREFIX + str(execution_id)))


_arena: StaticDataArena | None = None
_arena_lock = threading.Lock()


def get_static_data_arena() -> StaticDataArena:
    """Process-wide arena: Redis-backed when available, in-memory otherwise."""
    global _arena
    if _arena is not None:
        return _arena
    with _arena_lock:
        if _arena is None:
            client = get_redis()
            _arena = RedisStaticDataArena(client) if client is not None else StaticDataArena()
        return _arena
