"""
Persistence collaborator for the SafeGuard core.

The core reads and writes whole-value records keyed by logical name
(contacts, location history, sessions, settings). It is agnostic to the
storage medium and treats an absent value as empty/default state.

Two stores are provided:
- InMemoryStore: a plain dictionary, used in tests and local runs
- RedisStore: JSON records in Redis through the shared RedisClient
"""

import copy
import logging
from typing import Any, Dict, Optional, Protocol

from common.constants import STORAGE_KEY_PREFIX

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryStore:
    """Dictionary-backed store; values are copied on the way in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class RedisStore:
    """JSON records in Redis under a common key prefix."""

    def __init__(self, client=None, prefix: str = STORAGE_KEY_PREFIX) -> None:
        if client is None:
            from common.redis_client import get_redis_client

            client = get_redis_client()
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        return self._client.get_json(self._key(key))

    def set(self, key: str, value: Any) -> None:
        if not self._client.set_json(self._key(key), value):
            logger.warning("Failed to persist record '%s' to Redis", key)

    def remove(self, key: str) -> None:
        self._client.delete(self._key(key))


def get_store(backend: str = "memory") -> KeyValueStore:
    """Build the store named by configuration ("memory" or "redis")."""
    if backend == "redis":
        return RedisStore()
    if backend != "memory":
        raise ValueError(f"Unsupported storage backend: {backend}")
    return InMemoryStore()
