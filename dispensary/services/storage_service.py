"""
Durable key-value storage for cart and POS-session state.

State written here survives a process restart (reload continuity only;
there is no multi-writer coordination). Two implementations:
- RedisStorage: Redis-backed, prefix-namespaced keys, degrades gracefully
- MemoryStorage: process-local dict, for tests and development

Values are strings; JSON helpers below round-trip Decimals exactly.
"""
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


@runtime_checkable
class DurableStorage(Protocol):
    """Interface for string key-value storage that survives restarts."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> bool:
        ...

    def remove(self, key: str) -> bool:
        ...


def serialize(value: Any) -> str:
    """Serialize Python object to JSON string with Decimal precision."""
    def default_handler(obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        elif isinstance(obj, Decimal):
            return {"__decimal__": str(obj)}
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
    return json.dumps(value, default=default_handler)


def deserialize(value: str) -> Any:
    """Deserialize JSON string to Python object, reconstructing Decimals."""
    def object_hook(dct: Dict[str, Any]) -> Any:
        if "__decimal__" in dct:
            return Decimal(dct["__decimal__"])
        return dct
    return json.loads(value, object_hook=object_hook)


def load_json(storage: DurableStorage, key: str) -> Optional[Any]:
    """
    Read and decode a JSON value.

    Missing values read as None. A value that fails to decode is removed
    from storage and also reads as None.
    """
    raw = storage.get(key)
    if raw is None:
        return None
    try:
        return deserialize(raw)
    except (ValueError, TypeError) as e:
        logger.warning(f"[STORAGE] Dropping corrupt value for '{key}': {e}")
        storage.remove(key)
        return None


def dump_json(storage: DurableStorage, key: str, value: Any) -> bool:
    """Encode and write a JSON value."""
    return storage.set(key, serialize(value))


class MemoryStorage:
    """Process-local storage. Lost on restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True

    def remove(self, key: str) -> bool:
        self._data.pop(key, None)
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._data


class RedisStorage:
    """
    Redis-backed durable storage.

    Keys pattern: {prefix}:{key}

    Redis failures never propagate: reads return None and writes return
    False, so callers treat an unavailable store like an empty one.
    """

    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = 'dispensary'):
        self.client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = 'dispensary') -> 'RedisStorage':
        """Connect to Redis; falls back to a disconnected store on failure."""
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                socket_keepalive=True,
                retry_on_timeout=True,
                health_check_interval=30
            )
            client.ping()
            logger.info(f"[STORAGE] Redis connected: {redis_url}")
        except RedisError as e:
            logger.warning(f"[STORAGE] Redis connection failed: {e}. Durable storage DISABLED.")
            client = None
        return cls(client, prefix)

    def _build_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def get(self, key: str) -> Optional[str]:
        if self.client is None:
            return None
        try:
            return self.client.get(self._build_key(key))
        except RedisError as e:
            logger.warning(f"[STORAGE] Get error for '{key}': {e}")
            return None

    def set(self, key: str, value: str) -> bool:
        if self.client is None:
            return False
        try:
            self.client.set(self._build_key(key), value)
            return True
        except RedisError as e:
            logger.warning(f"[STORAGE] Set error for '{key}': {e}")
            return False

    def remove(self, key: str) -> bool:
        if self.client is None:
            return False
        try:
            self.client.delete(self._build_key(key))
            return True
        except RedisError as e:
            logger.warning(f"[STORAGE] Delete error for '{key}': {e}")
            return False
