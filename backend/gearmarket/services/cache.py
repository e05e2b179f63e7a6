"""Expiring key-value cache backing rate-limit counters and send markers."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from redis import Redis
from redis.exceptions import RedisError

from gearmarket.core.exceptions import InternalServiceError
from gearmarket.core.security import Clock, utcnow

logger = logging.getLogger(__name__)


class KeyValueCache(ABC):
    """Minimal cache contract used by the auth subsystem."""

    @abstractmethod
    def increment(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment ``key``; the TTL is applied only when the result is 1."""

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...


@dataclass
class _Entry:
    value: str
    expires_at: Optional[datetime]


class InMemoryCache(KeyValueCache):
    """Process-local cache suitable for single-node deployments and tests."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def increment(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = _Entry(value="0", expires_at=None)
                self._entries[key] = entry
            count = int(entry.value) + 1
            entry.value = str(count)
            if count == 1:
                entry.expires_at = self._clock() + timedelta(seconds=ttl_seconds)
            return count

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = _Entry(
                value=value,
                expires_at=self._clock() + timedelta(seconds=ttl_seconds),
            )

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry.value if entry else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None


class RedisCache(KeyValueCache):
    """Redis-backed cache shared across API workers."""

    # INCR and first-hit EXPIRE in one server-side step so concurrent first
    # requests cannot both miss setting the window.
    _INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return count
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._increment = self.client.register_script(self._INCREMENT_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""
        self.client.ping()

    def increment(self, key: str, ttl_seconds: int) -> int:
        try:
            return int(self._increment(keys=[key], args=[max(1, int(ttl_seconds))]))
        except RedisError as exc:
            logger.error("Redis: Failed to increment counter for key '%s': %s", key, exc)
            raise InternalServiceError("Cache unavailable") from exc

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.set(key, value, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            logger.error("Redis: Failed to save data for key '%s': %s", key, exc)
            raise InternalServiceError("Cache unavailable") from exc

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except RedisError as exc:
            logger.error("Redis: Failed to get data for key '%s': %s", key, exc)
            raise InternalServiceError("Cache unavailable") from exc

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(key))
        except RedisError as exc:
            logger.error("Redis: Failed to delete data for key '%s': %s", key, exc)
            raise InternalServiceError("Cache unavailable") from exc

    def close(self) -> None:
        self.client.close()
