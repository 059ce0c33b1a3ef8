"""Redis cache backend implementing ICacheBackend."""

from __future__ import annotations

import redis

from nomina.core.exceptions import CacheError


class RedisCacheBackend:
    """Production ICacheBackend backed by Redis; holds the concept catalog between runs."""

    def __init__(self, host: str = "localhost", port: int = 6379, db: int = 0,
                 decode_responses: bool = True) -> None:
        self._client = redis.Redis(
            host=host, port=port, db=db, decode_responses=decode_responses,
        )

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis GET failed for key={key!r}: {exc}") from exc

    def setex(self, key: str, ttl: int, value: str) -> None:
        try:
            self._client.setex(key, ttl, value)
        except redis.RedisError as exc:
            raise CacheError(f"Redis SETEX failed for key={key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis DELETE failed for key={key!r}: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as exc:
            raise CacheError(f"Redis PING failed: {exc}") from exc
