"""
cache/store.py -- Redis-backed cache-aside helper.

Avoids repeated store lookups for hot reads (GET /auth/me) by keeping JSON
copies in Redis with a default TTL (5 minutes). The cache is never in the
correctness path: every Redis error is logged and swallowed, and get()
returns None so the caller falls through to the database.

Usage:
    cache = RedisCache(host="localhost", port=6379)
    data = cache.get("user:42")          # returns decoded value or None
    cache.set("user:42", data)           # SETEX with the default TTL
    cache.invalidate_pattern("user:*")   # SCAN + DEL, never KEYS
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis

logger = logging.getLogger("weighttracker.cache")

_DEFAULT_TTL = 300  # 5 minutes in seconds
_SCAN_BATCH = 100


class RedisCache:
    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        ttl: int = _DEFAULT_TTL,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self.ttl = ttl
        self.client = client or redis.Redis(
            host=host,
            port=port,
            db=db,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
        )

    def get(self, key: str) -> Optional[Any]:
        """Return the decoded value for key, or None on miss or Redis error."""
        try:
            raw = self.client.get(key)
        except redis.RedisError:
            logger.error("Redis GET error for key %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key)
            self.delete(key)
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value under key with an expiry (defaults to the cache TTL)."""
        try:
            self.client.setex(key, ttl or self.ttl, json.dumps(value))
        except redis.RedisError:
            logger.error("Redis SET error for key %s", key, exc_info=True)

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError:
            logger.error("Redis DEL error for key %s", key, exc_info=True)

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns the number of keys removed.

        Walks the keyspace with SCAN in batches so a large keyspace never
        blocks the server the way KEYS would.
        """
        removed = 0
        batch: list[str] = []
        try:
            for key in self.client.scan_iter(match=pattern, count=_SCAN_BATCH):
                batch.append(key)
                if len(batch) >= _SCAN_BATCH:
                    removed += self.client.delete(*batch)
                    batch = []
            if batch:
                removed += self.client.delete(*batch)
        except redis.RedisError:
            logger.error("Redis invalidate_pattern error for pattern %s", pattern, exc_info=True)
        return removed

    def ping(self) -> bool:
        """Return True if Redis answers PING."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            logger.warning("Redis ping failed", exc_info=True)
            return False

    def close(self) -> None:
        try:
            self.client.close()
        except redis.RedisError:
            logger.warning("Redis close failed", exc_info=True)
