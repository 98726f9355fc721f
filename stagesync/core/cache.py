"""
Read-view cache.

Caches backend read views (an assignment's groups, a class's email history)
in redis as JSON. Publishing invalidates the views it changed so the next
read refetches from the backend.
"""
import json
import logging
from typing import Any, Callable, Optional

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


def groups_view_key(assignment_id: int) -> str:
    return f"stagesync:groups:{assignment_id}"


def email_history_key(class_id: int) -> str:
    return f"stagesync:email_batches:{class_id}"


class ReadViewCache:
    """JSON values in redis with a fixed TTL."""

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(
        cls,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> "ReadViewCache":
        client = redis.Redis(host=host, port=port, db=db, password=password)
        return cls(client, ttl_seconds=ttl_seconds)

    def get(self, key: str) -> Optional[Any]:
        raw = self.redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self.redis.set(key, json.dumps(value), ex=self.ttl_seconds)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        """Return the cached view, loading and storing it on a miss."""
        cached = self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return cached

        logger.debug(f"Cache miss: {key}")
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, *keys: str) -> None:
        if not keys:
            return
        self.redis.delete(*keys)
        logger.info(f"Invalidated read views: {', '.join(keys)}")
