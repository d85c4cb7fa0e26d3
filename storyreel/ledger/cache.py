"""
Advisory cache of remaining counts.

Screens read `/usage/{id}/cached` to paint the remaining-credits badge
without a round trip to Postgres. The cache is never consulted when
admitting an attempt (the durable store is the only authority), so a
cache failure is logged and otherwise ignored.

Redis hash per identity: `usage:{identity_id}` → {images, videos}.
"""

import os
import logging
import threading
from typing import Dict, Optional

from .models import RemainingCounts

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = int(os.environ.get("USAGE_CACHE_TTL", "3600"))


# ── Lazy Redis client ─────────────────────────────────────────────────────────
_redis_client = None


def get_redis():
    """Get or create a Redis client. Returns None if Redis is not configured."""
    global _redis_client
    if _redis_client is None:
        redis_url = os.environ.get("REDIS_URL")
        if redis_url:
            import redis
            _redis_client = redis.from_url(redis_url, decode_responses=True)
            try:
                _redis_client.ping()
                logger.info(f"Redis connected: {redis_url[:30]}...")
            except Exception as e:
                logger.warning(f"Redis connection failed: {e} — using local usage cache")
                _redis_client = None
    return _redis_client


class LocalUsageCache:
    """Process-local cache used when Redis is not configured."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, RemainingCounts] = {}

    def put(self, identity_id: str, counts: RemainingCounts):
        with self._lock:
            self._entries[identity_id] = counts.model_copy()

    def get(self, identity_id: str) -> Optional[RemainingCounts]:
        with self._lock:
            entry = self._entries.get(identity_id)
            return entry.model_copy() if entry else None

    def invalidate(self, identity_id: str):
        with self._lock:
            self._entries.pop(identity_id, None)


class RedisUsageCache:
    """Shared cache across worker processes."""

    def __init__(self, redis_client, ttl_seconds: int = CACHE_TTL_SECONDS):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(identity_id: str) -> str:
        return f"usage:{identity_id}"

    def put(self, identity_id: str, counts: RemainingCounts):
        key = self._key(identity_id)
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.hset(key, mapping={
                "images": counts.remaining_images,
                "videos": counts.remaining_videos,
            })
            pipe.expire(key, self.ttl_seconds)
            pipe.execute()
        except Exception as e:
            logger.warning(f"Usage cache write failed for {identity_id}: {e}")

    def get(self, identity_id: str) -> Optional[RemainingCounts]:
        try:
            raw = self.redis.hgetall(self._key(identity_id))
        except Exception as e:
            logger.warning(f"Usage cache read failed for {identity_id}: {e}")
            return None
        if not raw:
            return None
        try:
            return RemainingCounts(
                remaining_images=int(raw["images"]),
                remaining_videos=int(raw["videos"]),
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Usage cache entry for {identity_id} is malformed: {e}")
            return None

    def invalidate(self, identity_id: str):
        try:
            self.redis.delete(self._key(identity_id))
        except Exception as e:
            logger.warning(f"Usage cache invalidate failed for {identity_id}: {e}")


def build_usage_cache():
    r = get_redis()
    if r is not None:
        return RedisUsageCache(r)
    logger.info("No Redis — using local usage cache")
    return LocalUsageCache()
