"""
Durable usage-counter stores.

Two implementations of the same contract:

  1. SupabaseUsageStore — Postgres via Supabase RPC. The check-and-increment
     is one conditional UPDATE inside `record_usage_attempt`, so concurrent
     attempts from several sessions can never over-admit.
  2. InMemoryUsageStore — process-local, thread-safe. Used for local
     development without Supabase and for tests. The check and the
     increment happen under one lock.

Both create counters lazily with the default limits on first touch.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from supabase import Client

from ..errors import StorageUnavailable
from .models import ContentKind, UsageCounter, default_limit

logger = logging.getLogger(__name__)


class BaseUsageStore(ABC):
    """Contract every durable counter store fulfils."""

    @abstractmethod
    async def get_counters(self, identity_id: str) -> Dict[ContentKind, UsageCounter]:  # pragma: no cover - interface
        """Return both counters, creating default-limit rows if absent."""
        raise NotImplementedError

    @abstractmethod
    async def try_increment(self, identity_id: str, kind: ContentKind) -> bool:  # pragma: no cover - interface
        """Atomically `count += 1` if `count < limit`; report whether it happened."""
        raise NotImplementedError

    @abstractmethod
    async def set_limits(self, identity_id: str, image_limit: int, video_limit: int) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    async def add_to_limits(self, identity_id: str, image_delta: int, video_delta: int) -> None:  # pragma: no cover - interface
        raise NotImplementedError


# ═════════════════════════════════════════════════════════════════════════════
# In-memory store
# ═════════════════════════════════════════════════════════════════════════════

class InMemoryUsageStore(BaseUsageStore):
    """Thread-safe in-memory store used for tests and local development."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[Tuple[str, ContentKind], UsageCounter] = {}

    def _get_or_create(self, identity_id: str, kind: ContentKind) -> UsageCounter:
        # Caller holds the lock
        key = (identity_id, kind)
        counter = self._counters.get(key)
        if counter is None:
            counter = UsageCounter(identity_id=identity_id, content_kind=kind, limit=default_limit(kind))
            self._counters[key] = counter
        return counter

    async def get_counters(self, identity_id: str) -> Dict[ContentKind, UsageCounter]:
        with self._lock:
            return {
                kind: self._get_or_create(identity_id, kind).model_copy()
                for kind in ContentKind
            }

    async def try_increment(self, identity_id: str, kind: ContentKind) -> bool:
        with self._lock:
            counter = self._get_or_create(identity_id, kind)
            if counter.count >= counter.limit:
                return False
            counter.count += 1
            return True

    async def set_limits(self, identity_id: str, image_limit: int, video_limit: int) -> None:
        with self._lock:
            self._get_or_create(identity_id, ContentKind.IMAGE).limit = image_limit
            self._get_or_create(identity_id, ContentKind.VIDEO).limit = video_limit

    async def add_to_limits(self, identity_id: str, image_delta: int, video_delta: int) -> None:
        with self._lock:
            self._get_or_create(identity_id, ContentKind.IMAGE).limit += image_delta
            self._get_or_create(identity_id, ContentKind.VIDEO).limit += video_delta

    def force_count(self, identity_id: str, kind: ContentKind, count: int):
        """Seed a counter directly (fixtures and local tooling)."""
        with self._lock:
            self._get_or_create(identity_id, kind).count = count


# ═════════════════════════════════════════════════════════════════════════════
# Supabase store
# ═════════════════════════════════════════════════════════════════════════════

class SupabaseUsageStore(BaseUsageStore):
    """
    Counters in the `usage_counters` table, mutated only through the RPCs
    defined in supabase/migrations (see record_usage_attempt).
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            from ..supabase_client import get_supabase
            self._client = get_supabase()
        return self._client

    async def _rpc(self, fn: str, params: dict):
        """Run one RPC off the event loop; any failure means the store is unreachable."""
        try:
            result = await asyncio.to_thread(lambda: self.client.rpc(fn, params).execute())
        except Exception as e:
            logger.error(f"Usage store RPC {fn} failed: {e}")
            raise StorageUnavailable(f"Usage ledger unavailable: {e}") from e
        return result.data

    async def get_counters(self, identity_id: str) -> Dict[ContentKind, UsageCounter]:
        rows = await self._rpc("ensure_usage_counters", {
            "p_identity_id": identity_id,
            "p_image_limit": default_limit(ContentKind.IMAGE),
            "p_video_limit": default_limit(ContentKind.VIDEO),
        })
        counters = {}
        for row in rows or []:
            counter = UsageCounter(
                identity_id=row["identity_id"],
                content_kind=row["content_kind"],
                count=row["count"],
                limit=row["limit"],
            )
            counters[counter.content_kind] = counter
        if set(counters) != set(ContentKind):
            raise StorageUnavailable(f"Usage ledger returned incomplete counters for {identity_id}")
        return counters

    async def try_increment(self, identity_id: str, kind: ContentKind) -> bool:
        admitted = await self._rpc("record_usage_attempt", {
            "p_identity_id": identity_id,
            "p_content_kind": kind.value,
            "p_default_limit": default_limit(kind),
        })
        return bool(admitted)

    async def set_limits(self, identity_id: str, image_limit: int, video_limit: int) -> None:
        await self._rpc("set_usage_limits", {
            "p_identity_id": identity_id,
            "p_image_limit": image_limit,
            "p_video_limit": video_limit,
        })

    async def add_to_limits(self, identity_id: str, image_delta: int, video_delta: int) -> None:
        await self._rpc("add_usage_credits", {
            "p_identity_id": identity_id,
            "p_image_credits": image_delta,
            "p_video_credits": video_delta,
            "p_image_default": default_limit(ContentKind.IMAGE),
            "p_video_default": default_limit(ContentKind.VIDEO),
        })
