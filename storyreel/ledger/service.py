"""
UsageLedger — gates every billable generation attempt.

The ledger is a thin coordinator between the durable store (the only
authority for admission) and the advisory cache (refreshed after every
decision, never consulted for one). Every operation accepts either an
Identity or a bare identity id.
"""

import logging
from typing import Optional, Union

from .. import metrics
from ..errors import InvalidInput
from .cache import LocalUsageCache, build_usage_cache
from .models import ContentKind, Identity, RemainingCounts
from .store import BaseUsageStore, InMemoryUsageStore, SupabaseUsageStore

logger = logging.getLogger(__name__)

IdentityLike = Union[Identity, str]


def _identity_id(identity: IdentityLike) -> str:
    identity_id = identity.id if isinstance(identity, Identity) else identity
    if not identity_id or not str(identity_id).strip():
        raise InvalidInput("Identity id is required")
    return str(identity_id)


def _validate_limit(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInput(f"{name} must be a positive integer, got {value!r}")
    return value


class UsageLedger:
    def __init__(self, store: BaseUsageStore, cache=None):
        self.store = store
        self.cache = cache if cache is not None else LocalUsageCache()

    # ── Core operations ──────────────────────────────────────────────────────

    async def get_remaining_counts(self, identity: IdentityLike) -> RemainingCounts:
        identity_id = _identity_id(identity)
        counters = await self.store.get_counters(identity_id)
        remaining = RemainingCounts.from_counters(counters)
        self.cache.put(identity_id, remaining)
        return remaining

    async def record_attempt(self, identity: IdentityLike, kind: ContentKind) -> bool:
        """
        Atomically admit or deny one attempt of `kind`.

        Returns True and consumes one slot when `count < limit`; returns
        False with no mutation otherwise. Raises StorageUnavailable when the
        durable store cannot be reached (callers must fail closed).
        """
        identity_id = _identity_id(identity)
        kind = ContentKind(kind)

        admitted = await self.store.try_increment(identity_id, kind)
        if admitted:
            metrics.inc_counter(f"ledger.admitted.{kind.value}")
            logger.info(f"Admitted {kind.value} attempt for {identity_id}")
        else:
            metrics.inc_counter(f"ledger.denied.{kind.value}")
            logger.warning(f"Denied {kind.value} attempt for {identity_id}: limit reached")

        await self._refresh_cache(identity_id)
        return admitted

    async def set_limits(self, identity: IdentityLike, image_limit: int, video_limit: int):
        """Administrative override. Authorization is the caller's concern."""
        identity_id = _identity_id(identity)
        _validate_limit("image_limit", image_limit)
        _validate_limit("video_limit", video_limit)

        await self.store.set_limits(identity_id, image_limit, video_limit)
        logger.info(f"Limits for {identity_id} set to images={image_limit} videos={video_limit}")
        await self._refresh_cache(identity_id)

    async def add_credits(self, identity: IdentityLike, image_credits: int, video_credits: int) -> RemainingCounts:
        """Raise both limits by non-negative deltas."""
        identity_id = _identity_id(identity)
        for name, value in (("image_credits", image_credits), ("video_credits", video_credits)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidInput(f"{name} must be a non-negative integer, got {value!r}")

        await self.store.add_to_limits(identity_id, image_credits, video_credits)
        logger.info(f"Granted {image_credits} image / {video_credits} video credits to {identity_id}")
        return await self.get_remaining_counts(identity_id)

    def cached_remaining(self, identity: IdentityLike) -> Optional[RemainingCounts]:
        return self.cache.get(_identity_id(identity))

    async def _refresh_cache(self, identity_id: str):
        # Advisory only: a failed refresh drops the stale entry instead.
        try:
            counters = await self.store.get_counters(identity_id)
        except Exception as e:
            logger.warning(f"Could not refresh usage cache for {identity_id}: {e}")
            self.cache.invalidate(identity_id)
            return
        self.cache.put(identity_id, RemainingCounts.from_counters(counters))

    # ── Accessor interface ───────────────────────────────────────────────────

    async def get_remaining_counts_async(self, identity: IdentityLike) -> RemainingCounts:
        return await self.get_remaining_counts(identity)

    async def increment_image_count(self, identity: IdentityLike) -> bool:
        return await self.record_attempt(identity, ContentKind.IMAGE)

    async def increment_video_count(self, identity: IdentityLike) -> bool:
        return await self.record_attempt(identity, ContentKind.VIDEO)

    async def set_user_limits(self, identity: IdentityLike, image_limit: int, video_limit: int):
        await self.set_limits(identity, image_limit, video_limit)


def build_default_ledger() -> UsageLedger:
    """Supabase-backed ledger when credentials are present, in-memory otherwise."""
    from ..supabase_client import is_configured

    if is_configured():
        store = SupabaseUsageStore()
        logger.info("Usage ledger: Supabase store")
    else:
        store = InMemoryUsageStore()
        logger.warning("Usage ledger: SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY not set — counts are in-memory only")
    return UsageLedger(store, build_usage_cache())
