from .models import ContentKind, Identity, RemainingCounts, UsageCounter
from .service import UsageLedger, build_default_ledger
from .store import BaseUsageStore, InMemoryUsageStore, SupabaseUsageStore

__all__ = [
    "BaseUsageStore",
    "ContentKind",
    "Identity",
    "InMemoryUsageStore",
    "RemainingCounts",
    "SupabaseUsageStore",
    "UsageCounter",
    "UsageLedger",
    "build_default_ledger",
]
