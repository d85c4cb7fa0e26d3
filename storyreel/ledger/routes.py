"""
FastAPI routes for usage counts, admin limits and credit purchases.

Usage Endpoints:
  GET  /usage/{id}           — Remaining counts (durable store)
  GET  /usage/{id}/cached    — Last advisory snapshot (may be stale or absent)
  POST /usage/{id}/images    — Record one image attempt
  POST /usage/{id}/videos    — Record one video attempt

Admin Endpoints (X-Admin-Secret):
  PUT  /admin/limits/{id}    — Override both limits

Credit Endpoints:
  GET  /credits/packages     — Catalog
  POST /credits/purchase     — Simulated purchase
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..credits import CreditPackage, CreditPurchaseService, PurchaseReceipt, PurchaseRequest
from ..dependencies import get_ledger, get_purchase_service
from .models import AdmissionResponse, ContentKind, LimitsUpdateRequest, RemainingCounts
from .service import UsageLedger

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Usage Router
# ═════════════════════════════════════════════════════════════════════════════

usage_router = APIRouter(prefix="/usage", tags=["usage"])


@usage_router.get("/{identity_id}", response_model=RemainingCounts, response_model_by_alias=True)
async def get_remaining(identity_id: str, ledger: UsageLedger = Depends(get_ledger)):
    return await ledger.get_remaining_counts_async(identity_id)


@usage_router.get("/{identity_id}/cached", response_model=RemainingCounts, response_model_by_alias=True)
async def get_cached_remaining(identity_id: str, ledger: UsageLedger = Depends(get_ledger)):
    cached = ledger.cached_remaining(identity_id)
    if cached is None:
        raise HTTPException(status_code=404, detail="No cached counts for this identity")
    return cached


async def _admission(ledger: UsageLedger, identity_id: str, kind: ContentKind) -> AdmissionResponse:
    if kind == ContentKind.IMAGE:
        admitted = await ledger.increment_image_count(identity_id)
    else:
        admitted = await ledger.increment_video_count(identity_id)
    return AdmissionResponse(
        identity_id=identity_id,
        kind=kind,
        admitted=admitted,
        remaining=ledger.cached_remaining(identity_id),
    )


@usage_router.post("/{identity_id}/images", response_model=AdmissionResponse)
async def record_image_attempt(identity_id: str, ledger: UsageLedger = Depends(get_ledger)):
    return await _admission(ledger, identity_id, ContentKind.IMAGE)


@usage_router.post("/{identity_id}/videos", response_model=AdmissionResponse)
async def record_video_attempt(identity_id: str, ledger: UsageLedger = Depends(get_ledger)):
    return await _admission(ledger, identity_id, ContentKind.VIDEO)


# ═════════════════════════════════════════════════════════════════════════════
# Admin Router (X-Admin-Secret, see AdminAuthMiddleware)
# ═════════════════════════════════════════════════════════════════════════════

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.put("/limits/{identity_id}", response_model=RemainingCounts, response_model_by_alias=True)
async def set_limits(
    identity_id: str,
    request: LimitsUpdateRequest,
    ledger: UsageLedger = Depends(get_ledger),
):
    await ledger.set_user_limits(identity_id, request.image_limit, request.video_limit)
    return await ledger.get_remaining_counts(identity_id)


# ═════════════════════════════════════════════════════════════════════════════
# Credits Router
# ═════════════════════════════════════════════════════════════════════════════

credits_router = APIRouter(prefix="/credits", tags=["credits"])


@credits_router.get("/packages", response_model=list[CreditPackage])
async def list_packages():
    return CreditPurchaseService.list_packages()


@credits_router.post("/purchase", response_model=PurchaseReceipt)
async def purchase(
    request: PurchaseRequest,
    service: CreditPurchaseService = Depends(get_purchase_service),
):
    return await service.purchase(request.identity, request.package_id)
