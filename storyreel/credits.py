"""
Credit packages and the (simulated) purchase flow.

A purchase raises the identity's image/video limits by the package's
credit amounts. Payment itself is behind BasePaymentProcessor; the only
implementation here waits a moment and approves, so a real gateway can be
dropped in without touching the ledger.
"""

import os
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from .errors import GenerationError, InvalidInput
from .ledger import Identity, RemainingCounts, UsageLedger

logger = logging.getLogger(__name__)

PURCHASE_DELAY_SECONDS = float(os.getenv("PURCHASE_DELAY_SECONDS", "1.5"))


class CreditPackage(BaseModel):
    id: str
    name: str
    price: int = Field(..., gt=0)
    currency: str = "Ks"
    image_credits: int = Field(0, ge=0)
    video_credits: int = Field(0, ge=0)

    @property
    def display_price(self) -> str:
        return f"{self.price:,} {self.currency}"


PACKAGES: dict[str, CreditPackage] = {
    "images": CreditPackage(id="images", name="100 Image Credits", price=20_000, image_credits=100),
    "videos": CreditPackage(id="videos", name="100 Video Credits", price=20_000, video_credits=100),
    "combo": CreditPackage(id="combo", name="Combo Pack", price=35_000, image_credits=100, video_credits=100),
}


class PurchaseRequest(BaseModel):
    identity: Identity
    package_id: str


class PurchaseReceipt(BaseModel):
    receipt_id: str
    identity_id: str
    package: CreditPackage
    charged_at: str
    remaining: RemainingCounts


# ── Payment ──────────────────────────────────────────────────────────────────

class BasePaymentProcessor(ABC):

    @abstractmethod
    async def charge(self, identity: Identity, package: CreditPackage) -> str:
        """Take payment; return a transaction reference or raise."""

    @abstractmethod
    async def refund(self, reference: str, identity: Identity, package: CreditPackage):
        """Reverse a charge whose credits could not be granted."""


class SimulatedPaymentProcessor(BasePaymentProcessor):
    """Approves every charge after a short delay."""

    def __init__(self, delay_seconds: float = PURCHASE_DELAY_SECONDS):
        self.delay_seconds = delay_seconds

    async def charge(self, identity: Identity, package: CreditPackage) -> str:
        logger.info(f"Simulating payment of {package.display_price} for {identity.id}")
        await asyncio.sleep(self.delay_seconds)
        return f"sim_{uuid.uuid4().hex[:12]}"

    async def refund(self, reference: str, identity: Identity, package: CreditPackage):
        logger.info(f"Simulating refund of {reference} ({package.display_price}) for {identity.id}")


# ── Purchase service ─────────────────────────────────────────────────────────

class CreditPurchaseService:

    def __init__(self, ledger: UsageLedger, processor: Optional[BasePaymentProcessor] = None):
        self.ledger = ledger
        self.processor = processor or SimulatedPaymentProcessor()

    @staticmethod
    def list_packages() -> list[CreditPackage]:
        return list(PACKAGES.values())

    async def purchase(self, identity: Identity, package_id: str) -> PurchaseReceipt:
        if identity.is_anonymous:
            raise InvalidInput("Please log in to purchase credits")
        package = PACKAGES.get(package_id)
        if package is None:
            raise InvalidInput(f"Unknown credit package: {package_id}")

        reference = await self.processor.charge(identity, package)
        try:
            remaining = await self.ledger.add_credits(identity, package.image_credits, package.video_credits)
        except GenerationError as e:
            logger.error(f"Purchase {reference} charged but credits not granted to {identity.id}: {e.message}")
            await self.processor.refund(reference, identity, package)
            raise
        logger.info(f"Purchase {reference}: {package.name} → {identity.id}")

        return PurchaseReceipt(
            receipt_id=reference,
            identity_id=identity.id,
            package=package,
            charged_at=datetime.now(timezone.utc).isoformat(),
            remaining=remaining,
        )
