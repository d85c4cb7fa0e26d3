from unittest.mock import AsyncMock, MagicMock

import pytest

from storyreel.credits import PACKAGES, CreditPurchaseService, SimulatedPaymentProcessor
from storyreel.errors import InvalidInput, StorageUnavailable
from storyreel.ledger import ContentKind, Identity


@pytest.fixture
def purchases(ledger):
    return CreditPurchaseService(ledger, SimulatedPaymentProcessor(delay_seconds=0))


def test_catalog_lists_three_packages():
    packages = CreditPurchaseService.list_packages()

    assert [p.id for p in packages] == ["images", "videos", "combo"]
    assert PACKAGES["combo"].display_price == "35,000 Ks"


@pytest.mark.asyncio
async def test_combo_purchase_raises_both_limits(purchases, ledger):
    await ledger.record_attempt("user-1", ContentKind.IMAGE)

    receipt = await purchases.purchase(Identity(id="user-1", email="a@b.c"), "combo")

    assert receipt.receipt_id.startswith("sim_")
    assert receipt.remaining.remaining_images == 199
    assert receipt.remaining.remaining_videos == 120
    assert (await ledger.get_remaining_counts("user-1")) == receipt.remaining


@pytest.mark.asyncio
async def test_image_package_leaves_video_limit_alone(purchases):
    receipt = await purchases.purchase(Identity(id="user-1"), "images")

    assert receipt.remaining.remaining_images == 200
    assert receipt.remaining.remaining_videos == 20


@pytest.mark.asyncio
@pytest.mark.parametrize("identity,package_id", [
    (Identity(id="anon-1", is_anonymous=True), "combo"),
    (Identity(id="user-1"), "platinum"),
])
async def test_rejected_purchases_never_charge(ledger, identity, package_id):
    processor = AsyncMock()
    service = CreditPurchaseService(ledger, processor)

    with pytest.raises(InvalidInput):
        await service.purchase(identity, package_id)

    processor.charge.assert_not_awaited()
    remaining = await ledger.get_remaining_counts(identity.id)
    assert (remaining.remaining_images, remaining.remaining_videos) == (100, 20)


@pytest.mark.asyncio
async def test_charge_is_refunded_when_credits_cannot_be_granted():
    ledger = MagicMock()
    ledger.add_credits = AsyncMock(side_effect=StorageUnavailable("usage ledger unreachable"))
    processor = AsyncMock()
    processor.charge.return_value = "ref-1"
    identity = Identity(id="user-1")
    service = CreditPurchaseService(ledger, processor)

    with pytest.raises(StorageUnavailable):
        await service.purchase(identity, "videos")

    processor.refund.assert_awaited_once_with("ref-1", identity, PACKAGES["videos"])
