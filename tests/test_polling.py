import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from storyreel.errors import Cancelled, VendorRejected, VendorTimeout
from storyreel.polling import CancellationToken, PollResult, PollStatus, poll_until_done


def results(*statuses, result=None, error=None):
    out = []
    for status in statuses:
        if status == PollStatus.DONE:
            out.append(PollResult(status=status, result=result))
        elif status == PollStatus.FAILED:
            out.append(PollResult(status=status, error=error))
        else:
            out.append(PollResult(status=status))
    return out


@pytest.mark.asyncio
async def test_returns_result_once_done():
    poll = AsyncMock(side_effect=results(
        PollStatus.QUEUED, PollStatus.PROCESSING, PollStatus.DONE, result="https://cdn/video.mp4",
    ))

    value = await poll_until_done(poll, vendor="FAL.AI", max_attempts=5)

    assert value == "https://cdn/video.mp4"
    assert poll.await_count == 3


@pytest.mark.asyncio
async def test_vendor_failure_is_rejected():
    poll = AsyncMock(side_effect=results(PollStatus.PROCESSING, PollStatus.FAILED, error="NSFW content"))

    with pytest.raises(VendorRejected) as exc:
        await poll_until_done(poll, vendor="FAL.AI", max_attempts=5)

    assert "NSFW content" in exc.value.message


@pytest.mark.asyncio
async def test_budget_exhaustion_times_out():
    poll = AsyncMock(return_value=PollResult(status=PollStatus.PROCESSING))

    with pytest.raises(VendorTimeout):
        await poll_until_done(poll, vendor="AssemblyAI", max_attempts=30)

    assert poll.await_count == 30


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_polling():
    token = CancellationToken()
    token.cancel()
    poll = AsyncMock()

    with pytest.raises(Cancelled):
        await poll_until_done(poll, vendor="FAL.AI", token=token)

    poll.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_wakes_the_wait_between_polls():
    token = CancellationToken()
    poll = AsyncMock(return_value=PollResult(status=PollStatus.QUEUED))

    async def cancel_soon():
        await asyncio.sleep(0.05)
        token.cancel()

    started = time.monotonic()
    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(Cancelled):
        await poll_until_done(poll, vendor="FAL.AI", interval=30, max_attempts=5, token=token)
    await canceller

    assert time.monotonic() - started < 5
    assert poll.await_count == 1
