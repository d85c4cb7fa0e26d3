"""
Bounded, cancellable polling for vendor-side asynchronous jobs.

Video synthesis and transcription both hand back a job handle that has to be
polled until it reaches a terminal status. Every stage that does this goes
through `poll_until_done` so the attempt budget, the delay between polls and
cancellation behave the same everywhere.
"""

import os
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from .errors import Cancelled, VendorRejected, VendorTimeout

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "2.0"))  # seconds
MAX_POLL_ATTEMPTS = int(os.getenv("MAX_POLL_ATTEMPTS", "30"))


class PollStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class PollResult(BaseModel):
    status: PollStatus
    result: Any = None
    error: Optional[str] = None


class CancellationToken:
    """Cooperative cancellation flag shared by every stage of one job."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise Cancelled("Job was cancelled")

    async def wait(self):
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, seconds: float):
        """Sleep for `seconds`, waking early (and raising) on cancellation."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise Cancelled("Job was cancelled")


async def poll_until_done(
    poll: Callable[[], Awaitable[PollResult]],
    *,
    vendor: str,
    interval: Optional[float] = None,
    max_attempts: Optional[int] = None,
    token: Optional[CancellationToken] = None,
) -> Any:
    """
    Call `poll` until it reports DONE or FAILED.

    One poll is in flight at a time. Between polls we wait `interval`
    seconds; after `max_attempts` non-terminal answers we give up.

    Returns:
        The `result` of the DONE poll.

    Raises:
        VendorRejected: the vendor reported the job as failed.
        VendorTimeout:  the attempt budget ran out.
        Cancelled:      the token fired.
    """
    interval = POLL_INTERVAL if interval is None else interval
    max_attempts = MAX_POLL_ATTEMPTS if max_attempts is None else max_attempts
    token = token or CancellationToken()

    for attempt in range(max_attempts):
        token.raise_if_cancelled()
        result = await poll()
        logger.info(f"{vendor} poll #{attempt + 1}/{max_attempts}: status={result.status.value}")

        if result.status == PollStatus.DONE:
            return result.result
        if result.status == PollStatus.FAILED:
            raise VendorRejected(vendor, result.error or "job failed")

        if attempt < max_attempts - 1:
            await token.sleep(interval)

    raise VendorTimeout(
        f"{vendor} job did not finish after {max_attempts} polls ({max_attempts * interval:.0f}s)"
    )
