"""
The stage contract every pipeline step implements.

A stage wraps one vendor call: `execute(input) -> output`, failing with a
GenerationError (InvalidInput, VendorRejected, VendorTimeout,
VendorUnavailable, or Cancelled). Stages never touch the ledger or the job
record; the orchestrator does that around them.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..polling import CancellationToken, PollResult, poll_until_done

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    name: str = "stage"
    vendor: str = ""

    @abstractmethod
    async def execute(self, stage_input: Any, token: Optional[CancellationToken] = None) -> Any:
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class PollingStage(PipelineStage):
    """
    A stage whose vendor job runs asynchronously on the vendor's side.

    Subclasses implement `submit` (start the job, return its handle) and
    `poll_status` (one status check). `execute` ties them together through
    the shared bounded polling loop.
    """

    poll_interval: Optional[float] = None
    max_poll_attempts: Optional[int] = None

    @abstractmethod
    async def submit(self, stage_input: Any) -> str:
        raise NotImplementedError

    @abstractmethod
    async def poll_status(self, handle: str) -> PollResult:
        raise NotImplementedError

    async def execute(self, stage_input: Any, token: Optional[CancellationToken] = None) -> Any:
        if token:
            token.raise_if_cancelled()
        handle = await self.submit(stage_input)
        logger.info(f"[{self.name}] submitted to {self.vendor}: {handle}")
        return await poll_until_done(
            lambda: self.poll_status(handle),
            vendor=self.vendor,
            interval=self.poll_interval,
            max_attempts=self.max_poll_attempts,
            token=token,
        )
