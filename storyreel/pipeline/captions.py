"""
SRT captions for a short's narration via AssemblyAI (polled).
"""

from .. import assemblyai
from ..polling import PollResult
from .base import PollingStage
from .models import CAPTIONS


class CaptionsStage(PollingStage):
    name = CAPTIONS
    vendor = assemblyai.VENDOR

    async def submit(self, stage_input: str) -> str:
        return await assemblyai.submit_transcript(stage_input)

    async def poll_status(self, handle: str) -> PollResult:
        return await assemblyai.transcript_status(handle)
