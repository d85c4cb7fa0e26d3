"""
Per-scene image-to-video via the FAL queue API (polled).
"""

import logging

from pydantic import BaseModel

from .. import fal
from ..errors import MissingDependency
from ..polling import PollResult
from .base import PollingStage

logger = logging.getLogger(__name__)

DEFAULT_MOTION_PROMPT = "Smooth cinematic camera movement, subtle natural motion."


class VideoInput(BaseModel):
    image_url: str = ""
    prompt: str = ""


class VideoSynthesisStage(PollingStage):
    name = "video"
    vendor = fal.VENDOR

    async def submit(self, stage_input: VideoInput) -> str:
        if not stage_input.image_url:
            raise MissingDependency("Scene image is required before generating its video")
        return await fal.submit_video(stage_input.image_url, stage_input.prompt or DEFAULT_MOTION_PROMPT)

    async def poll_status(self, handle: str) -> PollResult:
        return await fal.video_status(handle)
