"""
Final assembly of a video short.

No rendering happens server-side: the short is the narration plus its
images (the player cross-fades them), so the video URL is the audio URL and
the thumbnail is the first image.
"""

from typing import Optional

from pydantic import BaseModel

from ..errors import MissingDependency
from ..polling import CancellationToken
from .base import PipelineStage
from .models import COMPOSE, ShortScript, VideoShort


class ComposeInput(BaseModel):
    script: ShortScript
    audio_url: str
    image_urls: list[str]
    captions_text: Optional[str] = None
    is_public: bool = False


class ComposeStage(PipelineStage):
    name = COMPOSE

    async def execute(self, stage_input: ComposeInput, token: Optional[CancellationToken] = None) -> VideoShort:
        if not stage_input.audio_url:
            raise MissingDependency("Narration audio is required to compose the short")
        if not stage_input.image_urls:
            raise MissingDependency("At least one image is required to compose the short")

        return VideoShort(
            title=stage_input.script.title,
            description=stage_input.script.description,
            script=stage_input.script.script,
            audio_url=stage_input.audio_url,
            image_urls=stage_input.image_urls,
            captions_text=stage_input.captions_text,
            thumbnail_url=stage_input.image_urls[0],
            video_url=stage_input.audio_url,
            is_public=stage_input.is_public,
        )
