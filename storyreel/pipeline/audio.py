"""
Narration for a video short: Azure TTS, stored as an mp3 artifact.
"""

import logging
from typing import Optional

from pydantic import BaseModel

from .. import azure_speech
from ..polling import CancellationToken
from .base import PipelineStage
from .models import AUDIO
from .storage import ArtifactKind, BaseArtifactStore

logger = logging.getLogger(__name__)


class AudioInput(BaseModel):
    script: str
    voice: str = azure_speech.DEFAULT_VOICE
    user_id: Optional[str] = None


class AudioSynthesisStage(PipelineStage):
    name = AUDIO
    vendor = azure_speech.VENDOR

    def __init__(self, store: BaseArtifactStore):
        self.store = store

    async def execute(self, stage_input: AudioInput, token: Optional[CancellationToken] = None) -> str:
        audio = await azure_speech.synthesize(stage_input.script, stage_input.voice)
        if token:
            token.raise_if_cancelled()
        url = await self.store.upload(stage_input.user_id, ArtifactKind.AUDIO, audio, "audio/mpeg")
        logger.info(f"Narration stored ({len(audio)} bytes)")
        return url
