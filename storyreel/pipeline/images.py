"""
Image stages.

  - ImageSynthesisStage: one generated image per story scene (FAL fast-sdxl,
    or Gemini image when IMAGE_PROVIDER=gemini).
  - StockImagesStage: a handful of illustrative images for a short, from
    Pexels search, or generated by Gemini when Pexels is not configured.
    All images of one short are fetched concurrently.
"""

import os
import asyncio
import logging
from typing import Optional

from pydantic import BaseModel

from .. import fal, gemini, pexels
from ..errors import Cancelled, GenerationError, InvalidInput
from ..polling import CancellationToken
from .base import PipelineStage
from .models import IMAGES
from .storage import ArtifactKind, BaseArtifactStore

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

IMAGE_PROVIDER = os.getenv("IMAGE_PROVIDER", "fal").lower()

STOCK_GEMINI_STYLE = "high quality, detailed, cinematic"
STOCK_GEMINI_RETRY_STYLE = "photorealistic, detailed"


class ImageInput(BaseModel):
    prompt: str
    user_id: Optional[str] = None


class StockImagesInput(BaseModel):
    prompts: list[str]
    user_id: Optional[str] = None


async def _gemini_image_url(
    store: BaseArtifactStore,
    user_id: Optional[str],
    prompt: str,
    style: Optional[str] = None,
    token: Optional[CancellationToken] = None,
) -> str:
    data, mime_type = await gemini.generate_image(prompt, style=style)
    if token:
        token.raise_if_cancelled()
    return await store.upload(user_id, ArtifactKind.IMAGE, data, mime_type)


class ImageSynthesisStage(PipelineStage):
    name = "image"

    def __init__(self, store: BaseArtifactStore, provider: Optional[str] = None):
        self.store = store
        self.provider = (provider or IMAGE_PROVIDER).lower()
        self.vendor = gemini.VENDOR if self.provider == "gemini" else fal.VENDOR

    async def execute(self, stage_input: ImageInput, token: Optional[CancellationToken] = None) -> str:
        if not stage_input.prompt.strip():
            raise InvalidInput("Image prompt must not be empty")
        if token:
            token.raise_if_cancelled()

        logger.info(f"[{self.provider}] Generating image: {stage_input.prompt[:60]}...")
        if self.provider == "gemini":
            return await _gemini_image_url(self.store, stage_input.user_id, stage_input.prompt, token=token)
        return await fal.generate_image(stage_input.prompt)


def simplified_query(prompt: str, words: int) -> str:
    return " ".join(prompt.split()[:words])


class StockImagesStage(PipelineStage):
    name = IMAGES

    def __init__(self, store: BaseArtifactStore):
        self.store = store

    @property
    def use_pexels(self) -> bool:
        return pexels.is_configured()

    async def _one(self, prompt: str, user_id: Optional[str], token: Optional[CancellationToken] = None) -> str:
        if self.use_pexels:
            try:
                return await pexels.get_random_image(prompt)
            except GenerationError as e:
                if token:
                    token.raise_if_cancelled()
                query = simplified_query(prompt, 2)
                logger.warning(f"Pexels search for '{prompt[:40]}' failed ({e.kind}), retrying with '{query}'")
                return await pexels.get_random_image(query)

        try:
            return await _gemini_image_url(self.store, user_id, prompt, STOCK_GEMINI_STYLE, token)
        except Cancelled:
            raise
        except GenerationError as e:
            if token:
                token.raise_if_cancelled()
            retry = "High quality image of " + simplified_query(prompt, 3)
            logger.warning(f"Gemini image for '{prompt[:40]}' failed ({e.kind}), retrying with '{retry}'")
            return await _gemini_image_url(self.store, user_id, retry, STOCK_GEMINI_RETRY_STYLE, token)

    async def execute(self, stage_input: StockImagesInput, token: Optional[CancellationToken] = None) -> list[str]:
        prompts = [p for p in stage_input.prompts if p.strip()]
        if not prompts:
            raise InvalidInput("At least one image prompt is required")
        if token:
            token.raise_if_cancelled()

        self.vendor = pexels.VENDOR if self.use_pexels else gemini.VENDOR
        logger.info(f"Fetching {len(prompts)} images via {self.vendor}")

        # First failure (or cancellation) stops the remaining fetches.
        tasks = [asyncio.ensure_future(self._one(p, stage_input.user_id, token)) for p in prompts]
        watcher = asyncio.ensure_future(token.wait()) if token else None
        try:
            pending = set(tasks)
            while pending:
                waiting = pending | {watcher} if watcher else pending
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if watcher in done:
                    raise Cancelled("Job was cancelled")
                for task in done:
                    task.result()
                pending -= done
            return [task.result() for task in tasks]
        finally:
            for task in tasks:
                task.cancel()
            if watcher:
                watcher.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
