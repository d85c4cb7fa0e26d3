"""
FastAPI routes for the generation pipeline.

Pipeline Endpoints:
  POST /pipeline/story                              — Start a story job
  POST /pipeline/short                              — Start a video-short job
  GET  /pipeline/jobs/{id}                          — Job status and stages
  POST /pipeline/jobs/{id}/cancel                   — Cancel a running job
  POST /pipeline/story/{id}/scenes/{index}/image    — Re-run a failed scene image
  POST /pipeline/story/{id}/scenes/{index}/video    — Generate / re-run a scene video

Gallery Endpoints:
  GET  /gallery              — Public artifacts, newest first
  GET  /history/{user_id}    — A user's own artifacts
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ..dependencies import get_artifact_store, get_generation_service
from .models import PipelineJob, ShortRequest, StoryRequest
from .orchestrator import GenerationService
from .storage import ArtifactRecord, BaseArtifactStore

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Pipeline Router
# ═════════════════════════════════════════════════════════════════════════════

pipeline_router = APIRouter(prefix="/pipeline", tags=["pipeline"])


def _job_or_404(service: GenerationService, job_id: str) -> PipelineJob:
    job = service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@pipeline_router.post("/story", response_model=PipelineJob, status_code=202)
async def start_story(
    request: StoryRequest,
    service: GenerationService = Depends(get_generation_service),
):
    """Create a story job and run it in the background."""
    job = service.create_story_job(request)
    service.start(job.job_id)
    return job


@pipeline_router.post("/short", response_model=PipelineJob, status_code=202)
async def start_short(
    request: ShortRequest,
    service: GenerationService = Depends(get_generation_service),
):
    """Create a video-short job and run it in the background."""
    job = service.create_short_job(request)
    service.start(job.job_id)
    return job


@pipeline_router.get("/jobs/{job_id}", response_model=PipelineJob)
async def get_job(job_id: str, service: GenerationService = Depends(get_generation_service)):
    return _job_or_404(service, job_id)


@pipeline_router.post("/jobs/{job_id}/cancel", response_model=PipelineJob)
async def cancel_job(job_id: str, service: GenerationService = Depends(get_generation_service)):
    _job_or_404(service, job_id)
    return service.cancel(job_id)


@pipeline_router.post("/story/{job_id}/scenes/{scene_index}/image", response_model=PipelineJob)
async def regenerate_scene_image(
    job_id: str,
    scene_index: int,
    service: GenerationService = Depends(get_generation_service),
):
    _job_or_404(service, job_id)
    return await service.generate_scene_image(job_id, scene_index)


@pipeline_router.post("/story/{job_id}/scenes/{scene_index}/video", response_model=PipelineJob)
async def generate_scene_video(
    job_id: str,
    scene_index: int,
    service: GenerationService = Depends(get_generation_service),
):
    _job_or_404(service, job_id)
    return await service.generate_scene_video(job_id, scene_index)


# ═════════════════════════════════════════════════════════════════════════════
# Gallery Router
# ═════════════════════════════════════════════════════════════════════════════

gallery_router = APIRouter(tags=["gallery"])


@gallery_router.get("/gallery", response_model=list[ArtifactRecord])
async def public_gallery(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    store: BaseArtifactStore = Depends(get_artifact_store),
):
    return await store.list_public(limit=limit, offset=offset)


@gallery_router.get("/history/{user_id}", response_model=list[ArtifactRecord])
async def user_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: BaseArtifactStore = Depends(get_artifact_store),
):
    return await store.list_history(user_id, limit=limit, offset=offset)
