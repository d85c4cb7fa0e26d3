"""
FAL.AI integration — image synthesis (fast-sdxl) and image-to-video (wan-i2v).

Images come back synchronously from fal.run. Videos go through the queue
API: submit, then poll the request status until COMPLETED, then fetch the
result payload.
"""

import os
import logging
from typing import Optional

from pydantic import BaseModel, Field

from .errors import VendorUnavailable
from .polling import PollResult, PollStatus
from .vendor_http import vendor_json, parse_vendor_response

logger = logging.getLogger(__name__)

VENDOR = "FAL.AI"

FAL_KEY = os.environ.get("FAL_KEY") or os.environ.get("FAL_API_KEY", "")
FAL_RUN_BASE = "https://fal.run"
FAL_QUEUE_BASE = "https://queue.fal.run"

IMAGE_ENDPOINT = os.environ.get("FAL_IMAGE_ENDPOINT", "fal-ai/fast-sdxl")
VIDEO_ENDPOINT = os.environ.get("FAL_VIDEO_ENDPOINT", "fal-ai/wan-i2v")

DEFAULT_NEGATIVE_PROMPT = "blurry, bad quality, distorted"

# Queue states → our poll vocabulary
QUEUE_STATUS_MAP = {
    "IN_QUEUE": PollStatus.QUEUED,
    "IN_PROGRESS": PollStatus.PROCESSING,
    "COMPLETED": PollStatus.DONE,
}


# ── Response schemas ─────────────────────────────────────────────────────────

class FalFile(BaseModel):
    url: str


class FalImageResponse(BaseModel):
    images: list[FalFile] = Field(..., min_length=1)


class FalVideoResponse(BaseModel):
    video: FalFile


class FalQueueSubmit(BaseModel):
    request_id: str


class FalQueueStatus(BaseModel):
    status: str
    error: Optional[str] = None


# ── Helpers ──────────────────────────────────────────────────────────────────

def _headers() -> dict:
    if not FAL_KEY:
        raise VendorUnavailable("FAL_KEY not set")
    return {
        "Authorization": f"Key {FAL_KEY}",
        "Content-Type": "application/json",
    }


async def run(endpoint: str, payload: Optional[dict] = None, method: str = "POST") -> dict:
    """Synchronous model call on fal.run; returns the raw JSON."""
    logger.info(f"FAL run: {endpoint}")
    kwargs = {"json": payload or {}} if method.upper() != "GET" else {}
    return await vendor_json(
        VENDOR,
        method.upper(),
        f"{FAL_RUN_BASE}/{endpoint}",
        headers=_headers(),
        timeout=180,
        **kwargs,
    )


# =========================================================================
# Image synthesis
# =========================================================================

async def generate_image(
    prompt: str,
    negative_prompt: Optional[str] = None,
    image_size: str = "square_hd",
    num_inference_steps: int = 30,
    guidance_scale: float = 7.5,
) -> str:
    """Generate one image and return its (vendor-hosted) URL."""
    payload = await run(IMAGE_ENDPOINT, {
        "prompt": prompt,
        "negative_prompt": negative_prompt or DEFAULT_NEGATIVE_PROMPT,
        "image_size": image_size,
        "num_inference_steps": num_inference_steps,
        "guidance_scale": guidance_scale,
    })
    result = parse_vendor_response(VENDOR, FalImageResponse, payload)
    return result.images[0].url


# =========================================================================
# Image-to-video (queue API)
# =========================================================================

async def submit_video(
    image_url: str,
    prompt: str,
    num_frames: int = 81,
    frames_per_second: int = 16,
    resolution: str = "720p",
) -> str:
    """Queue an image-to-video request; returns the FAL request id."""
    payload = await vendor_json(
        VENDOR,
        "POST",
        f"{FAL_QUEUE_BASE}/{VIDEO_ENDPOINT}",
        headers=_headers(),
        json={
            "prompt": prompt,
            "image_url": image_url,
            "num_frames": num_frames,
            "frames_per_second": frames_per_second,
            "resolution": resolution,
            "num_inference_steps": 30,
            "enable_safety_checker": True,
        },
    )
    submitted = parse_vendor_response(VENDOR, FalQueueSubmit, payload)
    logger.info(f"FAL video submitted: request_id={submitted.request_id}")
    return submitted.request_id


async def video_status(request_id: str) -> PollResult:
    """Poll one queued video request, fetching the result once COMPLETED."""
    base = f"{FAL_QUEUE_BASE}/{VIDEO_ENDPOINT}/requests/{request_id}"
    payload = await vendor_json(VENDOR, "GET", f"{base}/status", headers=_headers(), timeout=30)
    status = parse_vendor_response(VENDOR, FalQueueStatus, payload)

    mapped = QUEUE_STATUS_MAP.get(status.status.upper())
    if mapped is None:
        return PollResult(status=PollStatus.FAILED, error=status.error or f"unexpected status {status.status}")
    if mapped != PollStatus.DONE:
        return PollResult(status=mapped)

    result_payload = await vendor_json(VENDOR, "GET", base, headers=_headers(), timeout=30)
    video = parse_vendor_response(VENDOR, FalVideoResponse, result_payload)
    return PollResult(status=PollStatus.DONE, result=video.video.url)
