"""
Pexels stock-photo search for video shorts.

Stock photos are not billed, so the short pipeline can fetch several of
them concurrently.
"""

import os
import random
import logging

from pydantic import BaseModel, Field

from .errors import VendorRejected, VendorUnavailable
from .vendor_http import vendor_json, parse_vendor_response

logger = logging.getLogger(__name__)

VENDOR = "Pexels"

PEXELS_API_KEY = os.environ.get("PEXELS_API_KEY", "")
PEXELS_API_BASE = "https://api.pexels.com/v1"


class PexelsSource(BaseModel):
    large: str
    original: str = ""


class PexelsPhoto(BaseModel):
    id: int
    src: PexelsSource
    photographer: str = ""
    alt: str = ""


class PexelsSearchResponse(BaseModel):
    photos: list[PexelsPhoto] = Field(default_factory=list)


def is_configured() -> bool:
    return bool(PEXELS_API_KEY)


async def search_images(query: str, per_page: int = 10, page: int = 1) -> list[PexelsPhoto]:
    if not PEXELS_API_KEY:
        raise VendorUnavailable("PEXELS_API_KEY not set")

    logger.info(f"Searching Pexels for: {query[:80]}")
    payload = await vendor_json(
        VENDOR,
        "GET",
        f"{PEXELS_API_BASE}/search",
        headers={"Authorization": PEXELS_API_KEY},
        params={"query": query, "per_page": per_page, "page": page},
        timeout=30,
    )
    return parse_vendor_response(VENDOR, PexelsSearchResponse, payload).photos


async def get_random_image(query: str) -> str:
    """Pick one of the search results at random and return its large URL."""
    photos = await search_images(query)
    if not photos:
        raise VendorRejected(VENDOR, f"No images found for query: {query}")
    return random.choice(photos).src.large
