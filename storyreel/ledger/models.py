"""
Pydantic models and enums for the usage ledger.
"""

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Defaults ─────────────────────────────────────────────────────────────────

DEFAULT_IMAGE_LIMIT = int(os.getenv("DEFAULT_IMAGE_LIMIT", "100"))
DEFAULT_VIDEO_LIMIT = int(os.getenv("DEFAULT_VIDEO_LIMIT", "20"))


class ContentKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


def default_limit(kind: ContentKind) -> int:
    return DEFAULT_IMAGE_LIMIT if kind == ContentKind.IMAGE else DEFAULT_VIDEO_LIMIT


# ── Identity ─────────────────────────────────────────────────────────────────

class Identity(BaseModel):
    """An authenticated user or an anonymous browser session."""
    id: str = Field(..., min_length=1)
    email: Optional[str] = None
    name: Optional[str] = None
    is_anonymous: bool = False


# ── Counters ─────────────────────────────────────────────────────────────────

class UsageCounter(BaseModel):
    identity_id: str
    content_kind: ContentKind
    count: int = Field(0, ge=0)
    limit: int = Field(..., gt=0)

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RemainingCounts(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    remaining_images: int = Field(..., ge=0, alias="remainingImages")
    remaining_videos: int = Field(..., ge=0, alias="remainingVideos")

    @classmethod
    def from_counters(cls, counters: dict) -> "RemainingCounts":
        return cls(
            remaining_images=counters[ContentKind.IMAGE].remaining,
            remaining_videos=counters[ContentKind.VIDEO].remaining,
        )


# ── API Request / Response Models ────────────────────────────────────────────

class LimitsUpdateRequest(BaseModel):
    """Administrative override of both limits."""
    image_limit: int = Field(..., gt=0)
    video_limit: int = Field(..., gt=0)


class AdmissionResponse(BaseModel):
    identity_id: str
    kind: ContentKind
    admitted: bool
    remaining: Optional[RemainingCounts] = None
