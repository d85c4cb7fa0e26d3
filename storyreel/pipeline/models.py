"""
Pydantic models and enums for the generation pipeline.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from ..azure_speech import DEFAULT_VOICE


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Status Enums ─────────────────────────────────────────────────────────────

class JobKind(str, Enum):
    STORY = "story"
    SHORT = "short"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PARTIAL = "partial"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATUSES = {JobStatus.PARTIAL, JobStatus.COMPLETE, JobStatus.FAILED}


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ── Stage names ──────────────────────────────────────────────────────────────

CHARACTER_TEMPLATE = "character_template"
STORY_SCRIPT = "story_script"
SHORT_SCRIPT = "script"
IMAGE_PROMPTS = "image_prompts"
IMAGES = "images"
AUDIO = "audio"
CAPTIONS = "captions"
COMPOSE = "compose"


def scene_image_stage(index: int) -> str:
    return f"scene_{index}_image"


def scene_video_stage(index: int) -> str:
    return f"scene_{index}_video"


# ── Stage Result ─────────────────────────────────────────────────────────────

class StageResult(BaseModel):
    stage_name: str
    status: StageStatus = StageStatus.PENDING
    optional: bool = False
    scene_index: Optional[int] = None
    output: Any = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    attempted_at: Optional[str] = None


# ── Story ────────────────────────────────────────────────────────────────────

class CharacterDetails(BaseModel):
    """Character sheet folded into every scene prompt for visual consistency."""
    model_config = ConfigDict(populate_by_name=True)

    main_character: str = Field("", alias="mainCharacter")
    secondary_characters: str = Field("", alias="secondaryCharacters")
    environment: str = ""
    style_notes: str = Field("", alias="styleNotes")


class StoryScene(BaseModel):
    scene_index: int
    narrative_text: str
    image_prompt: str
    image_url: Optional[str] = None
    video_url: Optional[str] = None


# ── Short ────────────────────────────────────────────────────────────────────

class ShortScript(BaseModel):
    title: str
    description: str = ""
    script: str


class VideoShort(BaseModel):
    title: str
    description: str = ""
    script: str
    audio_url: str
    image_urls: list[str]
    captions_text: Optional[str] = None
    thumbnail_url: Optional[str] = None
    video_url: str
    is_public: bool = False


# ── Job ──────────────────────────────────────────────────────────────────────

class PipelineJob(BaseModel):
    job_id: str
    kind: JobKind
    identity_id: str
    is_anonymous: bool = False
    is_public: bool = False
    status: JobStatus = JobStatus.PENDING
    stages: list[StageResult] = Field(default_factory=list)
    scenes: list[StoryScene] = Field(default_factory=list)
    character: Optional[CharacterDetails] = None
    short: Optional[VideoShort] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    @computed_field
    @property
    def progress_pct(self) -> int:
        if not self.stages:
            return 0
        done = sum(1 for s in self.stages if s.status == StageStatus.SUCCEEDED)
        return int(done * 100 / len(self.stages))

    @computed_field
    @property
    def current_stage(self) -> Optional[str]:
        for stage in self.stages:
            if stage.status == StageStatus.RUNNING:
                return stage.stage_name
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def stage(self, name: str) -> StageResult:
        for stage in self.stages:
            if stage.stage_name == name:
                return stage
        raise KeyError(name)

    def has_stage(self, name: str) -> bool:
        return any(s.stage_name == name for s in self.stages)

    def touch(self):
        self.updated_at = utc_now()


# ── API Request Models ───────────────────────────────────────────────────────

class StoryRequest(BaseModel):
    """Story with N illustrated scenes (and optionally a clip per scene)."""
    identity_id: str = Field(..., min_length=1)
    is_anonymous: bool = False
    prompt: str = Field(..., min_length=1, description="Story idea")
    num_scenes: int = Field(3, ge=1, le=10)
    image_style: str = "cinematic"
    character: Optional[CharacterDetails] = Field(
        None, description="Skip the character-template stage and use these details"
    )
    generate_videos: bool = False
    is_public: bool = False


class ShortRequest(BaseModel):
    """Narrated video short from a topic."""
    identity_id: str = Field(..., min_length=1)
    is_anonymous: bool = False
    topic: str = Field(..., min_length=1)
    image_count: int = Field(4, ge=1, le=8)
    voice: str = DEFAULT_VOICE
    include_captions: bool = False
    is_public: bool = False
