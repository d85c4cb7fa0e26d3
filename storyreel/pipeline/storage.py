"""
Artifact storage for generated content.

Files go to the Supabase Storage bucket under:
  generated_content/{user_id|anonymous}/{kind}s/{uuid}.{ext}

Metadata rows go to `user_content_history`, which backs both the public
gallery (is_public = true, newest first) and a user's own history.
"""

import os
import asyncio
import base64
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field
from supabase import Client

from ..errors import StorageUnavailable
from .models import utc_now

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

ARTIFACT_BUCKET = os.getenv("ARTIFACT_BUCKET", "generated_content")
HISTORY_TABLE = "user_content_history"

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
}


class ArtifactKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class ArtifactRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content_type: ArtifactKind
    content_url: str
    prompt: str = ""
    user_id: Optional[str] = None
    is_public: bool = False
    created_at: str = Field(default_factory=utc_now)
    metadata: dict = Field(default_factory=dict)


# ── Helpers ──────────────────────────────────────────────────────────────────

def artifact_path(user_id: Optional[str], kind: ArtifactKind, mime_type: str) -> str:
    """Bucket key for a new artifact file."""
    ext = EXTENSIONS.get(mime_type, mime_type.split("/")[-1] or "bin")
    return f"{user_id or 'anonymous'}/{kind.value}s/{uuid.uuid4()}.{ext}"


class BaseArtifactStore(ABC):

    @abstractmethod
    async def upload(self, user_id: Optional[str], kind: ArtifactKind, data: bytes, mime_type: str) -> str:
        """Store raw bytes; return a URL the browser can load."""

    @abstractmethod
    async def save_record(self, record: ArtifactRecord) -> ArtifactRecord: ...

    @abstractmethod
    async def list_public(self, limit: int = 20, offset: int = 0) -> list[ArtifactRecord]: ...

    @abstractmethod
    async def list_history(self, user_id: str, limit: int = 50, offset: int = 0) -> list[ArtifactRecord]: ...

    async def persist(
        self,
        user_id: Optional[str],
        kind: ArtifactKind,
        content_url: str,
        prompt: str = "",
        is_public: bool = False,
        metadata: Optional[dict] = None,
    ) -> ArtifactRecord:
        record = ArtifactRecord(
            content_type=kind,
            content_url=content_url,
            prompt=prompt,
            user_id=user_id,
            is_public=is_public,
            metadata=metadata or {},
        )
        saved = await self.save_record(record)
        logger.info(f"Saved {kind.value} artifact {saved.id} for {user_id or 'anonymous'}")
        return saved


# ═════════════════════════════════════════════════════════════════════════════
# Supabase
# ═════════════════════════════════════════════════════════════════════════════

class SupabaseArtifactStore(BaseArtifactStore):

    def __init__(self, client: Optional[Client] = None, bucket: str = ARTIFACT_BUCKET):
        self._client = client
        self.bucket = bucket

    @property
    def client(self) -> Client:
        if self._client is None:
            from ..supabase_client import get_supabase
            self._client = get_supabase()
        return self._client

    async def _call(self, what: str, fn):
        try:
            return await asyncio.to_thread(fn)
        except Exception as e:
            logger.error(f"Artifact store {what} failed: {e}")
            raise StorageUnavailable(f"Artifact store unavailable ({what}): {e}") from e

    async def upload(self, user_id: Optional[str], kind: ArtifactKind, data: bytes, mime_type: str) -> str:
        path = artifact_path(user_id, kind, mime_type)
        bucket = self.client.storage.from_(self.bucket)
        await self._call("upload", lambda: bucket.upload(path, data, {"content-type": mime_type}))
        url = await self._call("public url", lambda: bucket.get_public_url(path))
        logger.info(f"Uploaded {len(data)} bytes → {path}")
        return url

    async def save_record(self, record: ArtifactRecord) -> ArtifactRecord:
        row = record.model_dump(mode="json")
        result = await self._call(
            "insert",
            lambda: self.client.table(HISTORY_TABLE).insert(row).execute(),
        )
        if result.data:
            return ArtifactRecord(**result.data[0])
        return record

    async def list_public(self, limit: int = 20, offset: int = 0) -> list[ArtifactRecord]:
        result = await self._call(
            "gallery",
            lambda: self.client.table(HISTORY_TABLE)
            .select("*")
            .eq("is_public", True)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute(),
        )
        return [ArtifactRecord(**row) for row in result.data or []]

    async def list_history(self, user_id: str, limit: int = 50, offset: int = 0) -> list[ArtifactRecord]:
        result = await self._call(
            "history",
            lambda: self.client.table(HISTORY_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute(),
        )
        return [ArtifactRecord(**row) for row in result.data or []]


# ═════════════════════════════════════════════════════════════════════════════
# In-memory
# ═════════════════════════════════════════════════════════════════════════════

class InMemoryArtifactStore(BaseArtifactStore):
    """Keeps records in a list and files as data: URLs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: list[ArtifactRecord] = []

    async def upload(self, user_id: Optional[str], kind: ArtifactKind, data: bytes, mime_type: str) -> str:
        return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"

    async def save_record(self, record: ArtifactRecord) -> ArtifactRecord:
        with self._lock:
            self._records.append(record)
        return record

    def _newest_first(self, predicate) -> list[ArtifactRecord]:
        with self._lock:
            matching = [r for r in self._records if predicate(r)]
        return sorted(matching, key=lambda r: r.created_at, reverse=True)

    async def list_public(self, limit: int = 20, offset: int = 0) -> list[ArtifactRecord]:
        return self._newest_first(lambda r: r.is_public)[offset:offset + limit]

    async def list_history(self, user_id: str, limit: int = 50, offset: int = 0) -> list[ArtifactRecord]:
        return self._newest_first(lambda r: r.user_id == user_id)[offset:offset + limit]


def build_default_artifact_store() -> BaseArtifactStore:
    from ..supabase_client import is_configured

    if is_configured():
        return SupabaseArtifactStore()
    logger.warning("Artifact store: Supabase not configured — artifacts kept in memory")
    return InMemoryArtifactStore()
