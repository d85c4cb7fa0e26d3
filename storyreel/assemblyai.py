"""
AssemblyAI transcription → SRT captions.

Transcription is asynchronous on AssemblyAI's side: submit the audio URL,
poll the transcript until `completed`, then download the SRT export.
"""

import os
import base64
import logging
from typing import Optional

from pydantic import BaseModel

from .errors import InvalidInput, VendorUnavailable
from .polling import PollResult, PollStatus
from .vendor_http import vendor_json, vendor_request, parse_vendor_response

logger = logging.getLogger(__name__)

VENDOR = "AssemblyAI"

ASSEMBLYAI_API_KEY = os.environ.get("ASSEMBLYAI_API_KEY", "")
ASSEMBLYAI_API_BASE = "https://api.assemblyai.com/v2"

STATUS_MAP = {
    "queued": PollStatus.QUEUED,
    "processing": PollStatus.PROCESSING,
    "completed": PollStatus.DONE,
    "error": PollStatus.FAILED,
}


class UploadResponse(BaseModel):
    upload_url: str


class TranscriptResponse(BaseModel):
    id: str
    status: str
    error: Optional[str] = None


def _headers() -> dict:
    if not ASSEMBLYAI_API_KEY:
        raise VendorUnavailable("ASSEMBLYAI_API_KEY not set")
    return {"authorization": ASSEMBLYAI_API_KEY}


def decode_data_url(data_url: str) -> bytes:
    """Return the payload of a base64 `data:` URL."""
    try:
        _, b64data = data_url.split(",", 1)
        return base64.b64decode(b64data)
    except ValueError as e:
        raise InvalidInput("Malformed data URL for audio") from e


async def upload_audio(audio: bytes) -> str:
    payload = await vendor_json(
        VENDOR,
        "POST",
        f"{ASSEMBLYAI_API_BASE}/upload",
        headers={**_headers(), "content-type": "application/octet-stream"},
        content=audio,
    )
    return parse_vendor_response(VENDOR, UploadResponse, payload).upload_url


async def submit_transcript(audio_url: str) -> str:
    """Start a transcript for `audio_url` (uploading inline audio first)."""
    if audio_url.startswith("data:"):
        audio_url = await upload_audio(decode_data_url(audio_url))

    payload = await vendor_json(
        VENDOR,
        "POST",
        f"{ASSEMBLYAI_API_BASE}/transcript",
        headers=_headers(),
        json={"audio_url": audio_url, "speaker_labels": False, "format_text": True},
    )
    transcript = parse_vendor_response(VENDOR, TranscriptResponse, payload)
    logger.info(f"AssemblyAI transcript submitted: id={transcript.id}")
    return transcript.id


async def transcript_status(transcript_id: str) -> PollResult:
    """Poll a transcript; once completed, the result is its SRT export."""
    payload = await vendor_json(
        VENDOR,
        "GET",
        f"{ASSEMBLYAI_API_BASE}/transcript/{transcript_id}",
        headers=_headers(),
        timeout=30,
    )
    transcript = parse_vendor_response(VENDOR, TranscriptResponse, payload)

    mapped = STATUS_MAP.get(transcript.status)
    if mapped is None:
        return PollResult(status=PollStatus.FAILED, error=f"unexpected status {transcript.status}")
    if mapped == PollStatus.FAILED:
        return PollResult(status=mapped, error=transcript.error or "transcription failed")
    if mapped != PollStatus.DONE:
        return PollResult(status=mapped)

    srt = await vendor_request(
        VENDOR,
        "GET",
        f"{ASSEMBLYAI_API_BASE}/transcript/{transcript_id}/srt",
        headers=_headers(),
        timeout=30,
    )
    return PollResult(status=PollStatus.DONE, result=srt.text)
