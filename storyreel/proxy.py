"""
Vendor proxy endpoints for browser clients.

The browser never holds vendor keys; it posts here and the worker calls the
vendor with the server-side secret.

  POST /functions/fal-proxy       {endpoint, input, method?}  → raw FAL JSON
  POST /functions/media-services  {service, action, ...}      → per-action body

  media-services actions:
    pexels/search           {query, per_page?}   → {photos}
    azure-speech/synthesize {text, voice?}       → {audioContent} (base64 mp3)
    assemblyai/transcribe   {audioUrl}           → {captions} (SRT)

Failures answer `{error, statusCode?, message?}` with the vendor's status,
400 for a bad request and 500 for anything else. Every response carries
permissive CORS headers and OPTIONS preflight is always accepted.
"""

import base64
import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import assemblyai, azure_speech, fal, pexels
from .errors import GenerationError, InvalidInput, VendorRejected
from .polling import poll_until_done

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

proxy_router = APIRouter(prefix="/functions", tags=["proxy"])


# ── Request bodies ───────────────────────────────────────────────────────────

class FalProxyRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)
    input: dict = Field(default_factory=dict)
    method: str = "POST"


class MediaServicesRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    service: str
    action: str


class PexelsSearchParams(BaseModel):
    query: str = Field(..., min_length=1)
    per_page: int = Field(10, ge=1, le=80)


class SynthesizeParams(BaseModel):
    text: str = Field(..., min_length=1)
    voice: str = azure_speech.DEFAULT_VOICE


class TranscribeParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio_url: str = Field(..., min_length=1, alias="audioUrl")


# ── Helpers ──────────────────────────────────────────────────────────────────

def _ok(body: Any) -> JSONResponse:
    return JSONResponse(body, headers=CORS_HEADERS)


def _error(status_code: int, error: str, message: Optional[str] = None, vendor_status: Optional[int] = None) -> JSONResponse:
    body: dict = {"error": error}
    if vendor_status is not None:
        body["statusCode"] = vendor_status
    if message:
        body["message"] = message
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)


def _from_generation_error(e: GenerationError) -> JSONResponse:
    if isinstance(e, VendorRejected) and e.vendor_status:
        return _error(e.vendor_status, e.kind, e.message, vendor_status=e.vendor_status)
    if isinstance(e, InvalidInput):
        return _error(400, e.kind, e.message)
    return _error(e.status_code, e.kind, e.message)


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as e:
        raise InvalidInput("Request body must be JSON") from e
    if not isinstance(body, dict):
        raise InvalidInput("Request body must be a JSON object")
    return body


def _params(schema, body: dict):
    try:
        return schema(**body)
    except ValidationError as e:
        raise InvalidInput(f"Invalid parameters: {e.errors()[0]['msg']}") from e


# ── Media services ───────────────────────────────────────────────────────────

async def _pexels_search(body: dict) -> dict:
    params = _params(PexelsSearchParams, body)
    photos = await pexels.search_images(params.query, per_page=params.per_page)
    return {"photos": [p.model_dump() for p in photos]}


async def _azure_synthesize(body: dict) -> dict:
    params = _params(SynthesizeParams, body)
    audio = await azure_speech.synthesize(params.text, params.voice)
    return {"audioContent": base64.b64encode(audio).decode("ascii")}


async def _assemblyai_transcribe(body: dict) -> dict:
    params = _params(TranscribeParams, body)
    transcript_id = await assemblyai.submit_transcript(params.audio_url)
    captions = await poll_until_done(
        lambda: assemblyai.transcript_status(transcript_id),
        vendor=assemblyai.VENDOR,
    )
    return {"captions": captions}


MEDIA_ACTIONS = {
    ("pexels", "search"): _pexels_search,
    ("azure-speech", "synthesize"): _azure_synthesize,
    ("assemblyai", "transcribe"): _assemblyai_transcribe,
}


# ── Routes ───────────────────────────────────────────────────────────────────

@proxy_router.options("/fal-proxy")
@proxy_router.options("/media-services")
async def preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


@proxy_router.post("/fal-proxy")
async def fal_proxy(request: Request):
    try:
        params = _params(FalProxyRequest, await _json_body(request))
        logger.info(f"fal-proxy → {params.endpoint}")
        return _ok(await fal.run(params.endpoint, params.input, params.method))
    except GenerationError as e:
        logger.warning(f"fal-proxy failed: {e.kind}: {e.message}")
        return _from_generation_error(e)
    except Exception as e:
        logger.error(f"fal-proxy internal error: {e}", exc_info=True)
        return _error(500, "Internal proxy error", str(e))


@proxy_router.post("/media-services")
async def media_services(request: Request):
    try:
        body = await _json_body(request)
        envelope = _params(MediaServicesRequest, body)
        handler = MEDIA_ACTIONS.get((envelope.service, envelope.action))
        if handler is None:
            raise InvalidInput(f"Unsupported service/action: {envelope.service}/{envelope.action}")
        logger.info(f"media-services → {envelope.service}/{envelope.action}")
        return _ok(await handler(body))
    except GenerationError as e:
        logger.warning(f"media-services failed: {e.kind}: {e.message}")
        return _from_generation_error(e)
    except Exception as e:
        logger.error(f"media-services internal error: {e}", exc_info=True)
        return _error(500, "Internal proxy error", str(e))
