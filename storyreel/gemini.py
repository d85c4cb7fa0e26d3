"""
Gemini integration for story writing and image synthesis.

- Text: Gemini 2.0 Flash via REST — scripts, scene breakdowns, prompts
- Image Generation: Gemini Flash image preview via REST — inline PNG bytes
"""

import os
import re
import json
import base64
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import VendorRejected, VendorUnavailable
from .vendor_http import vendor_json, parse_vendor_response

logger = logging.getLogger(__name__)

VENDOR = "Gemini"

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
API_BASE = "https://generativelanguage.googleapis.com/v1beta"

TEXT_MODEL = os.environ.get("GEMINI_TEXT_MODEL", "gemini-2.0-flash")
IMAGE_MODEL = os.environ.get("GEMINI_IMAGE_MODEL", "gemini-2.0-flash-preview-image-generation")


# ── Response schemas ─────────────────────────────────────────────────────────

class InlineData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field("image/png", alias="mimeType")
    data: str


class GeminiPart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    inline_data: Optional[InlineData] = Field(None, alias="inlineData")


class GeminiContent(BaseModel):
    parts: list[GeminiPart] = Field(default_factory=list)


class GeminiCandidate(BaseModel):
    content: GeminiContent


class GeminiResponse(BaseModel):
    candidates: list[GeminiCandidate] = Field(..., min_length=1)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _api_url(model: str) -> str:
    return f"{API_BASE}/models/{model}:generateContent"


def image_prompt_template(prompt: str, style: Optional[str] = None, negative_prompt: Optional[str] = None) -> str:
    """Wrap a scene prompt with the quality hints every image request carries."""
    enhanced = f"Generate a high-quality, detailed image of: {prompt}"
    if style:
        enhanced += f"\nStyle: {style}"
    if negative_prompt:
        enhanced += f"\nAvoid: {negative_prompt}"
    enhanced += "\nEnsure high resolution, good lighting, and clear details."
    return enhanced


def parse_json_response(text: str):
    """
    Parse JSON out of an LLM reply.

    Tries, in order: the raw text, the first fenced code block, and the
    outermost [...] or {...} span. Raises ValueError when nothing parses.
    """
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    for open_ch, close_ch in (("[", "]"), ("{", "}")):
        first = text.find(open_ch)
        last = text.rfind(close_ch)
        if first >= 0 and last > first:
            try:
                return json.loads(text[first:last + 1])
            except json.JSONDecodeError:
                continue

    raise ValueError(f"Gemini returned invalid JSON: {text[:200]}")


async def _generate_content(model: str, parts: list, config: Optional[dict] = None) -> GeminiResponse:
    """Call the generateContent REST endpoint and validate the reply."""
    if not GEMINI_API_KEY:
        raise VendorUnavailable("GEMINI_API_KEY not set")

    body: dict = {"contents": [{"parts": parts}]}
    if config:
        body["generationConfig"] = config

    payload = await vendor_json(
        VENDOR,
        "POST",
        _api_url(model),
        headers={"x-goog-api-key": GEMINI_API_KEY},
        json=body,
        timeout=120,
    )
    return parse_vendor_response(VENDOR, GeminiResponse, payload)


# =========================================================================
# Text generation
# =========================================================================

async def generate_text(prompt: str, temperature: float = 0.7) -> str:
    """Return the concatenated text parts of the first candidate."""
    result = await _generate_content(
        TEXT_MODEL,
        [{"text": prompt}],
        {"temperature": temperature},
    )
    text = "".join(part.text or "" for part in result.candidates[0].content.parts)
    if not text.strip():
        raise VendorRejected(VENDOR, "empty text response")
    return text


# =========================================================================
# Image generation
# =========================================================================

async def generate_image(
    prompt: str,
    style: Optional[str] = None,
    negative_prompt: Optional[str] = None,
) -> tuple[bytes, str]:
    """
    Generate one image.

    Returns:
        (image_bytes, mime_type)
    """
    result = await _generate_content(
        IMAGE_MODEL,
        [{"text": image_prompt_template(prompt, style, negative_prompt)}],
        {"responseModalities": ["TEXT", "IMAGE"], "temperature": 0.4},
    )

    for part in result.candidates[0].content.parts:
        if part.inline_data and part.inline_data.mime_type.startswith("image/"):
            logger.info(f"Gemini image generated ({part.inline_data.mime_type})")
            return base64.b64decode(part.inline_data.data), part.inline_data.mime_type

    raise VendorRejected(VENDOR, "response contained no image data")
