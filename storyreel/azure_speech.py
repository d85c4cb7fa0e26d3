"""
Azure Cognitive Services text-to-speech for video-short narration.

Returns raw mp3 bytes; the caller decides where to store them.
"""

import os
import logging
from xml.sax.saxutils import escape, quoteattr

from .errors import InvalidInput, VendorRejected, VendorUnavailable
from .vendor_http import vendor_request

logger = logging.getLogger(__name__)

VENDOR = "Azure Speech"

AZURE_SPEECH_API_KEY = os.environ.get("AZURE_SPEECH_API_KEY", "")
AZURE_SPEECH_REGION = os.environ.get("AZURE_SPEECH_REGION", "eastus")

DEFAULT_VOICE = "en-US-JennyNeural"
OUTPUT_FORMAT = "audio-16khz-128kbitrate-mono-mp3"


def _tts_url() -> str:
    return f"https://{AZURE_SPEECH_REGION}.tts.speech.microsoft.com/cognitiveservices/v1"


def build_ssml(text: str, voice: str = DEFAULT_VOICE) -> str:
    return (
        '<speak version="1.0" xmlns="http://www.w3.org/2001/10/synthesis" xml:lang="en-US">'
        f"<voice name={quoteattr(voice)}>{escape(text)}</voice>"
        "</speak>"
    )


async def synthesize(text: str, voice: str = DEFAULT_VOICE) -> bytes:
    """Convert `text` to mp3 audio."""
    if not text.strip():
        raise InvalidInput("Cannot synthesize speech from empty text")
    if not AZURE_SPEECH_API_KEY:
        raise VendorUnavailable("AZURE_SPEECH_API_KEY not set")

    logger.info(f"Azure TTS ({voice}): {text[:50]}...")
    response = await vendor_request(
        VENDOR,
        "POST",
        _tts_url(),
        headers={
            "Ocp-Apim-Subscription-Key": AZURE_SPEECH_API_KEY,
            "Content-Type": "application/ssml+xml",
            "X-Microsoft-OutputFormat": OUTPUT_FORMAT,
            "User-Agent": "storyreel",
        },
        content=build_ssml(text, voice).encode("utf-8"),
    )
    if not response.content:
        raise VendorRejected(VENDOR, "empty audio response")
    return response.content
