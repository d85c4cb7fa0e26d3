"""
Text stages backed by Gemini: character sheet, story scenes, short script
and image-prompt derivation.

LLM output is only loosely structured, so each stage parses leniently and
falls back where a usable answer can still be salvaged.
"""

import logging
import re
from typing import Optional

from pydantic import BaseModel, ValidationError

from .. import gemini
from ..errors import InvalidInput, VendorRejected
from ..polling import CancellationToken
from .base import PipelineStage
from .models import (
    CHARACTER_TEMPLATE,
    IMAGE_PROMPTS,
    SHORT_SCRIPT,
    STORY_SCRIPT,
    CharacterDetails,
    ShortScript,
)

logger = logging.getLogger(__name__)

# ── Prompts ──────────────────────────────────────────────────────────────────

CHARACTER_PROMPT = """Create detailed character descriptions for a story about: "{prompt}".
Provide this information in valid JSON format only:
{{
  "mainCharacter": "Detailed description including age, gender, appearance, clothing and distinctive features",
  "secondaryCharacters": "Descriptions of other important characters",
  "environment": "Description of the main setting/environment",
  "styleNotes": "Specific visual style requirements"
}}

Important: Only return valid JSON without any additional text or explanations."""

STORY_PROMPT = """{character_context}Create a {num_scenes}-scene story about: "{prompt}".

Requirements:
1. Maintain strict consistency with provided character details
2. Each scene should naturally progress the story
3. For each scene provide:
   - Narrative text (include character actions/dialogue)
   - Detailed image prompt that maintains visual consistency

Image Prompt Guidelines:
- Always reference the established character details
- Maintain consistent clothing/hairstyles/features
- Keep environment/style coherent
- Use same character names if provided
- The image style should be {image_style}

Format response as a JSON array following this exact structure:
[
  {{
    "text": "Scene narrative...",
    "imagePrompt": "Detailed prompt with consistent characters..."
  }}
]

Important: Only return valid JSON without any other text or markdown."""

SIMPLIFIED_STORY_PROMPT = """Create a simple {num_scenes}-scene story about "{prompt}".
Each scene should have:
1. A paragraph of story text
2. An image description in {image_style} style

Return as JSON array like: [{{"text":"...","imagePrompt":"..."}}]"""

SHORT_SCRIPT_PROMPT = """Generate a SHORT script for a social media video about the following topic: "{topic}"

The script should:
1. Be 30-60 seconds long when read aloud
2. Be engaging and straight to the point
3. Be written in a conversational tone
4. Include an attention-grabbing intro and a clear call to action

Format your response as a JSON object with:
{{
  "title": "Catchy title for the video",
  "description": "Brief description of the video",
  "script": "The full script text"
}}

IMPORTANT: Keep the script SHORT - no more than 100-150 words total!"""

IMAGE_PROMPTS_PROMPT = """Based on this script for a short video:
"{script}"

Generate {count} descriptive image prompts that would work well for this video.
Each prompt should describe a scene that complements different parts of the script.

Format your response as a JSON array of strings, with each string being an image prompt.
Example: ["image prompt 1", "image prompt 2", "image prompt 3"]

Make the prompts descriptive enough for high-quality image generation."""

FALLBACK_PROMPT_COUNT = 4


class SceneDraft(BaseModel):
    text: str
    imagePrompt: str


class StoryInput(BaseModel):
    prompt: str
    num_scenes: int
    image_style: str
    character: Optional[CharacterDetails] = None


class ImagePromptsInput(BaseModel):
    script: str
    count: int = FALLBACK_PROMPT_COUNT


def _require_text(value: str, what: str) -> str:
    if not value or not value.strip():
        raise InvalidInput(f"{what} must not be empty")
    return value.strip()


def character_context(character: Optional[CharacterDetails]) -> str:
    if not character or not character.main_character:
        return ""
    return (
        f"Main Character: {character.main_character}\n"
        f"Secondary Characters: {character.secondary_characters or 'none'}\n"
        f"Environment: {character.environment or 'unspecified'}\n"
        f"Style: {character.style_notes or 'unspecified'}\n\n"
    )


def scene_image_prompt(image_prompt: str, image_style: str, character: Optional[CharacterDetails]) -> str:
    """Fold the main character and the style into one scene's image prompt."""
    if character and character.main_character:
        return f"{character.main_character}. {image_prompt} {image_style} style."
    return f"{image_prompt} {image_style} style."


# ═════════════════════════════════════════════════════════════════════════════
# Story
# ═════════════════════════════════════════════════════════════════════════════

class CharacterTemplateStage(PipelineStage):
    name = CHARACTER_TEMPLATE
    vendor = gemini.VENDOR

    async def execute(self, stage_input: str, token: Optional[CancellationToken] = None) -> CharacterDetails:
        prompt = _require_text(stage_input, "Story prompt")
        response = await gemini.generate_text(CHARACTER_PROMPT.format(prompt=prompt))
        try:
            parsed = gemini.parse_json_response(response)
        except ValueError as e:
            raise VendorRejected(self.vendor, f"character template was not JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise VendorRejected(self.vendor, "character template was not a JSON object")
        details = CharacterDetails(
            main_character=str(parsed.get("mainCharacter") or ""),
            secondary_characters=str(parsed.get("secondaryCharacters") or ""),
            environment=str(parsed.get("environment") or ""),
            style_notes=str(parsed.get("styleNotes") or ""),
        )
        if not any([details.main_character, details.secondary_characters, details.environment, details.style_notes]):
            raise VendorRejected(self.vendor, "character template had no usable fields")
        return details


class StoryScriptStage(PipelineStage):
    """Break a story idea into scenes of narrative text plus image prompt."""

    name = STORY_SCRIPT
    vendor = gemini.VENDOR

    async def execute(self, stage_input: StoryInput, token: Optional[CancellationToken] = None) -> list[dict]:
        _require_text(stage_input.prompt, "Story prompt")

        response = await gemini.generate_text(STORY_PROMPT.format(
            character_context=character_context(stage_input.character),
            num_scenes=stage_input.num_scenes,
            prompt=stage_input.prompt,
            image_style=stage_input.image_style,
        ))
        drafts = self._parse(response)
        if drafts is not None:
            return [
                {
                    "text": d.text,
                    "image_prompt": scene_image_prompt(d.imagePrompt, stage_input.image_style, stage_input.character),
                }
                for d in drafts
            ]

        logger.warning("Story response unparseable — retrying with simplified prompt")
        if token:
            token.raise_if_cancelled()
        response = await gemini.generate_text(SIMPLIFIED_STORY_PROMPT.format(
            num_scenes=stage_input.num_scenes,
            prompt=stage_input.prompt,
            image_style=stage_input.image_style,
        ))
        drafts = self._parse(response)
        if drafts is None:
            raise VendorRejected(self.vendor, "story response could not be parsed into scenes")
        return [{"text": d.text, "image_prompt": d.imagePrompt} for d in drafts]

    @staticmethod
    def _parse(response: str) -> Optional[list[SceneDraft]]:
        try:
            parsed = gemini.parse_json_response(response)
        except ValueError:
            return None
        if not isinstance(parsed, list) or not parsed:
            return None
        try:
            return [SceneDraft(**scene) for scene in parsed]
        except (TypeError, ValidationError):
            return None


# ═════════════════════════════════════════════════════════════════════════════
# Short
# ═════════════════════════════════════════════════════════════════════════════

class ShortScriptStage(PipelineStage):
    name = SHORT_SCRIPT
    vendor = gemini.VENDOR

    async def execute(self, stage_input: str, token: Optional[CancellationToken] = None) -> ShortScript:
        topic = _require_text(stage_input, "Topic")
        response = await gemini.generate_text(SHORT_SCRIPT_PROMPT.format(topic=topic))

        match = re.search(r"\{[\s\S]*\}", response)
        if match:
            try:
                parsed = gemini.parse_json_response(match.group(0))
                if isinstance(parsed, dict) and parsed.get("script"):
                    return ShortScript(
                        title=parsed.get("title") or topic,
                        description=parsed.get("description") or "",
                        script=parsed["script"],
                    )
            except ValueError:
                pass

        logger.warning(f"Short script for '{topic[:40]}' was not JSON — using raw text")
        return ShortScript(
            title=topic,
            description=f"AI-generated video about {topic}",
            script=response.strip(),
        )


def sentence_prompts(script: str, count: int = FALLBACK_PROMPT_COUNT) -> list[str]:
    """Fallback prompts: the first sentences of the script longer than 10 chars."""
    sentences = [s.strip() for s in re.split(r"[.!?]+", script)]
    return [s for s in sentences if len(s) > 10][:count]


class ImagePromptsStage(PipelineStage):
    name = IMAGE_PROMPTS
    vendor = gemini.VENDOR

    async def execute(self, stage_input: ImagePromptsInput, token: Optional[CancellationToken] = None) -> list[str]:
        script = _require_text(stage_input.script, "Script")
        response = await gemini.generate_text(
            IMAGE_PROMPTS_PROMPT.format(script=script, count=stage_input.count)
        )

        prompts = None
        match = re.search(r"\[[\s\S]*\]", response)
        if match:
            try:
                parsed = gemini.parse_json_response(match.group(0))
                if isinstance(parsed, list):
                    prompts = [str(p).strip() for p in parsed if str(p).strip()]
            except ValueError:
                pass

        if not prompts:
            logger.warning("Image prompts were not a JSON array — deriving from script sentences")
            prompts = sentence_prompts(script, stage_input.count)
        if not prompts:
            raise VendorRejected(self.vendor, "no usable image prompts")
        return prompts[:stage_input.count]
