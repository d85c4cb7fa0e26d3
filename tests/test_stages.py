import asyncio
from unittest.mock import AsyncMock

import pytest

from storyreel import assemblyai, azure_speech, fal, gemini, pexels
from storyreel.errors import Cancelled, InvalidInput, MissingDependency, VendorRejected
from storyreel.pipeline.audio import AudioInput, AudioSynthesisStage
from storyreel.pipeline.captions import CaptionsStage
from storyreel.pipeline.images import ImageInput, ImageSynthesisStage, StockImagesInput, StockImagesStage
from storyreel.pipeline.models import CharacterDetails
from storyreel.pipeline.script import (
    CharacterTemplateStage,
    ImagePromptsInput,
    ImagePromptsStage,
    ShortScriptStage,
    StoryInput,
    StoryScriptStage,
    sentence_prompts,
)
from storyreel.pipeline.video import VideoInput, VideoSynthesisStage
from storyreel.polling import CancellationToken, PollResult, PollStatus


@pytest.fixture
def gemini_text(monkeypatch):
    mock = AsyncMock()
    monkeypatch.setattr(gemini, "generate_text", mock)
    return mock


# ── Script stages ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_character_template_parses_fenced_json(gemini_text):
    gemini_text.return_value = '```json\n{"mainCharacter": "A tall knight", "environment": "castle"}\n```'

    details = await CharacterTemplateStage().execute("a knight's quest")

    assert details.main_character == "A tall knight"
    assert details.environment == "castle"
    assert details.secondary_characters == ""


@pytest.mark.asyncio
async def test_character_template_rejects_prose(gemini_text):
    gemini_text.return_value = "Sorry, I can't help with that."

    with pytest.raises(VendorRejected):
        await CharacterTemplateStage().execute("a knight's quest")


@pytest.mark.asyncio
async def test_story_script_folds_character_into_prompts(gemini_text):
    gemini_text.return_value = '[{"text": "She sets out.", "imagePrompt": "knight on a road"}]'
    character = CharacterDetails(main_character="A tall knight in silver armour")

    scenes = await StoryScriptStage().execute(StoryInput(
        prompt="a quest", num_scenes=1, image_style="watercolor", character=character,
    ))

    assert scenes == [{
        "text": "She sets out.",
        "image_prompt": "A tall knight in silver armour. knight on a road watercolor style.",
    }]
    assert "Main Character: A tall knight in silver armour" in gemini_text.await_args.args[0]


@pytest.mark.asyncio
async def test_story_script_retries_with_simplified_prompt(gemini_text):
    gemini_text.side_effect = [
        "Here is your story! Scene one: ...",
        '[{"text": "One.", "imagePrompt": "a hill"}, {"text": "Two.", "imagePrompt": "a river"}]',
    ]

    scenes = await StoryScriptStage().execute(StoryInput(prompt="a walk", num_scenes=2, image_style="cinematic"))

    assert [s["image_prompt"] for s in scenes] == ["a hill", "a river"]
    assert gemini_text.await_count == 2


@pytest.mark.asyncio
async def test_story_script_gives_up_after_retry(gemini_text):
    gemini_text.return_value = "no json at all"

    with pytest.raises(VendorRejected):
        await StoryScriptStage().execute(StoryInput(prompt="a walk", num_scenes=2, image_style="cinematic"))


@pytest.mark.asyncio
async def test_short_script_falls_back_to_raw_text(gemini_text):
    gemini_text.return_value = "  Did you know octopuses have three hearts?  "

    script = await ShortScriptStage().execute("octopus facts")

    assert script.title == "octopus facts"
    assert script.script == "Did you know octopuses have three hearts?"


@pytest.mark.asyncio
async def test_short_script_rejects_blank_topic(gemini_text):
    with pytest.raises(InvalidInput):
        await ShortScriptStage().execute("   ")
    gemini_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_image_prompts_from_json_array(gemini_text):
    gemini_text.return_value = 'Sure: ["a", "b", "c", "d", "e"]'

    prompts = await ImagePromptsStage().execute(ImagePromptsInput(script="Some script.", count=3))

    assert prompts == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_image_prompts_fall_back_to_sentences(gemini_text):
    gemini_text.return_value = "I would suggest some nice pictures."
    script = "Cats purr. Purring happens when cats are content! It can also mean stress? Nobody fully knows why."

    prompts = await ImagePromptsStage().execute(ImagePromptsInput(script=script))

    assert prompts == sentence_prompts(script)
    assert prompts[0] == "Purring happens when cats are content"


# ── Image stages ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_image_stage_uses_fal_by_default(monkeypatch, artifact_store):
    generate = AsyncMock(return_value="https://fal.media/a.png")
    monkeypatch.setattr(fal, "generate_image", generate)

    url = await ImageSynthesisStage(artifact_store, provider="fal").execute(ImageInput(prompt="a harbour"))

    assert url == "https://fal.media/a.png"
    generate.assert_awaited_once_with("a harbour")


@pytest.mark.asyncio
async def test_image_stage_gemini_uploads_bytes(monkeypatch, artifact_store):
    monkeypatch.setattr(gemini, "generate_image", AsyncMock(return_value=(b"png", "image/png")))

    url = await ImageSynthesisStage(artifact_store, provider="gemini").execute(ImageInput(prompt="a harbour"))

    assert url == "data:image/png;base64,cG5n"


@pytest.mark.asyncio
async def test_stock_images_retry_with_shorter_query(monkeypatch, artifact_store):
    monkeypatch.setattr(pexels, "PEXELS_API_KEY", "pexels-test")
    search = AsyncMock(side_effect=[VendorRejected("Pexels", "No images found"), "https://pexels/cat.jpg"])
    monkeypatch.setattr(pexels, "get_random_image", search)

    urls = await StockImagesStage(artifact_store).execute(StockImagesInput(prompts=["fluffy orange cat sleeping"]))

    assert urls == ["https://pexels/cat.jpg"]
    assert search.await_args_list[1].args == ("fluffy orange",)


@pytest.mark.asyncio
async def test_stock_images_use_gemini_without_pexels(monkeypatch, artifact_store):
    monkeypatch.setattr(pexels, "PEXELS_API_KEY", "")
    generate = AsyncMock(return_value=(b"jpg", "image/jpeg"))
    monkeypatch.setattr(gemini, "generate_image", generate)

    urls = await StockImagesStage(artifact_store).execute(StockImagesInput(prompts=["a", "b"]))

    assert len(urls) == 2
    assert generate.await_count == 2


@pytest.mark.asyncio
async def test_stock_images_failure_stops_the_other_fetches(monkeypatch, artifact_store):
    monkeypatch.setattr(pexels, "PEXELS_API_KEY", "pexels-test")
    cancelled = []

    async def search(query):
        if query.startswith("bad"):
            raise VendorRejected("Pexels", "No images found")
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(query)
            raise
        return f"https://pexels/{query}.jpg"

    monkeypatch.setattr(pexels, "get_random_image", search)

    with pytest.raises(VendorRejected):
        await StockImagesStage(artifact_store).execute(StockImagesInput(prompts=["bad one", "good one", "good two"]))

    assert sorted(cancelled) == ["good one", "good two"]


@pytest.mark.asyncio
async def test_stock_images_stop_on_cancellation(monkeypatch, artifact_store):
    monkeypatch.setattr(pexels, "PEXELS_API_KEY", "")
    upload = AsyncMock()
    monkeypatch.setattr(artifact_store, "upload", upload)
    token = CancellationToken()

    async def generate_image(prompt, style=None):
        token.cancel()
        return b"jpg", "image/jpeg"

    monkeypatch.setattr(gemini, "generate_image", generate_image)

    with pytest.raises(Cancelled):
        await StockImagesStage(artifact_store).execute(StockImagesInput(prompts=["a", "b"]), token)

    upload.assert_not_awaited()


@pytest.mark.asyncio
async def test_stock_images_cancel_while_waiting(monkeypatch, artifact_store):
    monkeypatch.setattr(pexels, "PEXELS_API_KEY", "pexels-test")
    token = CancellationToken()
    cancelled = []

    async def search(query):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(query)
            raise

    monkeypatch.setattr(pexels, "get_random_image", search)
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    with pytest.raises(Cancelled):
        await StockImagesStage(artifact_store).execute(StockImagesInput(prompts=["a", "b"]), token)

    assert sorted(cancelled) == ["a", "b"]


# ── Audio, captions, video ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_audio_stage_stores_mp3(monkeypatch, artifact_store):
    monkeypatch.setattr(azure_speech, "synthesize", AsyncMock(return_value=b"ID3"))

    url = await AudioSynthesisStage(artifact_store).execute(AudioInput(script="Hello"))

    assert url.startswith("data:audio/mpeg;base64,")


@pytest.mark.asyncio
async def test_captions_stage_polls_until_done(monkeypatch):
    monkeypatch.setattr(assemblyai, "submit_transcript", AsyncMock(return_value="t-1"))
    monkeypatch.setattr(assemblyai, "transcript_status", AsyncMock(side_effect=[
        PollResult(status=PollStatus.PROCESSING),
        PollResult(status=PollStatus.DONE, result="1\n00:00:00,000 --> 00:00:01,000\nHi\n"),
    ]))

    captions = await CaptionsStage().execute("https://cdn/a.mp3")

    assert captions.endswith("Hi\n")


@pytest.mark.asyncio
async def test_video_stage_requires_image():
    with pytest.raises(MissingDependency):
        await VideoSynthesisStage().execute(VideoInput(prompt="pan left"))
