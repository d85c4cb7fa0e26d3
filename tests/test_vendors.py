import base64
import json

import httpx
import pytest

from storyreel import assemblyai, azure_speech, fal, gemini, pexels
from storyreel.errors import InvalidInput, VendorRejected, VendorUnavailable
from storyreel.polling import PollStatus


@pytest.fixture
def vendor_keys(monkeypatch):
    monkeypatch.setattr(fal, "FAL_KEY", "fal-test")
    monkeypatch.setattr(gemini, "GEMINI_API_KEY", "gemini-test")
    monkeypatch.setattr(pexels, "PEXELS_API_KEY", "pexels-test")
    monkeypatch.setattr(azure_speech, "AZURE_SPEECH_API_KEY", "azure-test")
    monkeypatch.setattr(assemblyai, "ASSEMBLYAI_API_KEY", "aai-test")


def gemini_reply(*parts):
    return {"candidates": [{"content": {"parts": list(parts)}}]}


# ── FAL ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fal_image_returns_first_url(vendor_keys, mock_vendor):
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"images": [{"url": "https://fal.media/a.png"}]})

    mock_vendor(handler)
    url = await fal.generate_image("a red fox in snow")

    assert url == "https://fal.media/a.png"
    assert seen["auth"] == "Key fal-test"
    assert seen["url"] == "https://fal.run/fal-ai/fast-sdxl"
    assert seen["body"]["prompt"] == "a red fox in snow"


@pytest.mark.asyncio
async def test_fal_error_status_is_kept(vendor_keys, mock_vendor):
    mock_vendor(lambda request: httpx.Response(422, json={"detail": "prompt too long"}))

    with pytest.raises(VendorRejected) as exc:
        await fal.generate_image("x" * 5000)

    assert exc.value.vendor_status == 422
    assert exc.value.status_code == 422
    assert "prompt too long" in exc.value.message


@pytest.mark.asyncio
async def test_fal_schema_violation_is_rejected(vendor_keys, mock_vendor):
    mock_vendor(lambda request: httpx.Response(200, json={"images": []}))

    with pytest.raises(VendorRejected):
        await fal.generate_image("a fox")


@pytest.mark.asyncio
async def test_network_failure_is_unavailable(vendor_keys, mock_vendor):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    mock_vendor(handler)

    with pytest.raises(VendorUnavailable):
        await fal.generate_image("a fox")


@pytest.mark.asyncio
async def test_missing_key_is_unavailable(monkeypatch):
    monkeypatch.setattr(fal, "FAL_KEY", "")

    with pytest.raises(VendorUnavailable):
        await fal.generate_image("a fox")


@pytest.mark.asyncio
async def test_fal_video_status_mapping(vendor_keys, mock_vendor):
    def handler(request: httpx.Request):
        if request.url.path.endswith("/status"):
            status = "IN_PROGRESS" if "req-1" in request.url.path else "COMPLETED"
            return httpx.Response(200, json={"status": status})
        return httpx.Response(200, json={"video": {"url": "https://fal.media/clip.mp4"}})

    mock_vendor(handler)

    running = await fal.video_status("req-1")
    done = await fal.video_status("req-2")

    assert running.status == PollStatus.PROCESSING
    assert done.status == PollStatus.DONE
    assert done.result == "https://fal.media/clip.mp4"


# ── Gemini ───────────────────────────────────────────────────────────────────

def test_parse_json_response_variants():
    assert gemini.parse_json_response('[{"a": 1}]') == [{"a": 1}]
    assert gemini.parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}
    assert gemini.parse_json_response('Sure! Here it is: [1, 2] Enjoy.') == [1, 2]
    with pytest.raises(ValueError):
        gemini.parse_json_response("no json here")


@pytest.mark.asyncio
async def test_gemini_text_joins_parts(vendor_keys, mock_vendor):
    def handler(request: httpx.Request):
        assert request.headers["x-goog-api-key"] == "gemini-test"
        return httpx.Response(200, json=gemini_reply({"text": "Once upon "}, {"text": "a time"}))

    mock_vendor(handler)

    assert await gemini.generate_text("tell me a story") == "Once upon a time"


@pytest.mark.asyncio
async def test_gemini_image_decodes_inline_data(vendor_keys, mock_vendor):
    png = b"\x89PNG fake"
    mock_vendor(lambda request: httpx.Response(200, json=gemini_reply(
        {"text": "here you go"},
        {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(png).decode()}},
    )))

    data, mime = await gemini.generate_image("a lighthouse", style="watercolor")

    assert data == png
    assert mime == "image/png"


@pytest.mark.asyncio
async def test_gemini_image_without_image_part_is_rejected(vendor_keys, mock_vendor):
    mock_vendor(lambda request: httpx.Response(200, json=gemini_reply({"text": "I can't draw that"})))

    with pytest.raises(VendorRejected):
        await gemini.generate_image("a lighthouse")


# ── Pexels ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_pexels_random_image(vendor_keys, mock_vendor):
    mock_vendor(lambda request: httpx.Response(200, json={"photos": [
        {"id": 1, "src": {"large": "https://pexels/1.jpg"}},
    ]}))

    assert await pexels.get_random_image("mountains") == "https://pexels/1.jpg"


@pytest.mark.asyncio
async def test_pexels_no_results(vendor_keys, mock_vendor):
    mock_vendor(lambda request: httpx.Response(200, json={"photos": []}))

    with pytest.raises(VendorRejected) as exc:
        await pexels.get_random_image("zzzz")

    assert "No images found" in exc.value.message


# ── Azure Speech ─────────────────────────────────────────────────────────────

def test_ssml_escapes_text():
    ssml = azure_speech.build_ssml("Fish & <chips>", "en-US-JennyNeural")

    assert "Fish &amp; &lt;chips&gt;" in ssml
    assert "<voice name=\"en-US-JennyNeural\">" in ssml


@pytest.mark.asyncio
async def test_azure_synthesize_returns_audio(vendor_keys, mock_vendor):
    def handler(request: httpx.Request):
        assert request.headers["Ocp-Apim-Subscription-Key"] == "azure-test"
        assert request.headers["Content-Type"] == "application/ssml+xml"
        return httpx.Response(200, content=b"ID3mp3")

    mock_vendor(handler)

    assert await azure_speech.synthesize("Hello there") == b"ID3mp3"


@pytest.mark.asyncio
async def test_azure_rejects_empty_text(vendor_keys):
    with pytest.raises(InvalidInput):
        await azure_speech.synthesize("   ")


# ── AssemblyAI ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assemblyai_uploads_data_urls_first(vendor_keys, mock_vendor):
    paths = []

    def handler(request: httpx.Request):
        paths.append(request.url.path)
        if request.url.path.endswith("/upload"):
            assert request.content == b"audio-bytes"
            return httpx.Response(200, json={"upload_url": "https://cdn.assemblyai.com/u/1"})
        body = json.loads(request.content)
        assert body["audio_url"] == "https://cdn.assemblyai.com/u/1"
        return httpx.Response(200, json={"id": "t-1", "status": "queued"})

    mock_vendor(handler)
    data_url = "data:audio/mpeg;base64," + base64.b64encode(b"audio-bytes").decode()

    assert await assemblyai.submit_transcript(data_url) == "t-1"
    assert paths == ["/v2/upload", "/v2/transcript"]


@pytest.mark.asyncio
async def test_assemblyai_completed_transcript_returns_srt(vendor_keys, mock_vendor):
    srt = "1\n00:00:00,000 --> 00:00:01,500\nHello there\n"

    def handler(request: httpx.Request):
        if request.url.path.endswith("/srt"):
            return httpx.Response(200, text=srt)
        return httpx.Response(200, json={"id": "t-1", "status": "completed"})

    mock_vendor(handler)
    result = await assemblyai.transcript_status("t-1")

    assert result.status == PollStatus.DONE
    assert result.result == srt


@pytest.mark.asyncio
async def test_assemblyai_error_status(vendor_keys, mock_vendor):
    mock_vendor(lambda request: httpx.Response(200, json={"id": "t-1", "status": "error", "error": "bad audio"}))

    result = await assemblyai.transcript_status("t-1")

    assert result.status == PollStatus.FAILED
    assert result.error == "bad audio"


def test_malformed_data_url():
    with pytest.raises(InvalidInput):
        assemblyai.decode_data_url("data:audio/mpeg;base64")
