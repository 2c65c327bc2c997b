from __future__ import annotations

import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from imagegen_mcp.state import (
    EditRequest,
    GenerationRequest,
    ImageModel,
    ImageSize,
    ImageStyle,
    OutputFormat,
    Quality,
)
from imagegen_mcp.tools.errors import EmptyResultError, RemoteApiError, UnsupportedOperationError
from imagegen_mcp.tools.openai_images import OpenAIImageClient


class _Recorder:
    def __init__(self, responder) -> None:
        self.requests: list[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)


def _client(responder, **kwargs) -> tuple[OpenAIImageClient, _Recorder]:
    rec = _Recorder(responder)
    client = OpenAIImageClient(
        "sk-test", base_url="https://api.test/v1", transport=httpx.MockTransport(rec), **kwargs,
    )
    return client, rec


def _images(*b64: str) -> httpx.Response:
    return httpx.Response(200, json={"created": 1, "data": [{"b64_json": b} for b in b64]})


# ---------------------------------------------------------------------------
# Request shaping
# ---------------------------------------------------------------------------

def test_gpt_image_payload_uses_output_format_and_moderation() -> None:
    client, _ = _client(lambda r: _images())
    payload = client.generation_payload(GenerationRequest(prompt="cube", output_compression=80))
    assert payload == {
        "model": "gpt-image-1",
        "prompt": "cube",
        "n": 1,
        "size": "1024x1024",
        "quality": "auto",
        "moderation": "low",
        "output_format": "webp",
        "output_compression": 80,
    }


def test_gpt_image_png_omits_compression() -> None:
    client, _ = _client(lambda r: _images())
    payload = client.generation_payload(
        GenerationRequest(prompt="cube", output_format=OutputFormat.PNG, quality=Quality.HD),
    )
    assert "output_compression" not in payload
    assert payload["quality"] == "high"


def test_dalle3_payload_uses_style_and_b64_response() -> None:
    client, _ = _client(lambda r: _images())
    payload = client.generation_payload(GenerationRequest(
        prompt="cube", model=ImageModel.DALL_E_3, style=ImageStyle.NATURAL,
        size=ImageSize.S1792_LANDSCAPE, quality=Quality.HIGH,
    ))
    assert payload["style"] == "natural"
    assert payload["response_format"] == "b64_json"
    assert payload["quality"] == "hd"
    assert "output_format" not in payload
    assert "moderation" not in payload


def test_dalle2_payload_omits_quality_and_style() -> None:
    client, _ = _client(lambda r: _images())
    payload = client.generation_payload(
        GenerationRequest(prompt="cube", model=ImageModel.DALL_E_2, size=ImageSize.S512, n=4),
    )
    assert "quality" not in payload
    assert "style" not in payload
    assert payload["n"] == 4


@pytest.mark.asyncio
async def test_dalle3_rejects_batches_without_calling_remote() -> None:
    client, rec = _client(lambda r: _images())
    with pytest.raises(UnsupportedOperationError, match="n=1"):
        await client.generate(GenerationRequest(prompt="x", model=ImageModel.DALL_E_3, n=2))
    assert rec.requests == []


@pytest.mark.asyncio
async def test_unsupported_size_rejected_without_calling_remote() -> None:
    client, rec = _client(lambda r: _images())
    with pytest.raises(UnsupportedOperationError, match="1792x1024"):
        await client.generate(GenerationRequest(
            prompt="x", model=ImageModel.DALL_E_2, size=ImageSize.S1792_LANDSCAPE,
        ))
    assert rec.requests == []


# ---------------------------------------------------------------------------
# Generation round trip
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_posts_json_with_bearer() -> None:
    client, rec = _client(lambda r: _images("QUJD", "REVG"), organization="org-1")
    images = await client.generate(GenerationRequest(prompt="cube", n=2))
    assert [i.b64_json for i in images] == ["QUJD", "REVG"]
    req = rec.requests[0]
    assert req.method == "POST"
    assert str(req.url) == "https://api.test/v1/images/generations"
    assert req.headers["Authorization"] == "Bearer sk-test"
    assert req.headers["OpenAI-Organization"] == "org-1"
    assert json.loads(req.content)["n"] == 2


@pytest.mark.asyncio
async def test_url_payloads_are_returned() -> None:
    client, _ = _client(lambda r: httpx.Response(200, json={"data": [{"url": "https://cdn.test/a.png"}]}))
    images = await client.generate(GenerationRequest(prompt="cube"))
    assert images[0].url == "https://cdn.test/a.png"
    assert images[0].b64_json is None


@pytest.mark.asyncio
async def test_empty_data_raises_empty_result() -> None:
    client, _ = _client(lambda r: httpx.Response(200, json={"data": []}))
    with pytest.raises(EmptyResultError):
        await client.generate(GenerationRequest(prompt="cube"))


@pytest.mark.asyncio
async def test_rate_limit_surfaces_upstream_message() -> None:
    client, _ = _client(lambda r: httpx.Response(
        429, json={"error": {"message": "Rate limit reached", "type": "requests"}},
    ))
    with pytest.raises(RemoteApiError) as info:
        await client.generate(GenerationRequest(prompt="cube"))
    assert info.value.status_code == 429
    assert info.value.retryable is True
    assert "Rate limit reached" in str(info.value)


@pytest.mark.asyncio
async def test_content_policy_rejection_is_not_retryable() -> None:
    client, _ = _client(lambda r: httpx.Response(400, json={
        "error": {"message": "Your request was rejected by the safety system.",
                  "type": "invalid_request_error", "code": "content_policy_violation"},
    }))
    with pytest.raises(RemoteApiError) as info:
        await client.generate(GenerationRequest(prompt="cube"))
    assert info.value.retryable is False
    assert info.value.error_type == "content_policy_violation"
    assert "safety system" in str(info.value)


@pytest.mark.asyncio
async def test_auth_failure_with_plain_body() -> None:
    client, _ = _client(lambda r: httpx.Response(401, text="unauthorized"))
    with pytest.raises(RemoteApiError, match="unauthorized") as info:
        await client.generate(GenerationRequest(prompt="cube"))
    assert info.value.status_code == 401
    assert info.value.retryable is False


@pytest.mark.asyncio
async def test_timeout_becomes_remote_error() -> None:
    def _raise(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client, _ = _client(_raise)
    with pytest.raises(RemoteApiError, match="timed out"):
        await client.generate(GenerationRequest(prompt="cube"))


def test_repr_redacts_key() -> None:
    client, _ = _client(lambda r: _images())
    assert "sk-test" not in repr(client)


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------

@pytest.fixture
def source_files(tmp_path: Path) -> tuple[str, str, str]:
    a = tmp_path / "a.png"
    b = tmp_path / "b.png"
    mask = tmp_path / "mask.png"
    for p in (a, b, mask):
        p.write_bytes(b"\x89PNG-" + p.name.encode())
    return str(a), str(b), str(mask)


@pytest.mark.asyncio
async def test_edit_sends_multipart_with_all_images_and_mask(source_files) -> None:
    a, b, mask = source_files
    client, rec = _client(lambda r: _images("QUJD"))
    images = await client.edit(EditRequest(images=[a, b], prompt="make it blue", mask=mask))
    assert len(images) == 1
    req = rec.requests[0]
    assert str(req.url) == "https://api.test/v1/images/edits"
    assert req.headers["Content-Type"].startswith("multipart/form-data")
    body = req.content
    assert body.count(b'name="image[]"') == 2
    assert b'name="mask"' in body
    assert b"make it blue" in body
    assert b"\x89PNG-a.png" in body


@pytest.mark.asyncio
async def test_edit_single_image_uses_plain_field(source_files) -> None:
    a, _, _ = source_files
    client, rec = _client(lambda r: _images("QUJD"))
    await client.edit(EditRequest(images=[a], prompt="x", model=ImageModel.DALL_E_2))
    body = rec.requests[0].content
    assert b'name="image"' in body
    assert b'name="response_format"' in body


@pytest.mark.asyncio
async def test_edit_rejects_dalle3(source_files) -> None:
    a, _, _ = source_files
    client, rec = _client(lambda r: _images("QUJD"))
    with pytest.raises(UnsupportedOperationError, match="does not support image editing"):
        await client.edit(EditRequest(images=[a], prompt="x", model=ImageModel.DALL_E_3))
    assert rec.requests == []


@pytest.mark.asyncio
async def test_edit_dalle2_accepts_one_image_only(source_files) -> None:
    a, b, _ = source_files
    client, rec = _client(lambda r: _images("QUJD"))
    with pytest.raises(UnsupportedOperationError, match="exactly one"):
        await client.edit(EditRequest(images=[a, b], prompt="x", model=ImageModel.DALL_E_2))
    assert rec.requests == []


@pytest.mark.asyncio
async def test_download_fetches_url_payload() -> None:
    client, rec = _client(lambda r: httpx.Response(200, content=b"PNGDATA"))
    assert await client.download("https://cdn.test/a.png") == b"PNGDATA"
    assert str(rec.requests[0].url) == "https://cdn.test/a.png"


@pytest.mark.asyncio
async def test_download_failure_is_remote_error() -> None:
    client, _ = _client(lambda r: httpx.Response(503))
    with pytest.raises(RemoteApiError) as info:
        await client.download("https://cdn.test/a.png")
    assert info.value.status_code == 503
    assert info.value.retryable is True
