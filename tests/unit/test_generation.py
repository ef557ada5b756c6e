import base64
import json

import httpx
import pytest

from effect_studio.core.exceptions import GenerationError, GenerationTimeout
from effect_studio.pipeline.generation import GeminiTransformer, GenerationResponse, ContentPart


def gemini_body(*parts):
    return {"candidates": [{"content": {"role": "model", "parts": list(parts)}}]}


def make_transformer(handler) -> GeminiTransformer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiTransformer(api_key="test-key", model="image-model", base_url="https://gemini.test/v1beta/", client=client)


def test_parse_response_extracts_inline_image():
    encoded = base64.b64encode(b"\x89PNG fake").decode()

    result = GeminiTransformer.parse_response(gemini_body(
        {"text": "Here you go"},
        {"inlineData": {"mimeType": "image/png", "data": encoded}},
    ))

    image = result.first_image()
    assert image is not None
    assert image.inline_data == b"\x89PNG fake"
    assert image.mime_type == "image/png"
    assert result.text == "Here you go"


def test_parse_response_text_only_has_no_image():
    result = GeminiTransformer.parse_response(gemini_body({"text": "I cannot do that"}))

    assert result.first_image() is None
    assert result.text == "I cannot do that"


def test_parse_response_skips_undecodable_inline_data():
    result = GeminiTransformer.parse_response(gemini_body(
        {"inline_data": {"mime_type": "image/png", "data": "%%% not base64 %%%"}},
    ))

    assert result.first_image() is None


def test_parse_response_handles_empty_body():
    assert GeminiTransformer.parse_response({}).parts == []


def test_empty_inline_data_is_not_an_image():
    response = GenerationResponse(parts=[ContentPart(inline_data=b"", mime_type="image/png")])

    assert response.first_image() is None


@pytest.mark.asyncio
async def test_generate_posts_image_and_directive():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["api_key"] = request.headers.get("x-goog-api-key")
        captured["body"] = json.loads(request.content)
        encoded = base64.b64encode(b"generated").decode()
        return httpx.Response(200, json=gemini_body({"inlineData": {"mimeType": "image/jpeg", "data": encoded}}))

    transformer = make_transformer(handler)

    result = await transformer.generate(b"source", "image/jpeg", "Make it vintage")

    assert captured["url"] == "https://gemini.test/v1beta/models/image-model:generateContent"
    assert captured["api_key"] == "test-key"
    parts = captured["body"]["contents"][0]["parts"]
    assert parts[0]["inline_data"] == {"mime_type": "image/jpeg", "data": base64.b64encode(b"source").decode()}
    assert parts[1] == {"text": "Make it vintage"}
    assert result.first_image().inline_data == b"generated"


@pytest.mark.asyncio
async def test_generate_http_error_raises_generation_error():
    transformer = make_transformer(lambda request: httpx.Response(503, text="overloaded"))

    with pytest.raises(GenerationError) as exc_info:
        await transformer.generate(b"source", "image/jpeg", "directive")

    assert exc_info.value.details["http_status"] == 503
    assert exc_info.value.stage == "generation"


@pytest.mark.asyncio
async def test_generate_non_json_raises_generation_error():
    transformer = make_transformer(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(GenerationError):
        await transformer.generate(b"source", "image/jpeg", "directive")


@pytest.mark.asyncio
async def test_generate_transport_timeout_raises_generation_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    transformer = make_transformer(handler)

    with pytest.raises(GenerationTimeout):
        await transformer.generate(b"source", "image/jpeg", "directive")


@pytest.mark.asyncio
async def test_generate_connection_error_raises_generation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transformer = make_transformer(handler)

    with pytest.raises(GenerationError):
        await transformer.generate(b"source", "image/jpeg", "directive")
