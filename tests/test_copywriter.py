"""
Unit tests for ad copy generation.

Tests:
- JSON extraction from fenced / chatty model output
- Braces inside JSON strings
- Missing required fields
- Deterministic fallback copy
- Gemini adapter against a mocked transport
"""

import json

import httpx
import pytest

from adwork.errors import CopyGenerationError
from adwork.pipeline.copywriter import (
    GeminiCopywriter,
    build_brief,
    extract_json_object,
    fallback_copy,
    parse_ad_copy,
)

COPY_JSON = {
    "headline": "Run Lighter With Nova",
    "subheadline": "Red sneakers built for city miles",
    "cta": "Shop Now",
    "bodyText": "Nova red sneakers keep you moving.",
    "colorScheme": "#FF0000, #111111",
    "mood": ["Bold", "Fast", "Urban"],
    "targetAudience": "Urban runners",
    "imagePrompt": "A runner lacing red sneakers on a rooftop at dawn",
    "videoDescription": "Slow dolly around red sneakers on wet asphalt",
}


def gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def copywriter_for(handler) -> GeminiCopywriter:
    return GeminiCopywriter(
        api_key="test-key",
        model="gemini-test",
        api_base="https://gemini.test/v1beta",
        transport=httpx.MockTransport(handler),
    )


def test_extracts_object_from_markdown_fence():
    raw = "Here you go:\n```json\n" + json.dumps(COPY_JSON) + "\n```\nEnjoy!"
    span = extract_json_object(raw)
    assert json.loads(span) == COPY_JSON


def test_braces_inside_strings_do_not_end_the_object():
    raw = 'Sure! {"headline": "Save {big} today }", "cta": "Go"} trailing {'
    span = extract_json_object(raw)
    assert json.loads(span) == {"headline": "Save {big} today }", "cta": "Go"}


def test_unbalanced_prefix_is_skipped():
    raw = '{ not json at all {"cta": "Buy"}'
    # The first brace never closes, so the scan moves on to the next one
    assert extract_json_object(raw) == '{"cta": "Buy"}'


def test_no_object_returns_none():
    assert extract_json_object("I cannot help with that.") is None


def test_parse_ad_copy_joins_list_values():
    copy = parse_ad_copy(json.dumps(COPY_JSON))
    assert copy.headline == "Run Lighter With Nova"
    assert copy.body_text == "Nova red sneakers keep you moving."
    assert copy.mood == "Bold, Fast, Urban"
    assert copy.fallback is False


def test_parse_ad_copy_missing_fields():
    data = dict(COPY_JSON)
    del data["imagePrompt"]
    data["cta"] = ""
    with pytest.raises(CopyGenerationError) as exc:
        parse_ad_copy(json.dumps(data))
    assert "imagePrompt" in exc.value.message
    assert "cta" in exc.value.message


def test_parse_ad_copy_invalid_json():
    with pytest.raises(CopyGenerationError):
        parse_ad_copy('{"headline": "Nova", }')


def test_fallback_copy_mentions_brand_and_product():
    copy = fallback_copy("Nova", "red sneakers", "luxury")
    text = " ".join([copy.headline, copy.body_text, copy.image_prompt, copy.video_description])

    assert copy.fallback is True
    assert "Nova" in copy.headline
    assert "red sneakers" in text
    assert copy.color_scheme == "#7C3AED, #6366F1"


def test_fallback_copy_is_deterministic():
    assert fallback_copy("Nova", "red sneakers", "bold") == fallback_copy("Nova", "red sneakers", "bold")


def test_fallback_copy_without_brand():
    copy = fallback_copy("", "a ceramic mug", "minimal")
    assert "Your Brand" in copy.body_text


def test_brief_mentions_attached_photos():
    brief = build_brief("Nova", "red sneakers", "bold", 8, has_product_image=True)
    assert "red sneakers" in brief
    assert "8 seconds" in brief
    assert "product photo is attached" in brief
    assert "model/person photo" not in brief


@pytest.mark.asyncio
async def test_generate_copy_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=gemini_reply("```json\n" + json.dumps(COPY_JSON) + "\n```"))

    copy = await copywriter_for(handler).generate_copy("brief text", [b"\x89PNG fake"])

    assert copy.headline == "Run Lighter With Nova"
    assert "models/gemini-test:generateContent" in seen["url"]
    assert "key=test-key" in seen["url"]
    parts = seen["body"]["contents"][0]["parts"]
    assert parts[1]["inlineData"]["mimeType"] == "image/png"
    assert parts[-1]["text"] == "brief text"


@pytest.mark.asyncio
async def test_generate_copy_upstream_error():
    def handler(request):
        return httpx.Response(500, text="internal")

    with pytest.raises(CopyGenerationError):
        await copywriter_for(handler).generate_copy("brief")


@pytest.mark.asyncio
async def test_generate_copy_rate_limited_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429, text="slow down")

    with pytest.raises(CopyGenerationError):
        await copywriter_for(handler).generate_copy("brief")
    assert len(calls) == 1, f"Expected a single attempt, got {len(calls)}"


@pytest.mark.asyncio
async def test_generate_copy_malformed_reply():
    def handler(request):
        return httpx.Response(200, json=gemini_reply("Sorry, I can only describe the product."))

    with pytest.raises(CopyGenerationError):
        await copywriter_for(handler).generate_copy("brief")


@pytest.mark.asyncio
async def test_generate_copy_transport_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(CopyGenerationError):
        await copywriter_for(handler).generate_copy("brief")


@pytest.mark.asyncio
async def test_generate_copy_without_key():
    writer = GeminiCopywriter(api_key="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(CopyGenerationError):
        await writer.generate_copy("brief")
