"""
Ad copy generation — Gemini text model via REST.

The model is asked for a JSON object only, but routinely wraps it in prose
or markdown fences, so the reply is scanned for the first balanced {...}
span. Any failure here is recovered by the orchestrator with fallback_copy().
"""

import json
import logging
from typing import Optional

import httpx

from .. import config
from ..errors import AdWorkError, CopyGenerationError
from .models import AdCopy
from .providers import inline_image_part, raise_for_provider, require_key
from .styles import get_style

logger = logging.getLogger(__name__)

PROVIDER = "Gemini"

SYSTEM_PROMPT = (
    "You are a world-class advertising creative director. "
    "Always respond with ONLY valid JSON, no markdown code fences, no extra text."
)

COPY_PROMPT = """Create a compelling advertisement for brand "{brand}".
Ad style: {style} ({modifiers})
Product: {product}
Target video length: {duration} seconds
{references}
Return this exact JSON structure:
{{
  "headline": "Powerful headline related to the {product}, max 8 words",
  "subheadline": "Supporting context line, max 15 words",
  "cta": "Button text, max 4 words",
  "bodyText": "Ad body paragraph about the {product}, max 30 words",
  "colorScheme": "Two hex color codes for the ad",
  "mood": "Three mood words",
  "targetAudience": "Target audience phrase",
  "imagePrompt": "Describe a SPECIFIC AD SCENE for the {product}: a person confidently holding, wearing or using it. Describe pose, setting, lighting and camera angle. Max 80 words. No text or words in the image.",
  "videoDescription": "Cinematic video ad description for the {product}: camera movement, lighting, mood, transitions. Max 50 words."
}}"""

# JSON key → AdCopy field
REQUIRED_FIELDS = {
    "headline": "headline",
    "subheadline": "subheadline",
    "cta": "cta",
    "bodyText": "body_text",
    "imagePrompt": "image_prompt",
    "videoDescription": "video_description",
}
OPTIONAL_FIELDS = {
    "colorScheme": "color_scheme",
    "mood": "mood",
    "targetAudience": "target_audience",
}


def extract_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced {...} span in text, or None.

    Braces inside JSON strings are ignored so a headline like "{Sale}" does
    not end the object early.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from here on; try the next opening brace
        start = text.find("{", start + 1)
    return None


def _as_text(value) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return "" if value is None else str(value).strip()


def parse_ad_copy(raw: str) -> AdCopy:
    """Parse model output into AdCopy. Raises CopyGenerationError."""
    span = extract_json_object(raw or "")
    if span is None:
        raise CopyGenerationError("No JSON object in model response")
    try:
        data = json.loads(span)
    except json.JSONDecodeError as e:
        raise CopyGenerationError(f"Model returned invalid JSON: {e}")
    if not isinstance(data, dict):
        raise CopyGenerationError("Model JSON is not an object")

    fields = {}
    missing = []
    for key, field in REQUIRED_FIELDS.items():
        value = _as_text(data.get(key))
        if not value:
            missing.append(key)
        fields[field] = value
    if missing:
        raise CopyGenerationError(f"Model JSON missing fields: {', '.join(missing)}")

    for key, field in OPTIONAL_FIELDS.items():
        fields[field] = _as_text(data.get(key))

    return AdCopy(**fields)


def fallback_copy(brand_name: str, product_description: str, style: str) -> AdCopy:
    """Deterministic ad copy from fixed templates. No network."""
    s = get_style(style)
    brand = brand_name or "Your Brand"
    product = product_description
    return AdCopy(
        headline=s["headline"].format(brand=brand, product=product),
        subheadline=s["subheadline"].format(brand=brand, product=product),
        cta=s["cta"],
        body_text=(
            f"Discover {product} from {brand}. Crafted for those who demand "
            f"nothing but the best."
        ),
        color_scheme=s["colors"],
        mood=s["mood"],
        target_audience=s["audience"],
        image_prompt=(
            f"An attractive model confidently holding and showcasing {product} by {brand}, "
            f"professional studio lighting, {style} aesthetic, magazine ad campaign, elegant pose"
        ),
        video_description=(
            f"Cinematic close-up of {brand} {product} with dramatic lighting, "
            f"slow motion, {s['mood'].lower()} feel."
        ),
        fallback=True,
    )


def build_brief(
    brand_name: str,
    product_description: str,
    style: str,
    duration: int,
    has_product_image: bool = False,
    has_model_image: bool = False,
) -> str:
    references = []
    if has_product_image:
        references.append("A product photo is attached; describe its exact appearance.")
    if has_model_image:
        references.append("A model/person photo is attached; feature that person in the scenes.")
    return COPY_PROMPT.format(
        brand=brand_name or "the brand",
        style=style,
        modifiers=get_style(style)["modifiers"],
        product=product_description,
        duration=duration,
        references="\n".join(references),
    )


class GeminiCopywriter:
    """Text/copy provider adapter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: float = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.model = model or config.GEMINI_TEXT_MODEL
        self.api_base = (api_base or config.GEMINI_API_BASE).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def generate_copy(self, brief: str, reference_images: Optional[list[bytes]] = None) -> AdCopy:
        """
        Ask the text model for ad copy. Does not retry: every failure, including
        rate limits, surfaces as CopyGenerationError for the caller to recover.
        """
        try:
            require_key(PROVIDER, self.api_key)

            parts: list[dict] = [{"text": SYSTEM_PROMPT}]
            for image in reference_images or []:
                parts.append(inline_image_part(image))
            parts.append({"text": brief})

            body = {
                "contents": [{"parts": parts}],
                "generationConfig": {"temperature": 0.7, "maxOutputTokens": 800},
            }

            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self._url(), params={"key": self.api_key}, json=body)
            raise_for_provider(PROVIDER, response)

            result = response.json()
            candidates = result.get("candidates") or []
            if not candidates:
                raise CopyGenerationError("Gemini returned no candidates")
            parts_out = candidates[0].get("content", {}).get("parts", [])
            text = "".join(p.get("text", "") for p in parts_out)
            logger.info(f"Raw copy response: {text[:200]}")
            return parse_ad_copy(text)

        except CopyGenerationError:
            raise
        except AdWorkError as e:
            raise CopyGenerationError(e.message)
        except (httpx.HTTPError, ValueError) as e:
            raise CopyGenerationError(f"Copy request failed: {e}")
