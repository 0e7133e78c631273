"""
Ad image generation — Gemini image model via REST.

The scene prompt comes from the ad copy; style and quality modifiers are
appended here so every image carries the same no-text, studio-lit finish.
"""

import base64
import logging
from typing import Optional

import httpx

from .. import config
from ..errors import GenerationFailed
from .providers import inline_image_part, raise_for_provider, require_key, transport_error
from .styles import QUALITY_MODIFIERS, get_modifiers

logger = logging.getLogger(__name__)

PROVIDER = "Gemini Image"


def default_scene_prompt(brand_name: str, product_description: str, style: str) -> str:
    brand = f" by {brand_name}" if brand_name else ""
    return (
        f"An attractive model confidently showcasing {product_description}{brand}, "
        f"professional studio lighting, {style} aesthetic"
    )


def build_image_prompt(scene_prompt: str, style: str) -> str:
    return f"{scene_prompt.strip().rstrip('.')}, {get_modifiers(style)}, {QUALITY_MODIFIERS}"


class GeminiImageGenerator:
    """Image provider adapter. Returns raw bytes and their mime type."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: float = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.model = model or config.GEMINI_IMAGE_MODEL
        self.api_base = (api_base or config.GEMINI_API_BASE).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def generate_image(
        self,
        scene_prompt: str,
        style: str,
        reference_images: Optional[list[bytes]] = None,
    ) -> tuple[bytes, str]:
        require_key(PROVIDER, self.api_key)

        parts: list[dict] = []
        for image in reference_images or []:
            parts.append(inline_image_part(image))
            parts.append({"text": "Reference photo: keep the product's exact appearance."})
        parts.append({"text": build_image_prompt(scene_prompt, style)})

        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "temperature": 0.7,
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_base}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=body,
                )
        except httpx.TransportError as e:
            raise transport_error(PROVIDER, e)
        raise_for_provider(PROVIDER, response)

        result = response.json()
        candidates = result.get("candidates", [])
        if not candidates:
            feedback = result.get("promptFeedback", {}).get("blockReason")
            raise GenerationFailed(
                f"Image generation was rejected: {feedback}" if feedback
                else "Image generation returned no candidates"
            )

        for part in candidates[0].get("content", {}).get("parts", []):
            if "inlineData" in part:
                data = base64.b64decode(part["inlineData"]["data"])
                mime_type = part["inlineData"].get("mimeType", "image/png")
                logger.info(f"Ad image generated: {len(data) // 1024}KB {mime_type}")
                return data, mime_type

        raise GenerationFailed("Image generation returned no image data")
