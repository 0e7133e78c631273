"""
Shared plumbing for the provider adapters.

Maps upstream HTTP failures onto the error taxonomy so every adapter reports
rate limits, credential problems and hard failures the same way.
"""

import asyncio
import base64
import logging
import random
from typing import Optional

import httpx

from ..errors import (
    GenerationFailed,
    UpstreamConfigError,
    UpstreamRateLimited,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS_CODES = {429, 503}
AUTH_STATUS_CODES = {401, 403}
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After", "")
    return int(value) if value.isdigit() else None


def raise_for_provider(provider: str, response: httpx.Response) -> None:
    """Raise the matching AdWorkError for a non-2xx provider response."""
    if response.is_success:
        return

    code = response.status_code
    detail = response.text[:200]

    if code in RATE_LIMIT_STATUS_CODES:
        logger.warning(f"{provider} rate limited ({code}): {detail}")
        raise UpstreamRateLimited(
            "AI models are busy right now. Please wait a moment and try again.",
            retry_after=_retry_after(response),
        )
    if code in AUTH_STATUS_CODES:
        logger.error(f"{provider} rejected credentials ({code}) — check configuration")
        raise UpstreamConfigError(f"{provider} is not configured correctly")

    logger.warning(f"{provider} error {code}: {detail}")
    raise GenerationFailed(f"{provider} request failed ({code})")


def require_key(provider: str, api_key: str) -> None:
    if not api_key:
        logger.error(f"{provider} API key not set — check configuration")
        raise UpstreamConfigError(f"{provider} API key is not configured")


def transport_error(provider: str, exc: Exception) -> UpstreamTimeout:
    logger.warning(f"{provider} transport error: {exc}")
    return UpstreamTimeout(f"{provider} did not respond in time")


def backoff_delay(attempt: int, base_delay: float, jitter: float = 1.0) -> float:
    """base_delay * 2^attempt plus random jitter."""
    return base_delay * (2 ** attempt) + random.uniform(0, jitter)


async def request_with_backoff(
    client: httpx.AsyncClient,
    provider: str,
    method: str,
    url: str,
    retries: int,
    base_delay: float = 2.0,
    **kwargs,
) -> httpx.Response:
    """
    Send a request, retrying 429/5xx and transport errors with exponential
    backoff. A Retry-After header wins over the computed delay.

    After the last attempt the failure is raised through raise_for_provider.
    """
    for attempt in range(retries + 1):
        last = attempt == retries
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            if last:
                raise transport_error(provider, e)
            delay = backoff_delay(attempt, base_delay) if base_delay else 0
            logger.warning(
                f"{provider} request error on attempt {attempt + 1}/{retries + 1}: {e} "
                f"— retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
            continue

        if response.status_code not in RETRYABLE_STATUS_CODES or last:
            raise_for_provider(provider, response)
            return response

        delay = _retry_after(response)
        if delay is None:
            delay = backoff_delay(attempt, base_delay) if base_delay else 0
        logger.warning(
            f"{provider} {response.status_code} on attempt {attempt + 1}/{retries + 1} "
            f"— retrying in {delay:.1f}s (url={url})"
        )
        await asyncio.sleep(delay)

    raise GenerationFailed(f"{provider} request failed after {retries + 1} attempts")


def guess_mime(data: bytes) -> str:
    """Sniff the image type from its magic bytes."""
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def inline_image_part(data: bytes) -> dict:
    return {"inlineData": {"mimeType": guess_mime(data), "data": base64.b64encode(data).decode()}}
