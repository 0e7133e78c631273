"""
Video generation — Veo 3.1 via Kie.ai.

Submission returns a task id straight away; the video itself takes one to
three minutes. We poll record-info on a fixed interval up to a fixed number
of attempts, then download the finished file with a second request because
the status payload only carries its URL.

Provider status words are normalized through STATUS_TABLE / SUCCESS_FLAGS
below and nowhere else.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from .. import config
from ..errors import (
    GenerationCanceled,
    GenerationFailed,
    UpstreamConfigError,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from .providers import (
    AUTH_STATUS_CODES,
    request_with_backoff,
    require_key,
    transport_error,
)

logger = logging.getLogger(__name__)

PROVIDER = "Kie.ai Veo"


class VideoJobState(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Every status word any of our video providers has been seen to return.
# Anything not listed is treated as still running.
STATUS_TABLE = {
    "completed": VideoJobState.SUCCEEDED,
    "complete": VideoJobState.SUCCEEDED,
    "success": VideoJobState.SUCCEEDED,
    "succeeded": VideoJobState.SUCCEEDED,
    "done": VideoJobState.SUCCEEDED,
    "failed": VideoJobState.FAILED,
    "fail": VideoJobState.FAILED,
    "error": VideoJobState.FAILED,
    "generate_failed": VideoJobState.FAILED,
    "create_task_failed": VideoJobState.FAILED,
    "sensitive_word_error": VideoJobState.FAILED,
    "pending": VideoJobState.RUNNING,
    "queuing": VideoJobState.RUNNING,
    "waiting": VideoJobState.RUNNING,
    "generating": VideoJobState.RUNNING,
    "processing": VideoJobState.RUNNING,
    "running": VideoJobState.RUNNING,
}

# Kie.ai Veo successFlag: 0 generating, 1 success, 2/3 failed
SUCCESS_FLAGS = {
    0: VideoJobState.RUNNING,
    1: VideoJobState.SUCCEEDED,
    2: VideoJobState.FAILED,
    3: VideoJobState.FAILED,
}

# Kie.ai reports some errors as HTTP 200 with a `code` in the body
RATE_LIMIT_BODY_CODES = {429, 455, 503}
CONFIG_BODY_CODES = {401, 402, 403}


@dataclass
class VideoJob:
    task_id: str
    model: str


@dataclass
class VideoJobStatus:
    state: VideoJobState
    result_url: Optional[str] = None
    message: Optional[str] = None


def normalize_state(raw_status, success_flag=None) -> VideoJobState:
    if success_flag is not None:
        try:
            flag_state = SUCCESS_FLAGS.get(int(success_flag))
        except (TypeError, ValueError):
            flag_state = None
        if flag_state is not None:
            return flag_state
    if not raw_status:
        return VideoJobState.RUNNING
    return STATUS_TABLE.get(str(raw_status).strip().lower(), VideoJobState.RUNNING)


def _first_url(value) -> Optional[str]:
    if isinstance(value, str):
        value = value.strip()
        if value.startswith("["):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return None
        else:
            return value or None
    if isinstance(value, list) and value:
        first = value[0]
        if isinstance(first, str):
            return first
        if isinstance(first, dict):
            return (
                first.get("url")
                or first.get("videoUrl")
                or first.get("video_url")
                or (first.get("resource") or {}).get("resource")
            )
    return None


def extract_result_url(record: dict) -> Optional[str]:
    """Find the video URL in the many shapes a status payload can take."""
    response = record.get("response") if isinstance(record.get("response"), dict) else {}
    result = record.get("result") if isinstance(record.get("result"), dict) else {}
    candidates = [
        response.get("resultUrls"),
        record.get("resultUrls"),
        record.get("works"),
        record.get("results"),
        record.get("videoUrl"),
        record.get("video_url"),
        record.get("resultUrl"),
        record.get("url"),
        result.get("url"),
    ]
    for candidate in candidates:
        url = _first_url(candidate)
        if url:
            return url
    return None


def parse_status_payload(payload: dict) -> VideoJobStatus:
    record = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(record, dict):
        record = payload if isinstance(payload, dict) else {}

    state = normalize_state(
        record.get("status") or record.get("state"),
        record.get("successFlag"),
    )
    if state is VideoJobState.SUCCEEDED:
        return VideoJobStatus(state, result_url=extract_result_url(record))
    if state is VideoJobState.FAILED:
        message = (
            record.get("errorMessage")
            or record.get("failReason")
            or record.get("error")
            or record.get("msg")
            or payload.get("msg")
            or "Video generation failed"
        )
        return VideoJobStatus(state, message=str(message)[:300])
    return VideoJobStatus(state)


def _check_body_code(payload: dict) -> None:
    code = payload.get("code")
    if code in (None, 200):
        return
    msg = str(payload.get("msg") or "")[:200]
    if code in RATE_LIMIT_BODY_CODES:
        logger.warning(f"{PROVIDER} rate limited (code {code}): {msg}")
        raise UpstreamRateLimited("Video model is busy right now. Please wait a moment and try again.")
    if code in CONFIG_BODY_CODES:
        logger.error(f"{PROVIDER} rejected request (code {code}): {msg} — check configuration")
        raise UpstreamConfigError(f"{PROVIDER} is not configured correctly")
    raise GenerationFailed(f"Video generation was rejected: {msg or code}")


class KieVideoGenerator:
    """Video provider adapter: submit, poll, download."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
        submit_retries: Optional[int] = None,
        retry_base_delay: float = 2.0,
        timeout: float = 30,
        download_timeout: float = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.KIE_API_KEY
        self.api_base = (api_base or config.KIE_API_BASE).rstrip("/")
        self.model = model or config.KIE_VIDEO_MODEL
        self.poll_interval = config.VIDEO_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_poll_attempts = (
            config.VIDEO_MAX_POLL_ATTEMPTS if max_poll_attempts is None else max_poll_attempts
        )
        self.submit_retries = config.VIDEO_SUBMIT_RETRIES if submit_retries is None else submit_retries
        self.retry_base_delay = retry_base_delay
        self.timeout = timeout
        self.download_timeout = download_timeout
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    # ── Submit ───────────────────────────────────────────────────────────

    async def start_job(
        self,
        prompt: str,
        aspect_ratio: str = "16:9",
        image_urls: Optional[list[str]] = None,
        duration: Optional[int] = None,
    ) -> VideoJob:
        require_key(PROVIDER, self.api_key)

        payload = {
            "prompt": prompt,
            "model": self.model,
            "aspectRatio": "9:16" if aspect_ratio == "9:16" else "16:9",
        }
        if image_urls:
            # REFERENCE_2_VIDEO keeps the product from the reference photo on screen
            payload["mode"] = "REFERENCE_2_VIDEO"
            payload["imageUrls"] = image_urls
        if duration:
            payload["duration"] = duration

        logger.info(
            f"{PROVIDER} submit: model={self.model}, mode={payload.get('mode', 'TEXT_2_VIDEO')}, "
            f"refs={len(image_urls or [])}"
        )
        async with self._client() as client:
            response = await request_with_backoff(
                client, PROVIDER, "POST", f"{self.api_base}/veo/generate",
                retries=self.submit_retries, base_delay=self.retry_base_delay, json=payload,
            )
        result = response.json()
        _check_body_code(result)

        data = result.get("data") or {}
        task_id = None
        if isinstance(data, dict):
            task_id = data.get("taskId") or data.get("task_id") or data.get("id")
        if not task_id:
            task_id = result.get("taskId") or result.get("task_id") or result.get("id")
        if not task_id:
            raise GenerationFailed("Video provider did not return a task id")

        logger.info(f"{PROVIDER} task started: {task_id}")
        return VideoJob(task_id=str(task_id), model=self.model)

    # ── Poll ─────────────────────────────────────────────────────────────

    async def poll_job(self, job: VideoJob) -> VideoJobStatus:
        """
        One status check. Transport errors and non-2xx responses count as
        "still running"; only rejected credentials are raised.
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.api_base}/veo/record-info", params={"taskId": job.task_id}
                )
        except httpx.TransportError as e:
            logger.warning(f"{PROVIDER} poll error for {job.task_id}: {e} — treating as running")
            return VideoJobStatus(VideoJobState.RUNNING)

        if response.status_code in AUTH_STATUS_CODES:
            logger.error(f"{PROVIDER} rejected credentials while polling — check configuration")
            raise UpstreamConfigError(f"{PROVIDER} is not configured correctly")
        if not response.is_success:
            logger.warning(f"{PROVIDER} poll HTTP {response.status_code} for {job.task_id} — treating as running")
            return VideoJobStatus(VideoJobState.RUNNING)

        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"{PROVIDER} poll returned non-JSON for {job.task_id} — treating as running")
            return VideoJobStatus(VideoJobState.RUNNING)
        return parse_status_payload(payload)

    async def _pause(self, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleep one poll interval, waking early if the caller cancels."""
        if cancel_event is None:
            await asyncio.sleep(self.poll_interval)
            return
        if not cancel_event.is_set():
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        if cancel_event.is_set():
            raise GenerationCanceled("Generation canceled")

    async def wait_for_result(
        self,
        job: VideoJob,
        cancel_event: Optional[asyncio.Event] = None,
        on_poll: Optional[Callable[[int], Awaitable[None]]] = None,
    ) -> str:
        """
        Poll until the job finishes. Returns the result URL.

        Raises GenerationFailed as soon as the provider reports failure,
        UpstreamTimeout once max_poll_attempts is exhausted and
        GenerationCanceled when cancel_event is set. on_poll gets the attempt
        number after every poll that is still running.
        """
        for attempt in range(self.max_poll_attempts):
            await self._pause(cancel_event)

            status = await self.poll_job(job)
            logger.info(f"{PROVIDER} poll #{attempt + 1}/{self.max_poll_attempts}: {status.state.value}")

            if on_poll is not None and status.state is VideoJobState.RUNNING:
                await on_poll(attempt + 1)

            if status.state is VideoJobState.SUCCEEDED:
                if not status.result_url:
                    raise GenerationFailed("Video finished but the provider returned no video URL")
                return status.result_url
            if status.state is VideoJobState.FAILED:
                raise GenerationFailed(f"Video generation failed: {status.message}")

        raise UpstreamTimeout(
            f"Video generation timed out after "
            f"{int(self.max_poll_attempts * self.poll_interval)}s. Please try again."
        )

    # ── Download ─────────────────────────────────────────────────────────

    async def download(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self.download_timeout, transport=self._transport, follow_redirects=True
            ) as client:
                response = await client.get(url)
        except httpx.TransportError as e:
            raise transport_error(PROVIDER, e)
        if not response.is_success:
            raise GenerationFailed(f"Could not download generated video ({response.status_code})")
        logger.info(f"Video downloaded: {len(response.content) / 1024 / 1024:.1f}MB")
        return response.content
