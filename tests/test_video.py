"""
Unit tests for the Veo (Kie.ai) video adapter.

Tests:
- Status word / successFlag normalization
- Result URL extraction across payload shapes
- Poll loop: success, early failure, timeout, transient errors
- Cancellation while polling
- Submit errors mapped onto the error taxonomy
"""

import asyncio
import json

import httpx
import pytest

from adwork.errors import (
    GenerationCanceled,
    GenerationFailed,
    UpstreamConfigError,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from adwork.pipeline.video import (
    KieVideoGenerator,
    VideoJob,
    VideoJobState,
    extract_result_url,
    normalize_state,
    parse_status_payload,
)

API = "https://kie.test/api/v1"
RESULT_URL = "https://tempfile.test/video.mp4"


def generator_for(handler, **overrides) -> KieVideoGenerator:
    options = dict(
        api_key="kie-key",
        api_base=API,
        model="veo3_fast",
        poll_interval=0,
        max_poll_attempts=60,
        submit_retries=0,
        retry_base_delay=0,
        transport=httpx.MockTransport(handler),
    )
    options.update(overrides)
    return KieVideoGenerator(**options)


def record(flag=None, status=None, **extra) -> dict:
    data = dict(extra)
    if flag is not None:
        data["successFlag"] = flag
    if status is not None:
        data["status"] = status
    return {"code": 200, "msg": "success", "data": data}


@pytest.mark.parametrize(
    "word, expected",
    [
        ("completed", VideoJobState.SUCCEEDED),
        ("SUCCESS", VideoJobState.SUCCEEDED),
        ("done", VideoJobState.SUCCEEDED),
        ("failed", VideoJobState.FAILED),
        ("GENERATE_FAILED", VideoJobState.FAILED),
        ("sensitive_word_error", VideoJobState.FAILED),
        ("queuing", VideoJobState.RUNNING),
        ("generating", VideoJobState.RUNNING),
        ("something_new", VideoJobState.RUNNING),
        ("", VideoJobState.RUNNING),
        (None, VideoJobState.RUNNING),
    ],
)
def test_status_words(word, expected):
    assert normalize_state(word) is expected


def test_success_flag_wins_over_status_word():
    assert normalize_state("processing", success_flag=1) is VideoJobState.SUCCEEDED
    assert normalize_state("processing", success_flag="3") is VideoJobState.FAILED
    assert normalize_state("completed", success_flag=0) is VideoJobState.RUNNING


def test_extract_result_url_shapes():
    assert extract_result_url({"response": {"resultUrls": [RESULT_URL]}}) == RESULT_URL
    assert extract_result_url({"resultUrls": json.dumps([RESULT_URL])}) == RESULT_URL
    assert extract_result_url({"works": [{"resource": {"resource": RESULT_URL}}]}) == RESULT_URL
    assert extract_result_url({"video_url": RESULT_URL}) == RESULT_URL
    assert extract_result_url({"result": {"url": RESULT_URL}}) == RESULT_URL
    assert extract_result_url({}) is None


def test_parse_failed_payload_keeps_reason():
    status = parse_status_payload(record(flag=2, errorMessage="Prompt flagged by safety filter"))
    assert status.state is VideoJobState.FAILED
    assert status.message == "Prompt flagged by safety filter"


@pytest.mark.asyncio
async def test_start_job_sends_reference_mode():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "veo-123"}})

    job = await generator_for(handler).start_job(
        "Ad prompt", "9:16", image_urls=["https://media.test/product.png"], duration=8
    )

    assert job.task_id == "veo-123"
    assert seen["path"].endswith("/veo/generate")
    assert seen["auth"] == "Bearer kie-key"
    assert seen["body"]["aspectRatio"] == "9:16"
    assert seen["body"]["mode"] == "REFERENCE_2_VIDEO"
    assert seen["body"]["imageUrls"] == ["https://media.test/product.png"]


@pytest.mark.asyncio
async def test_start_job_rate_limited():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "7"}, text="busy")

    with pytest.raises(UpstreamRateLimited) as exc:
        await generator_for(handler).start_job("Ad prompt")
    assert exc.value.retry_after == 7


@pytest.mark.asyncio
async def test_start_job_retries_transient_5xx():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "veo-9"}})

    job = await generator_for(handler, submit_retries=2).start_job("Ad prompt")
    assert job.task_id == "veo-9"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_start_job_body_codes():
    def busy(request):
        return httpx.Response(200, json={"code": 455, "msg": "service unavailable"})

    def unpaid(request):
        return httpx.Response(200, json={"code": 402, "msg": "insufficient credits"})

    with pytest.raises(UpstreamRateLimited):
        await generator_for(busy).start_job("Ad prompt")
    with pytest.raises(UpstreamConfigError):
        await generator_for(unpaid).start_job("Ad prompt")


@pytest.mark.asyncio
async def test_start_job_without_key():
    with pytest.raises(UpstreamConfigError):
        await generator_for(lambda r: httpx.Response(200), api_key="").start_job("Ad prompt")


@pytest.mark.asyncio
async def test_wait_for_result_succeeds_after_running_polls():
    polls = []
    progress = []

    def handler(request):
        polls.append(request)
        if len(polls) < 3:
            return httpx.Response(200, json=record(flag=0))
        return httpx.Response(200, json=record(flag=1, response={"resultUrls": [RESULT_URL]}))

    async def on_poll(attempt):
        progress.append(attempt)

    url = await generator_for(handler).wait_for_result(VideoJob("veo-1", "veo3_fast"), on_poll=on_poll)

    assert url == RESULT_URL
    assert len(polls) == 3
    assert progress == [1, 2]
    assert polls[0].url.params["taskId"] == "veo-1"


@pytest.mark.asyncio
async def test_failure_on_third_poll_stops_immediately():
    polls = []

    def handler(request):
        polls.append(request)
        if len(polls) < 3:
            return httpx.Response(200, json=record(status="generating"))
        return httpx.Response(200, json=record(flag=2, errorMessage="content policy"))

    with pytest.raises(GenerationFailed) as exc:
        await generator_for(handler).wait_for_result(VideoJob("veo-1", "veo3_fast"))

    assert len(polls) == 3, f"Expected exactly 3 polls, got {len(polls)}"
    assert "content policy" in exc.value.message


@pytest.mark.asyncio
async def test_times_out_after_poll_ceiling():
    polls = []

    def handler(request):
        polls.append(request)
        return httpx.Response(200, json=record(flag=0))

    with pytest.raises(UpstreamTimeout):
        await generator_for(handler).wait_for_result(VideoJob("veo-1", "veo3_fast"))
    assert len(polls) == 60


@pytest.mark.asyncio
async def test_transient_poll_errors_count_as_running():
    polls = []

    def handler(request):
        polls.append(request)
        if len(polls) == 1:
            raise httpx.ConnectError("connection reset", request=request)
        if len(polls) == 2:
            return httpx.Response(500, text="oops")
        if len(polls) == 3:
            return httpx.Response(200, text="<html>gateway</html>")
        return httpx.Response(200, json=record(status="completed", resultUrls=[RESULT_URL]))

    url = await generator_for(handler).wait_for_result(VideoJob("veo-1", "veo3_fast"))
    assert url == RESULT_URL
    assert len(polls) == 4


@pytest.mark.asyncio
async def test_rejected_credentials_while_polling():
    def handler(request):
        return httpx.Response(401, text="bad key")

    with pytest.raises(UpstreamConfigError):
        await generator_for(handler).wait_for_result(VideoJob("veo-1", "veo3_fast"))


@pytest.mark.asyncio
async def test_succeeded_without_url_is_a_failure():
    def handler(request):
        return httpx.Response(200, json=record(flag=1))

    with pytest.raises(GenerationFailed):
        await generator_for(handler).wait_for_result(VideoJob("veo-1", "veo3_fast"))


@pytest.mark.asyncio
async def test_cancel_while_polling():
    cancel = asyncio.Event()
    polls = []

    def handler(request):
        polls.append(request)
        if len(polls) == 2:
            cancel.set()
        return httpx.Response(200, json=record(flag=0))

    generator = generator_for(handler, poll_interval=0.01)
    with pytest.raises(GenerationCanceled):
        await generator.wait_for_result(VideoJob("veo-1", "veo3_fast"), cancel_event=cancel)
    assert len(polls) == 2


@pytest.mark.asyncio
async def test_download_fetches_result_url():
    def handler(request):
        assert str(request.url) == RESULT_URL
        return httpx.Response(200, content=b"mp4-bytes")

    assert await generator_for(handler).download(RESULT_URL) == b"mp4-bytes"


@pytest.mark.asyncio
async def test_download_failure():
    def handler(request):
        return httpx.Response(404)

    with pytest.raises(GenerationFailed):
        await generator_for(handler).download(RESULT_URL)
