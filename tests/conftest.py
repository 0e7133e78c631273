import asyncio
import io
import itertools

import pytest
from PIL import Image

from adwork import metrics
from adwork.errors import GenerationCanceled
from adwork.pipeline.models import AdCopy
from adwork.pipeline.storage import StoredMedia
from adwork.pipeline.video import VideoJob

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64
VIDEO_URL = "https://cdn.example.com/result/video.mp4"


def make_png(size=(64, 48), color=(200, 30, 30)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color).save(out, format="PNG")
    return out.getvalue()


def sample_copy(**overrides) -> AdCopy:
    fields = dict(
        headline="Run Lighter With Nova",
        subheadline="Red sneakers built for city miles",
        cta="Shop Now",
        body_text="Nova red sneakers keep you moving.",
        color_scheme="#FF0000, #111111",
        mood="Bold, Fast, Urban",
        target_audience="Urban runners",
        image_prompt="A runner lacing red sneakers on a rooftop at dawn",
        video_description="Slow dolly around red sneakers on wet asphalt",
    )
    fields.update(overrides)
    return AdCopy(**fields)


class FakeCopywriter:
    def __init__(self, copy: AdCopy = None, error: Exception = None):
        self.copy = copy or sample_copy()
        self.error = error
        self.briefs = []

    async def generate_copy(self, brief, reference_images=None):
        self.briefs.append(brief)
        if self.error is not None:
            raise self.error
        return self.copy


class FakeImageGenerator:
    def __init__(self, error: Exception = None):
        self.error = error
        self.prompts = []

    async def generate_image(self, scene_prompt, style, reference_images=None):
        self.prompts.append(scene_prompt)
        if self.error is not None:
            raise self.error
        return make_png(), "image/png"


class FakeVideoGenerator:
    """
    Reports `polls` running polls, then finishes. With a `release` event the
    job stays running until the event is set or the caller cancels.
    """

    def __init__(self, error: Exception = None, polls: int = 3, release: asyncio.Event = None):
        self.error = error
        self.polls = polls
        self.release = release
        self.submitted = []
        self.downloads = []

    async def start_job(self, prompt, aspect_ratio="16:9", image_urls=None, duration=None):
        self.submitted.append(
            {"prompt": prompt, "aspect_ratio": aspect_ratio, "image_urls": image_urls, "duration": duration}
        )
        return VideoJob(task_id="task-1", model="veo3_fast")

    async def wait_for_result(self, job, cancel_event=None, on_poll=None):
        for attempt in range(1, self.polls + 1):
            if on_poll is not None:
                await on_poll(attempt)
        if self.release is not None:
            while not self.release.is_set():
                if cancel_event is not None and cancel_event.is_set():
                    raise GenerationCanceled("Generation canceled")
                await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error
        return VIDEO_URL

    async def download(self, url):
        self.downloads.append(url)
        return VIDEO_BYTES


class InMemoryMediaSink:
    def __init__(self, fail_uploads: bool = False, fail_deletes: bool = False):
        self.fail_uploads = fail_uploads
        self.fail_deletes = fail_deletes
        self.objects = {}
        self.deleted = []
        self._ids = itertools.count(1)

    async def upload(self, data, folder, content_type):
        if self.fail_uploads:
            raise RuntimeError("bucket unavailable")
        key = f"adwork/{folder}/{next(self._ids)}"
        self.objects[key] = (data, content_type)
        return StoredMedia(url=f"https://media.example.com/{key}", media_id=key)

    async def delete(self, media_id):
        if self.fail_deletes:
            raise RuntimeError("bucket unavailable")
        self.deleted.append(media_id)
        self.objects.pop(media_id, None)


@pytest.fixture(autouse=True)
def clean_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def png_bytes():
    return make_png()
