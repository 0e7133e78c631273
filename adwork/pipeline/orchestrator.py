"""
AdGenerationService — the ad generation pipeline orchestrator.

Sequences the stages for one generation and records progress after each:
  Step 0: Create record (processing, 0%)
  Step 1: Reference photos → media sink
  Step 2: Ad copy (Gemini text, deterministic fallback on any failure)
  Step 3: Ad image (Gemini image; required for image ads, poster for video ads)
  Step 4: Video (Veo 3.1 via Kie.ai: submit → poll → download)
  Step 5: Deliverable + thumbnail → media sink
  Step 6: Terminal write (succeeded 100% / failed + message)

The service does not retry stages; each adapter owns its own policy. It
never charges credits either: callers do that once a generation succeeds.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Optional

from .. import metrics
from ..errors import AdWorkError, GenerationCanceled, GenerationFailed
from .copywriter import build_brief, fallback_copy
from .imagery import default_scene_prompt
from .models import (
    AdCopy,
    Deliverable,
    Generation,
    GenerationRequest,
    GenerationStatus,
)
from .providers import guess_mime
from .storage import StoredMedia, render_thumbnail

logger = logging.getLogger(__name__)

# Progress checkpoints
PROGRESS_REFERENCES = 10
PROGRESS_COPY = 25
PROGRESS_IMAGE = 50
PROGRESS_VIDEO_SUBMITTED = 60
PROGRESS_VIDEO_POLL_CEILING = 80
PROGRESS_VIDEO_READY = 85
PROGRESS_STORING = 95


class AdGenerationService:
    """
    Usage:
        service = AdGenerationService(store, media_sink, copywriter, imagery, video)

        # Synchronous: returns the finished record or raises a typed AdWorkError
        generation = await service.generate(request, user_id)

        # Background: returns the processing record straight away
        generation = await service.start_background(request, user_id, on_success=charge)
    """

    def __init__(self, store, media_sink, copywriter, image_generator, video_generator):
        self.store = store
        self.media_sink = media_sink
        self.copywriter = copywriter
        self.image_generator = image_generator
        self.video_generator = video_generator
        self._tasks: set[asyncio.Task] = set()
        self._cancel_events: dict[str, asyncio.Event] = {}

    # ── Status ───────────────────────────────────────────────────────────

    async def get_status(self, generation_id: str) -> Optional[Generation]:
        """Pure read. Never triggers provider calls."""
        return await self.store.find_by_id(generation_id)

    async def _update(
        self,
        generation_id: str,
        step: str,
        progress: Optional[int] = None,
        status: GenerationStatus = GenerationStatus.PROCESSING,
        **fields,
    ) -> Optional[Generation]:
        updated = await self.store.update_status(
            generation_id, status=status, progress=progress, **fields
        )
        shown = updated.progress if updated else progress
        logger.info(f"[{generation_id}] {status.value} → {step} ({shown}%)")
        return updated

    # ── Entry points ─────────────────────────────────────────────────────

    async def create_record(
        self,
        request: GenerationRequest,
        user_id: str,
        generation_id: Optional[str] = None,
    ) -> Generation:
        generation = Generation(
            id=generation_id or str(uuid.uuid4()),
            user_id=user_id,
            prompt=request.product_description,
            brand_name=request.brand_name,
            duration=request.duration,
            style=request.style.value,
            aspect_ratio=request.aspect_ratio.value,
            deliverable=request.deliverable.value,
            status=GenerationStatus.PROCESSING,
            progress=0,
        )
        created = await self.store.create(generation)
        logger.info(
            f"[{created.id}] processing → accepted for user {user_id} "
            f"({request.deliverable.value}, {request.style.value}, {request.aspect_ratio.value})"
        )
        return created

    async def generate(
        self,
        request: GenerationRequest,
        user_id: str,
        cancel_event: Optional[asyncio.Event] = None,
        generation_id: Optional[str] = None,
    ) -> Generation:
        """Create the record and run the whole pipeline in this task."""
        generation = await self.create_record(request, user_id, generation_id)
        return await self.run(generation.id, request, cancel_event)

    async def start_background(
        self,
        request: GenerationRequest,
        user_id: str,
        on_success: Optional[Callable[[Generation], Awaitable[None]]] = None,
        on_failure: Optional[Callable[[], None]] = None,
        on_done: Optional[Callable[[], None]] = None,
    ) -> Generation:
        """
        Create the record, then run the pipeline as a tracked asyncio task.
        Progress and the outcome are read back through get_status().

        on_success runs after a successful generation, on_failure after a
        failed or canceled one, on_done always.
        """
        generation = await self.create_record(request, user_id)
        cancel_event = asyncio.Event()
        self._cancel_events[generation.id] = cancel_event

        async def _job():
            succeeded = False
            try:
                result = await self.run(generation.id, request, cancel_event)
                succeeded = True
                if on_success is not None:
                    await on_success(result)
            except AdWorkError as e:
                # Already recorded on the generation
                logger.info(f"[{generation.id}] background generation ended: {e.message}")
            except asyncio.CancelledError:
                logger.info(f"[{generation.id}] background generation cancelled")
            except Exception:
                logger.error(f"[{generation.id}] background generation crashed", exc_info=True)
            finally:
                if not succeeded and on_failure is not None:
                    on_failure()
                self._cancel_events.pop(generation.id, None)
                if on_done is not None:
                    on_done()

        task = asyncio.create_task(_job(), name=f"generation-{generation.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return generation

    def cancel(self, generation_id: str) -> bool:
        """Signal a background generation to stop. False if it is not running."""
        event = self._cancel_events.get(generation_id)
        if event is None:
            return False
        event.set()
        logger.info(f"[{generation_id}] cancellation requested")
        return True

    async def shutdown(self):
        """Cancel every background generation and wait for them to settle."""
        for event in self._cancel_events.values():
            event.set()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── The pipeline ─────────────────────────────────────────────────────

    async def run(
        self,
        generation_id: str,
        request: GenerationRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Generation:
        """
        Run every stage for an existing processing record.

        Returns the succeeded record. On failure the record is marked failed
        first and the typed AdWorkError is re-raised.
        """
        try:
            return await self._run_stages(generation_id, request, cancel_event)

        except AdWorkError as e:
            metrics.inc_counter("generations.failed")
            metrics.record_error("pipeline", type(e).__name__, e.message, generation_id)
            await self._fail(generation_id, e.message)
            raise

        except asyncio.CancelledError:
            metrics.inc_counter("generations.failed")
            await self._fail(generation_id, "Generation canceled")
            raise

        except Exception as e:
            logger.error(f"Pipeline failed for generation {generation_id}: {e}", exc_info=True)
            metrics.inc_counter("generations.failed")
            metrics.record_error("pipeline", type(e).__name__, str(e), generation_id)
            await self._fail(generation_id, "Ad generation failed. Please try again.")
            raise GenerationFailed("Ad generation failed. Please try again.") from e

    async def _fail(self, generation_id: str, message: str):
        try:
            await self._update(
                generation_id, "Failed", status=GenerationStatus.FAILED, error=message
            )
        except Exception:
            logger.error(f"[{generation_id}] could not record failure", exc_info=True)

    @staticmethod
    def _check_cancel(cancel_event: Optional[asyncio.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCanceled("Generation canceled")

    async def _run_stages(
        self,
        generation_id: str,
        request: GenerationRequest,
        cancel_event: Optional[asyncio.Event],
    ) -> Generation:
        references = [img for img in (request.product_image, request.model_image) if img]

        # ── Step 1: Reference photos ─────────────────────────────────────
        reference_urls = await self._upload_references(generation_id, request)
        await self._update(
            generation_id, "Reference photos stored", PROGRESS_REFERENCES, **reference_urls
        )
        self._check_cancel(cancel_event)

        # ── Step 2: Ad copy ──────────────────────────────────────────────
        copy = await self._write_copy(generation_id, request, references)
        await self._update(
            generation_id,
            "Ad copy ready (fallback)" if copy.fallback else "Ad copy ready",
            PROGRESS_COPY,
        )
        self._check_cancel(cancel_event)

        # ── Step 3: Ad image ─────────────────────────────────────────────
        image = await self._render_image(generation_id, request, copy, references)
        await self._update(
            generation_id,
            "Ad image ready" if image else "Continuing without ad image",
            PROGRESS_IMAGE,
        )
        self._check_cancel(cancel_event)

        # ── Step 4: Video ────────────────────────────────────────────────
        video_bytes = None
        if request.deliverable is Deliverable.VIDEO:
            video_bytes = await self._render_video(
                generation_id, request, copy, reference_urls, cancel_event
            )
            await self._update(generation_id, "Video downloaded", PROGRESS_VIDEO_READY)
            self._check_cancel(cancel_event)

        # ── Step 5: Media sink ───────────────────────────────────────────
        await self._update(generation_id, "Storing ad", PROGRESS_STORING)
        with metrics.timed("store_media"):
            if video_bytes is not None:
                primary = await self._store(video_bytes, "videos", "video/mp4")
            else:
                primary = await self._store(image[0], "images", image[1])
            thumbnail = await self._store_thumbnail(generation_id, image)

        # ── Step 6: Done ─────────────────────────────────────────────────
        final = await self._update(
            generation_id,
            "Ad ready",
            100,
            status=GenerationStatus.SUCCEEDED,
            video_url=primary.url,
            media_id=primary.media_id,
            thumbnail_url=thumbnail.url if thumbnail else None,
            thumbnail_media_id=thumbnail.media_id if thumbnail else None,
            error=None,
        )
        if final is None:
            # Record deleted mid-run; nothing will ever reference these assets
            await self._discard_media(generation_id, primary, thumbnail)
            raise GenerationFailed("Generation record disappeared before completion")
        metrics.inc_counter("generations.succeeded")
        return final

    # ── Stages ───────────────────────────────────────────────────────────

    async def _upload_references(self, generation_id: str, request: GenerationRequest) -> dict:
        urls = {}
        for prefix, data, folder in (
            ("product_image", request.product_image, "product-images"),
            ("model_image", request.model_image, "model-images"),
        ):
            if not data:
                continue
            try:
                stored = await self.media_sink.upload(data, folder, guess_mime(data))
                urls[f"{prefix}_url"] = stored.url
                urls[f"{prefix}_media_id"] = stored.media_id
            except Exception as e:
                logger.warning(f"[{generation_id}] reference upload to {folder} failed: {e}")
        return urls

    async def _write_copy(
        self,
        generation_id: str,
        request: GenerationRequest,
        references: list[bytes],
    ) -> AdCopy:
        brief = build_brief(
            request.brand_name,
            request.product_description,
            request.style.value,
            request.duration,
            has_product_image=request.product_image is not None,
            has_model_image=request.model_image is not None,
        )
        try:
            with metrics.timed("copy"):
                return await self.copywriter.generate_copy(brief, references)
        except Exception as e:
            logger.warning(f"[{generation_id}] ad copy fallback: {str(e)[:200]}")
            metrics.inc_counter("copy.fallback")
            return fallback_copy(request.brand_name, request.product_description, request.style.value)

    async def _render_image(
        self,
        generation_id: str,
        request: GenerationRequest,
        copy: AdCopy,
        references: list[bytes],
    ) -> Optional[tuple[bytes, str]]:
        required = request.deliverable is Deliverable.IMAGE
        scene = copy.image_prompt
        if copy.fallback or not scene:
            scene = default_scene_prompt(
                request.brand_name, request.product_description, request.style.value
            )
        try:
            with metrics.timed("image"):
                return await self.image_generator.generate_image(
                    scene, request.style.value, references
                )
        except Exception as e:
            if required:
                raise
            logger.warning(f"[{generation_id}] ad image failed (optional for video): {str(e)[:200]}")
            metrics.record_error("image", type(e).__name__, str(e), generation_id)
            return None

    async def _render_video(
        self,
        generation_id: str,
        request: GenerationRequest,
        copy: AdCopy,
        reference_urls: dict,
        cancel_event: Optional[asyncio.Event],
    ) -> bytes:
        brand = f' for "{request.brand_name}"' if request.brand_name else ""
        prompt = (
            f"Professional {request.style.value} video ad{brand}. {copy.video_description} "
            f"Cinematic quality, smooth transitions."
        )
        image_urls = [
            url for url in (
                reference_urls.get("product_image_url"),
                reference_urls.get("model_image_url"),
            ) if url
        ]

        with metrics.timed("video"):
            job = await self.video_generator.start_job(
                prompt, request.aspect_ratio.value, image_urls or None, request.duration
            )
            await self._update(
                generation_id, f"Video job {job.task_id} submitted", PROGRESS_VIDEO_SUBMITTED
            )

            async def _on_poll(attempt: int):
                progress = min(PROGRESS_VIDEO_POLL_CEILING, PROGRESS_VIDEO_SUBMITTED + attempt)
                await self.store.update_status(generation_id, progress=progress)

            result_url = await self.video_generator.wait_for_result(
                job, cancel_event, on_poll=_on_poll
            )
            return await self.video_generator.download(result_url)

    async def _store(self, data: bytes, folder: str, content_type: str) -> StoredMedia:
        try:
            return await self.media_sink.upload(data, folder, content_type)
        except Exception as e:
            raise GenerationFailed("Could not store the generated ad. Please try again.") from e

    async def _discard_media(self, generation_id: str, *assets: Optional[StoredMedia]):
        for asset in assets:
            if asset is None:
                continue
            try:
                await self.media_sink.delete(asset.media_id)
            except Exception as e:
                logger.warning(f"[{generation_id}] could not delete orphaned asset {asset.media_id}: {e}")

    async def _store_thumbnail(
        self,
        generation_id: str,
        image: Optional[tuple[bytes, str]],
    ) -> Optional[StoredMedia]:
        if image is None:
            return None
        try:
            thumb = await asyncio.to_thread(render_thumbnail, image[0])
            return await self.media_sink.upload(thumb, "thumbnails", "image/jpeg")
        except Exception as e:
            logger.warning(f"[{generation_id}] thumbnail skipped: {e}")
            return None
