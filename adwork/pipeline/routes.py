"""
FastAPI routes for ad generation.

  POST   /generate-ad               — Generate an ad (sync, or async=true for background)
  GET    /generate-ad/history       — Paginated history, newest first
  GET    /generate-ad/{id}          — Generation status
  POST   /generate-ad/{id}/cancel   — Stop a background generation
  DELETE /generate-ad/{id}          — Delete record + stored media (best effort)

Collaborators (service, store, entitlement gate, limiter, media sink) live on
app.state so the app factory can swap them.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile

from .. import config, metrics
from ..auth_middleware import get_user_id
from ..entitlements import ensure_credits
from ..errors import (
    AdWorkError,
    CapacityError,
    ForbiddenError,
    NotFoundError,
    PayloadTooLargeError,
    QuotaExceededError,
    ValidationError,
)
from .models import (
    AdHistoryItem,
    AdHistoryResponse,
    AdStatusResponse,
    Generation,
    GenerationRequest,
    GenerationStatus,
)

logger = logging.getLogger(__name__)

generate_router = APIRouter(prefix="/generate-ad", tags=["generate-ad"])

TRUE_VALUES = ("1", "true", "yes", "on")


# ── Request parsing ──────────────────────────────────────────────────────────

def first_error_message(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation failed"
    original = (errors[0].get("ctx") or {}).get("error")
    return str(original) if original else errors[0].get("msg", "Validation failed")


async def read_body(request: Request) -> tuple[dict, dict[str, bytes]]:
    """Return (text fields, uploaded files) from a multipart or JSON body."""
    content_type = request.headers.get("content-type", "")
    fields: dict = {}
    files: dict[str, bytes] = {}

    if "multipart/form-data" in content_type or "application/x-www-form-urlencoded" in content_type:
        form = await request.form()
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                data = await value.read()
                if data:
                    files[key] = data
            else:
                fields[key] = value
    else:
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Request body must be JSON or multipart form data")
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        fields = body

    return fields, files


def parse_generation_request(
    fields: dict,
    files: dict[str, bytes],
    require_product_image: bool = False,
) -> GenerationRequest:
    description = fields.get("productDescription") or fields.get("prompt") or ""
    try:
        parsed = GenerationRequest(
            product_description=description,
            brand_name=fields.get("brandName") or "",
            duration=fields.get("duration") or 6,
            style=fields.get("style") or "luxury",
            aspect_ratio=fields.get("aspectRatio") or "16:9",
            deliverable=fields.get("deliverable") or "video",
            product_image=files.get("productPhoto"),
            model_image=files.get("modelPhoto"),
        )
    except PydanticValidationError as e:
        raise ValidationError(first_error_message(e))

    if require_product_image and parsed.product_image is None:
        raise ValidationError("Product photo is required")
    return parsed


def check_upload_sizes(files: dict[str, bytes], limit_bytes: int, plan: str):
    for name, data in files.items():
        if len(data) > limit_bytes:
            mb = limit_bytes // (1024 * 1024)
            hint = " Upgrade to Pro for larger uploads." if plan == "free" else ""
            raise PayloadTooLargeError(f"Image exceeds {mb} MB.{hint}")


def _is_async(fields: dict, query_flag: Optional[str]) -> bool:
    flag = query_flag if query_flag is not None else fields.get("async")
    return str(flag).strip().lower() in TRUE_VALUES if flag is not None else False


async def load_owned(request: Request, generation_id: str, user_id: str) -> Generation:
    generation = await request.app.state.service.get_status(generation_id)
    if generation is None:
        raise NotFoundError("Generation not found")
    if generation.user_id != user_id:
        raise ForbiddenError("Forbidden")
    return generation


# ── POST /generate-ad ────────────────────────────────────────────────────────

@generate_router.post("")
async def generate_ad(
    request: Request,
    user_id: str = Depends(get_user_id),
    async_: Optional[str] = Query(None, alias="async"),
):
    """
    Validate → check credits/quota → run the pipeline.

    Errors:
      - 400: Invalid fields
      - 402: Insufficient credits
      - 413: Upload too large for the plan
      - 429: Daily quota reached, or AI providers are rate limiting
      - 500: Provider configuration problem, timeout or failure
    """
    state = request.app.state
    metrics.inc_counter("requests.generate")

    fields, files = await read_body(request)
    gen_request = parse_generation_request(
        fields, files, getattr(state, "require_product_image", config.REQUIRE_PRODUCT_IMAGE)
    )

    account = await state.gate.get_account(user_id)
    check_upload_sizes(files, account.upload_limit_bytes, account.plan)
    ensure_credits(account)

    allowed, remaining, retry_after = state.limiter.check_quota(user_id, account.daily_limit)
    if not allowed:
        raise QuotaExceededError(
            f"Daily generation limit reached. Try again in {retry_after}s.",
            retry_after=retry_after,
        )

    async def charge(generation: Generation):
        try:
            await state.gate.charge(user_id, generation.id)
        except AdWorkError as e:
            logger.warning(f"[{generation.id}] credit charge failed: {e.message}")

    # ── Background ───────────────────────────────────────────────────────
    if _is_async(fields, async_):
        if not state.limiter.acquire_job_slot():
            state.limiter.refund(user_id)
            raise CapacityError(
                f"Server at capacity ({state.limiter.max_concurrent_jobs} concurrent jobs). "
                f"Try again shortly."
            )
        try:
            generation = await state.service.start_background(
                gen_request,
                user_id,
                on_success=charge,
                on_failure=lambda: state.limiter.refund(user_id),
                on_done=state.limiter.release_job_slot,
            )
        except Exception:
            state.limiter.release_job_slot()
            state.limiter.refund(user_id)
            raise
        return JSONResponse(
            status_code=202,
            content={
                "success": True,
                "generationId": generation.id,
                "status": generation.status.value,
                "progress": generation.progress,
            },
        )

    # ── Synchronous ──────────────────────────────────────────────────────
    try:
        generation = await state.service.generate(gen_request, user_id)
    except AdWorkError:
        state.limiter.refund(user_id)
        raise

    await charge(generation)
    return {
        "success": True,
        "videoUrl": generation.video_url,
        "thumbnailUrl": generation.thumbnail_url,
        "generationId": generation.id,
    }


# ── GET /generate-ad/history ─────────────────────────────────────────────────

@generate_router.get("/history", response_model=AdHistoryResponse)
async def generation_history(
    request: Request,
    user_id: str = Depends(get_user_id),
    page: int = Query(1),
    page_size: int = Query(config.DEFAULT_PAGE_SIZE, alias="pageSize"),
):
    """List the caller's generations, newest first. pageSize is clamped to 1..MAX_PAGE_SIZE."""
    page = max(1, page)
    page_size = min(config.MAX_PAGE_SIZE, max(1, page_size))
    result = await request.app.state.store.find_by_user_id(user_id, page, page_size)
    return AdHistoryResponse(
        generations=[AdHistoryItem.from_generation(g) for g in result.items],
        total=result.total,
        page=page,
        pageSize=page_size,
    )


# ── GET /generate-ad/{id} ────────────────────────────────────────────────────

@generate_router.get("/{generation_id}", response_model=AdStatusResponse, response_model_exclude_none=False)
async def generation_status(request: Request, generation_id: str, user_id: str = Depends(get_user_id)):
    """Current status. Read-only: polling never touches providers or credits."""
    generation = await load_owned(request, generation_id, user_id)
    failed = generation.status is GenerationStatus.FAILED
    return AdStatusResponse(
        success=not failed,
        generationId=generation.id,
        status=generation.status,
        progress=generation.progress,
        videoUrl=generation.video_url,
        thumbnailUrl=generation.thumbnail_url,
        error=(generation.error or "Generation failed") if failed else None,
    )


# ── POST /generate-ad/{id}/cancel ────────────────────────────────────────────

@generate_router.post("/{generation_id}/cancel")
async def cancel_generation(request: Request, generation_id: str, user_id: str = Depends(get_user_id)):
    generation = await load_owned(request, generation_id, user_id)
    if generation.is_terminal or not request.app.state.service.cancel(generation_id):
        raise AdWorkError("Generation is not running", status_code=409)
    return {"success": True, "generationId": generation_id}


# ── DELETE /generate-ad/{id} ─────────────────────────────────────────────────

@generate_router.delete("/{generation_id}")
async def delete_generation(request: Request, generation_id: str, user_id: str = Depends(get_user_id)):
    """Delete the record. Remote media deletion is best effort and never blocks."""
    state = request.app.state
    generation = await load_owned(request, generation_id, user_id)

    if not generation.is_terminal:
        state.service.cancel(generation_id)

    for media_id in (
        generation.media_id,
        generation.thumbnail_media_id,
        generation.product_image_media_id,
        generation.model_image_media_id,
    ):
        if not media_id:
            continue
        try:
            await state.media_sink.delete(media_id)
        except Exception as e:
            logger.warning(f"Failed to delete media asset {media_id}: {e}")

    await state.store.delete(generation_id)
    logger.info(f"Generation {generation_id} deleted by {user_id}")
    return {"success": True}
