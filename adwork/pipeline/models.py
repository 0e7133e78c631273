"""
Pydantic models and enums for the ad generation pipeline.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ────────────────────────────────────────────────────────────────────

class GenerationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES = {GenerationStatus.SUCCEEDED, GenerationStatus.FAILED, GenerationStatus.CANCELED}


class AdStyle(str, Enum):
    CINEMATIC = "cinematic"
    MINIMAL = "minimal"
    BOLD = "bold"
    CORPORATE = "corporate"
    PLAYFUL = "playful"
    LUXURY = "luxury"


class AspectRatio(str, Enum):
    PORTRAIT = "9:16"
    LANDSCAPE = "16:9"


class Deliverable(str, Enum):
    VIDEO = "video"
    IMAGE = "image"


STYLE_LIST = [s.value for s in AdStyle]
ASPECT_RATIO_LIST = [a.value for a in AspectRatio]

MIN_DURATION = 4
MAX_DURATION = 12


# ── Request ──────────────────────────────────────────────────────────────────

class GenerationRequest(BaseModel):
    """A validated ad request. Never persisted as-is."""

    product_description: str
    brand_name: str = ""
    duration: int = 6
    style: AdStyle = AdStyle.LUXURY
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    deliverable: Deliverable = Deliverable.VIDEO
    product_image: Optional[bytes] = Field(default=None, repr=False)
    model_image: Optional[bytes] = Field(default=None, repr=False)

    @field_validator("product_description", mode="before")
    @classmethod
    def _check_description(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Product description is required")
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Description too short")
        if len(v) > 500:
            raise ValueError("Description must be 500 characters or less")
        return v

    @field_validator("brand_name", mode="before")
    @classmethod
    def _check_brand(cls, v):
        if v is None:
            return ""
        if not isinstance(v, str):
            raise ValueError("Brand name must be text")
        v = v.strip()
        if len(v) > 100:
            raise ValueError("Brand name too long")
        return v

    @field_validator("duration", mode="before")
    @classmethod
    def _check_duration(cls, v):
        try:
            v = int(v)
        except (TypeError, ValueError):
            raise ValueError("Duration is required")
        if not MIN_DURATION <= v <= MAX_DURATION:
            raise ValueError(f"Duration must be between {MIN_DURATION} and {MAX_DURATION} seconds")
        return v

    @field_validator("style", mode="before")
    @classmethod
    def _check_style(cls, v):
        if v not in STYLE_LIST:
            raise ValueError(f"Invalid style. Must be one of: {', '.join(STYLE_LIST)}")
        return v

    @field_validator("aspect_ratio", mode="before")
    @classmethod
    def _check_aspect_ratio(cls, v):
        if v in (None, ""):
            return AspectRatio.LANDSCAPE
        if v not in ASPECT_RATIO_LIST:
            raise ValueError("Invalid format. Must be 9:16 or 16:9")
        return v

    @field_validator("deliverable", mode="before")
    @classmethod
    def _check_deliverable(cls, v):
        if v in (None, ""):
            return Deliverable.VIDEO
        if v not in [d.value for d in Deliverable]:
            raise ValueError("Invalid deliverable. Must be video or image")
        return v

    @field_validator("product_image", "model_image", mode="before")
    @classmethod
    def _empty_upload_is_none(cls, v):
        return v or None


# ── Ad copy ──────────────────────────────────────────────────────────────────

class AdCopy(BaseModel):
    headline: str
    subheadline: str
    cta: str
    body_text: str
    color_scheme: str
    mood: str
    target_audience: str
    image_prompt: str
    video_description: str
    fallback: bool = False


# ── Persisted record ─────────────────────────────────────────────────────────

class Generation(BaseModel):
    id: str
    user_id: str
    prompt: str
    brand_name: str = ""
    duration: int
    style: str
    aspect_ratio: str = AspectRatio.LANDSCAPE.value
    deliverable: str = Deliverable.VIDEO.value
    status: GenerationStatus = GenerationStatus.PROCESSING
    progress: int = 0
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    product_image_url: Optional[str] = None
    model_image_url: Optional[str] = None
    media_id: Optional[str] = None
    thumbnail_media_id: Optional[str] = None
    product_image_media_id: Optional[str] = None
    model_image_media_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Page(BaseModel):
    items: list[Generation] = Field(default_factory=list)
    total: int = 0


# ── API responses ────────────────────────────────────────────────────────────

class AdStatusResponse(BaseModel):
    success: bool = True
    generationId: str
    status: GenerationStatus
    progress: int
    videoUrl: Optional[str] = None
    thumbnailUrl: Optional[str] = None
    error: Optional[str] = None


class AdHistoryItem(BaseModel):
    generationId: str
    prompt: str
    brandName: str
    duration: int
    style: str
    aspectRatio: str
    deliverable: str
    status: GenerationStatus
    videoUrl: Optional[str] = None
    thumbnailUrl: Optional[str] = None
    productImageUrl: Optional[str] = None
    modelImageUrl: Optional[str] = None
    createdAt: str

    @classmethod
    def from_generation(cls, gen: Generation) -> "AdHistoryItem":
        return cls(
            generationId=gen.id,
            prompt=gen.prompt,
            brandName=gen.brand_name,
            duration=gen.duration,
            style=gen.style,
            aspectRatio=gen.aspect_ratio,
            deliverable=gen.deliverable,
            status=gen.status,
            videoUrl=gen.video_url,
            thumbnailUrl=gen.thumbnail_url,
            productImageUrl=gen.product_image_url,
            modelImageUrl=gen.model_image_url,
            createdAt=gen.created_at.isoformat(),
        )


class AdHistoryResponse(BaseModel):
    success: bool = True
    generations: list[AdHistoryItem]
    total: int
    page: int
    pageSize: int
