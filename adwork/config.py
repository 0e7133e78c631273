"""
Environment configuration for the ad worker.

Values are read once at import time. Adapters take these as constructor
defaults so tests can pass their own.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    return int(raw) if raw.strip() else default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    return float(raw) if raw.strip() else default


def _bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ── Gemini (copy + image) ────────────────────────────────────────────────────
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", "")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.0-flash")
GEMINI_IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.0-flash-preview-image-generation")

# ── Kie.ai (video) ───────────────────────────────────────────────────────────
KIE_API_KEY = os.getenv("KIE_API_KEY", "")
KIE_API_BASE = os.getenv("KIE_API_BASE", "https://api.kie.ai/api/v1")
KIE_VIDEO_MODEL = os.getenv("KIE_VIDEO_MODEL", "veo3_fast")

VIDEO_POLL_INTERVAL = _float("VIDEO_POLL_INTERVAL", 5.0)  # seconds
VIDEO_MAX_POLL_ATTEMPTS = _int("VIDEO_MAX_POLL_ATTEMPTS", 60)  # 5 minutes at 5s
VIDEO_SUBMIT_RETRIES = _int("VIDEO_SUBMIT_RETRIES", 2)

# ── R2 media sink ────────────────────────────────────────────────────────────
R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "assets")

# ── Supabase (records + credits) ─────────────────────────────────────────────
SUPABASE_URL = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")  # memory | supabase

# ── API surface ──────────────────────────────────────────────────────────────
WORKER_SHARED_SECRET = os.getenv("WORKER_SHARED_SECRET", "")
FREE_UPLOAD_LIMIT_MB = _int("FREE_UPLOAD_LIMIT_MB", 10)
PRO_UPLOAD_LIMIT_MB = _int("PRO_UPLOAD_LIMIT_MB", 50)
DEFAULT_PAGE_SIZE = _int("DEFAULT_PAGE_SIZE", 12)
MAX_PAGE_SIZE = _int("MAX_PAGE_SIZE", 50)
MAX_CONCURRENT_JOBS = _int("MAX_CONCURRENT_JOBS", 10)
LIMITER_CLEANUP_INTERVAL = _float("LIMITER_CLEANUP_INTERVAL", 3600.0)  # seconds between quota sweeps
REQUIRE_PRODUCT_IMAGE = _bool("REQUIRE_PRODUCT_IMAGE", False)
