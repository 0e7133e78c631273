"""
Ad Generation Pipeline

Orchestration for one ad per request:
  Copy  — Gemini text with a deterministic template fallback
  Image — Gemini image model (the deliverable, or a thumbnail for video ads)
  Video — Veo via Kie.ai: submit → poll → download
  Store — R2 media sink + generation records (memory or Supabase)
"""

from .copywriter import GeminiCopywriter
from .imagery import GeminiImageGenerator
from .models import Generation, GenerationRequest, GenerationStatus
from .orchestrator import AdGenerationService
from .routes import generate_router
from .storage import R2MediaSink
from .store import InMemoryGenerationStore, SupabaseGenerationStore
from .video import KieVideoGenerator

__all__ = [
    "AdGenerationService",
    "generate_router",
    "GeminiCopywriter",
    "GeminiImageGenerator",
    "KieVideoGenerator",
    "R2MediaSink",
    "InMemoryGenerationStore",
    "SupabaseGenerationStore",
    "Generation",
    "GenerationRequest",
    "GenerationStatus",
]
