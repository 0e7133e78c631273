import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import config, metrics
from .auth_middleware import WorkerAuthMiddleware
from .billing import account_router, payment_router
from .entitlements import build_gate
from .errors import AdWorkError
from .limiter import GenerationLimiter
from .pipeline import (
    AdGenerationService,
    GeminiCopywriter,
    GeminiImageGenerator,
    InMemoryGenerationStore,
    KieVideoGenerator,
    R2MediaSink,
    SupabaseGenerationStore,
    generate_router,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def sweep_limiter(limiter: GenerationLimiter, interval: float):
    """Drop expired quota windows every interval seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        limiter.cleanup_expired()
        logger.debug("Expired quota windows pruned")


def build_store(backend: Optional[str] = None):
    backend = backend or config.STORE_BACKEND
    if backend == "supabase":
        return SupabaseGenerationStore(max_page_size=config.MAX_PAGE_SIZE)
    return InMemoryGenerationStore(max_page_size=config.MAX_PAGE_SIZE)


def build_service(store=None, media_sink=None) -> AdGenerationService:
    """Wire the production adapters. Credentials are checked on first use."""
    return AdGenerationService(
        store=store or build_store(),
        media_sink=media_sink or R2MediaSink(),
        copywriter=GeminiCopywriter(),
        image_generator=GeminiImageGenerator(),
        video_generator=KieVideoGenerator(),
    )


def create_app(
    service: Optional[AdGenerationService] = None,
    gate=None,
    limiter: Optional[GenerationLimiter] = None,
    secret: Optional[str] = None,
    environment: Optional[str] = None,
    require_product_image: Optional[bool] = None,
) -> FastAPI:
    service = service or build_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Ad worker starting up (env={config.ENVIRONMENT}, store={config.STORE_BACKEND})")
        sweeper = asyncio.create_task(
            sweep_limiter(app.state.limiter, config.LIMITER_CLEANUP_INTERVAL), name="limiter-cleanup"
        )
        yield
        logger.info("Ad worker shutting down, cancelling background generations...")
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
        await service.shutdown()

    app = FastAPI(title="Ad generation worker", lifespan=lifespan)
    app.add_middleware(WorkerAuthMiddleware, secret=secret, environment=environment)

    app.state.service = service
    app.state.store = service.store
    app.state.media_sink = service.media_sink
    app.state.gate = gate or build_gate()
    app.state.limiter = limiter or GenerationLimiter()
    app.state.require_product_image = (
        config.REQUIRE_PRODUCT_IMAGE if require_product_image is None else require_product_image
    )

    @app.exception_handler(AdWorkError)
    async def ad_work_error_handler(request: Request, exc: AdWorkError):
        headers = {}
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            headers["Retry-After"] = str(retry_after)
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"success": False, "error": message})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"},
        )

    @app.get("/health")
    def health_check():
        """Verify worker is running and env vars are configured."""
        return {
            "status": "ok",
            "gemini_api_key_set": bool(config.GEMINI_API_KEY),
            "kie_api_key_set": bool(config.KIE_API_KEY),
            "store_backend": config.STORE_BACKEND,
        }

    @app.get("/metrics")
    def metrics_endpoint():
        """Return a snapshot of all worker metrics."""
        snapshot = metrics.get_snapshot()
        snapshot["active_jobs"] = app.state.limiter.active_jobs
        return snapshot

    app.include_router(generate_router)
    app.include_router(account_router)
    app.include_router(payment_router)
    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("adwork.main:app", host="0.0.0.0", port=port, reload=config.ENVIRONMENT == "development")
