"""
Shared-secret authentication between the web tier and this worker.

The web tier signs users in and forwards their id in X-User-Id. Every
protected path must also carry an X-Worker-Secret header matching
WORKER_SHARED_SECRET, so the user id header can be trusted.
"""

import logging
import secrets
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from . import config
from .errors import UnauthorizedError

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
SECRET_HEADER = "X-Worker-Secret"


class WorkerAuthMiddleware(BaseHTTPMiddleware):
    """Reject unsigned requests to the generation, account and payment endpoints."""

    PROTECTED_PREFIXES = ("/generate-ad", "/account", "/payment")

    def __init__(self, app, secret: Optional[str] = None, environment: Optional[str] = None):
        super().__init__(app)
        self.secret = config.WORKER_SHARED_SECRET if secret is None else secret
        self.environment = environment or config.ENVIRONMENT

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if not path.startswith(self.PROTECTED_PREFIXES):
            return await call_next(request)

        if not self.secret:
            # In development without the secret set, allow all traffic
            if self.environment == "development":
                return await call_next(request)
            logger.error("WORKER_SHARED_SECRET not configured — rejecting request")
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Worker secret not configured"},
            )

        provided = request.headers.get(SECRET_HEADER, "")
        if not secrets.compare_digest(provided, self.secret):
            return JSONResponse(
                status_code=401,
                content={"success": False, "error": "Invalid or missing worker secret"},
            )

        return await call_next(request)


def get_user_id(request: Request) -> str:
    """FastAPI dependency: the signed-in user forwarded by the web tier."""
    user_id = request.headers.get(USER_HEADER, "").strip()
    if not user_id:
        raise UnauthorizedError("Unauthorized")
    return user_id
