"""
Account and payment routes.

  GET  /account                     — Plan and credit balance of the caller
  POST /payment/upgrade-succeeded   — Payment processor confirmed a Pro upgrade
"""

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from .auth_middleware import get_user_id

logger = logging.getLogger(__name__)

account_router = APIRouter(prefix="/account", tags=["account"])
payment_router = APIRouter(prefix="/payment", tags=["payment"])


class UpgradeEvent(BaseModel):
    userId: str = Field(..., min_length=1)


def _account_body(account) -> dict:
    return {
        "userId": account.id,
        "plan": account.plan,
        "credits": account.credits,
        "dailyLimit": account.daily_limit,
        "uploadLimitMb": account.upload_limit_bytes // (1024 * 1024),
    }


@account_router.get("")
async def get_account(request: Request, user_id: str = Depends(get_user_id)):
    account = await request.app.state.gate.get_account(user_id)
    return {"success": True, **_account_body(account)}


@payment_router.post("/upgrade-succeeded")
async def upgrade_succeeded(event: UpgradeEvent, request: Request):
    """Switch the user to Pro. Replaying the same event leaves the account unchanged."""
    account = await request.app.state.gate.apply_upgrade(event.userId)
    logger.info(f"Upgrade event applied for {event.userId}: plan={account.plan}")
    return {"success": True, "user": _account_body(account)}
