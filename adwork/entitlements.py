"""
Entitlement gate — credit balance, plan and upgrades.

Credits are charged once per successful generation. The charge is keyed by
generation id, so a repeated charge for the same generation is a no-op.

Backends:
  InMemoryEntitlementGate  — development and tests
  SupabaseEntitlementGate  — `profiles` + `credit_transactions` tables
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

from . import config
from .errors import InsufficientCreditsError, NotFoundError

logger = logging.getLogger(__name__)

FREE_PLAN = "free"
PRO_PLAN = "pro"
ENTERPRISE_PLAN = "enterprise"

DEFAULT_FREE_CREDITS = 50
PRO_UPGRADE_CREDITS = 400
GENERATION_COST = 1

# Generations per rolling day; -1 is unlimited
PLAN_LIMITS = {
    FREE_PLAN: {"max_generations_per_day": 5},
    PRO_PLAN: {"max_generations_per_day": 50},
    ENTERPRISE_PLAN: {"max_generations_per_day": -1},
}


@dataclass
class Account:
    id: str
    plan: str = FREE_PLAN
    credits: int = DEFAULT_FREE_CREDITS

    @property
    def upload_limit_bytes(self) -> int:
        mb = config.FREE_UPLOAD_LIMIT_MB if self.plan == FREE_PLAN else config.PRO_UPLOAD_LIMIT_MB
        return mb * 1024 * 1024

    @property
    def daily_limit(self) -> int:
        return PLAN_LIMITS.get(self.plan, PLAN_LIMITS[FREE_PLAN])["max_generations_per_day"]


def ensure_credits(account: Account, cost: int = GENERATION_COST) -> None:
    if account.credits < cost:
        raise InsufficientCreditsError(
            "Insufficient credits. Upgrade to Pro to keep generating ads."
        )


class EntitlementGate(Protocol):
    async def get_account(self, user_id: str) -> Account: ...

    async def charge(self, user_id: str, generation_id: str, cost: int = GENERATION_COST) -> bool: ...

    async def apply_upgrade(self, user_id: str) -> Account: ...


class InMemoryEntitlementGate:
    """Unknown users are created on first sight with the free allowance."""

    def __init__(self, default_credits: int = DEFAULT_FREE_CREDITS):
        self._lock = threading.Lock()
        self._accounts: dict[str, Account] = {}
        self._charged: set[str] = set()
        self.default_credits = default_credits

    def _account(self, user_id: str) -> Account:
        account = self._accounts.get(user_id)
        if account is None:
            account = Account(id=user_id, credits=self.default_credits)
            self._accounts[user_id] = account
        return account

    def set_account(self, account: Account) -> None:
        with self._lock:
            self._accounts[account.id] = account

    async def get_account(self, user_id: str) -> Account:
        with self._lock:
            a = self._account(user_id)
            return Account(id=a.id, plan=a.plan, credits=a.credits)

    async def charge(self, user_id: str, generation_id: str, cost: int = GENERATION_COST) -> bool:
        with self._lock:
            if generation_id in self._charged:
                logger.info(f"Generation {generation_id} already charged — skipping")
                return False
            account = self._account(user_id)
            ensure_credits(account, cost)
            account.credits -= cost
            self._charged.add(generation_id)
            logger.info(f"Charged {cost} credit(s) to {user_id} for {generation_id}: {account.credits} remaining")
            return True

    async def apply_upgrade(self, user_id: str) -> Account:
        with self._lock:
            account = self._account(user_id)
            if account.plan != PRO_PLAN:
                account.plan = PRO_PLAN
                account.credits = PRO_UPGRADE_CREDITS
                logger.info(f"User {user_id} upgraded to Pro")
            return Account(id=account.id, plan=account.plan, credits=account.credits)


class SupabaseEntitlementGate:
    """
    Credit balance lives on `profiles.credit_balance`; every charge is also
    written to `credit_transactions` with the generation id as `job_id`,
    which is what makes charging idempotent.
    """

    def __init__(self, client=None):
        self._client = client

    def _sb(self):
        if self._client is None:
            from supabase import create_client

            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
                raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
            self._client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
        return self._client

    def _profile(self, user_id: str) -> dict:
        result = (
            self._sb().table("profiles")
            .select("id, plan, credit_balance")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            raise NotFoundError("Account not found")
        return result.data[0]

    @staticmethod
    def _to_account(row: dict) -> Account:
        return Account(
            id=row["id"],
            plan=row.get("plan") or FREE_PLAN,
            credits=row.get("credit_balance", 0),
        )

    async def get_account(self, user_id: str) -> Account:
        row = await asyncio.to_thread(self._profile, user_id)
        return self._to_account(row)

    async def charge(self, user_id: str, generation_id: str, cost: int = GENERATION_COST) -> bool:
        def _charge() -> bool:
            sb = self._sb()
            existing = (
                sb.table("credit_transactions")
                .select("id")
                .eq("job_id", generation_id)
                .limit(1)
                .execute()
            )
            if existing.data:
                logger.info(f"Generation {generation_id} already charged — skipping")
                return False

            account = self._to_account(self._profile(user_id))
            ensure_credits(account, cost)
            new_balance = account.credits - cost

            sb.table("profiles").update({"credit_balance": new_balance}).eq("id", user_id).execute()
            sb.table("credit_transactions").insert({
                "user_id": user_id,
                "amount": -cost,
                "balance_after": new_balance,
                "reason": "generation",
                "job_id": generation_id,
                "metadata": json.dumps({"type": "ad_generation"}),
            }).execute()
            logger.info(f"Charged {cost} credit(s) to {user_id} for {generation_id}: {new_balance} remaining")
            return True

        return await asyncio.to_thread(_charge)

    async def apply_upgrade(self, user_id: str) -> Account:
        def _upgrade() -> Account:
            account = self._to_account(self._profile(user_id))
            if account.plan == PRO_PLAN:
                return account
            self._sb().table("profiles").update({
                "plan": PRO_PLAN,
                "credit_balance": PRO_UPGRADE_CREDITS,
            }).eq("id", user_id).execute()
            logger.info(f"User {user_id} upgraded to Pro")
            return Account(id=user_id, plan=PRO_PLAN, credits=PRO_UPGRADE_CREDITS)

        return await asyncio.to_thread(_upgrade)


def build_gate(backend: Optional[str] = None):
    backend = backend or config.STORE_BACKEND
    if backend == "supabase":
        return SupabaseEntitlementGate()
    return InMemoryEntitlementGate()
