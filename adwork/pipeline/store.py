"""
Generation record store.

Two backends behind the same contract:
  InMemoryGenerationStore  — dict guarded by a lock (development, tests)
  SupabaseGenerationStore  — `generations` table via the service-role client

update_status() merges only the fields it is given, never lets progress go
backwards and always bumps updated_at. Unknown ids return None.
"""

import asyncio
import logging
import threading
from typing import Optional, Protocol

from .. import config
from .models import Generation, GenerationStatus, Page, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "status",
    "progress",
    "video_url",
    "thumbnail_url",
    "product_image_url",
    "model_image_url",
    "media_id",
    "thumbnail_media_id",
    "product_image_media_id",
    "model_image_media_id",
    "error",
}


def clamp_page(page: int, page_size: int, max_page_size: Optional[int] = None) -> tuple[int, int]:
    limit = max_page_size or config.MAX_PAGE_SIZE
    return max(1, int(page)), min(limit, max(1, int(page_size)))


def normalize_update(update: dict) -> dict:
    unknown = set(update) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    changes = dict(update)
    if "status" in changes:
        changes["status"] = GenerationStatus(changes["status"])
    if changes.get("progress") is not None:
        changes["progress"] = min(100, int(changes["progress"]))
    else:
        changes.pop("progress", None)
    return changes


def merge_update(current: Generation, update: dict) -> Generation:
    changes = normalize_update(update)
    if "progress" in changes:
        changes["progress"] = max(current.progress, changes["progress"])
    changes["updated_at"] = utcnow()
    return current.model_copy(update=changes)


class GenerationStore(Protocol):
    async def create(self, generation: Generation) -> Generation: ...

    async def find_by_id(self, generation_id: str) -> Optional[Generation]: ...

    async def find_by_user_id(self, user_id: str, page: int, page_size: int) -> Page: ...

    async def update_status(self, generation_id: str, **update) -> Optional[Generation]: ...

    async def delete(self, generation_id: str) -> bool: ...


class InMemoryGenerationStore:
    def __init__(self, max_page_size: Optional[int] = None):
        self._lock = threading.Lock()
        self._records: dict[str, Generation] = {}
        self._order: dict[str, int] = {}
        self._seq = 0
        self.max_page_size = max_page_size

    async def create(self, generation: Generation) -> Generation:
        with self._lock:
            if generation.id in self._records:
                raise ValueError(f"Generation {generation.id} already exists")
            self._seq += 1
            self._order[generation.id] = self._seq
            self._records[generation.id] = generation.model_copy()
        return generation.model_copy()

    async def find_by_id(self, generation_id: str) -> Optional[Generation]:
        with self._lock:
            gen = self._records.get(generation_id)
            return gen.model_copy() if gen else None

    async def find_by_user_id(self, user_id: str, page: int = 1, page_size: int = 12) -> Page:
        page, page_size = clamp_page(page, page_size, self.max_page_size)
        with self._lock:
            rows = [(g, self._order[g.id]) for g in self._records.values() if g.user_id == user_id]
        # Newest first; insertion order breaks timestamp ties so pages stay stable
        rows.sort(key=lambda row: (row[0].created_at, row[1]), reverse=True)
        rows = [g for g, _ in rows]
        start = (page - 1) * page_size
        return Page(
            items=[g.model_copy() for g in rows[start:start + page_size]],
            total=len(rows),
        )

    async def update_status(self, generation_id: str, **update) -> Optional[Generation]:
        with self._lock:
            current = self._records.get(generation_id)
            if current is None:
                logger.warning(f"update_status on unknown generation {generation_id}")
                return None
            updated = merge_update(current, update)
            self._records[generation_id] = updated
            return updated.model_copy()

    async def delete(self, generation_id: str) -> bool:
        with self._lock:
            self._order.pop(generation_id, None)
            return self._records.pop(generation_id, None) is not None


class SupabaseGenerationStore:
    """
    Persistent store on the `generations` table.

    supabase-py is synchronous, so every call runs in a worker thread.
    """

    TABLE = "generations"

    def __init__(self, client=None, max_page_size: Optional[int] = None):
        self._client = client
        self.max_page_size = max_page_size

    def _sb(self):
        if self._client is None:
            from supabase import create_client

            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
                raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
            self._client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
        return self._client

    def _table(self):
        return self._sb().table(self.TABLE)

    async def create(self, generation: Generation) -> Generation:
        row = generation.model_dump(mode="json")
        await asyncio.to_thread(lambda: self._table().insert(row).execute())
        return generation.model_copy()

    def _fetch(self, generation_id: str) -> Optional[Generation]:
        result = self._table().select("*").eq("id", generation_id).limit(1).execute()
        rows = result.data or []
        return Generation.model_validate(rows[0]) if rows else None

    async def find_by_id(self, generation_id: str) -> Optional[Generation]:
        return await asyncio.to_thread(self._fetch, generation_id)

    async def find_by_user_id(self, user_id: str, page: int = 1, page_size: int = 12) -> Page:
        page, page_size = clamp_page(page, page_size, self.max_page_size)
        start = (page - 1) * page_size

        def _query():
            return (
                self._table()
                .select("*", count="exact")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .order("id", desc=True)
                .range(start, start + page_size - 1)
                .execute()
            )

        result = await asyncio.to_thread(_query)
        items = [Generation.model_validate(row) for row in result.data or []]
        return Page(items=items, total=result.count or 0)

    async def update_status(self, generation_id: str, **update) -> Optional[Generation]:
        changes = normalize_update(update)
        if "status" in changes:
            changes["status"] = changes["status"].value
        progress = changes.pop("progress", None)
        changes["updated_at"] = utcnow().isoformat()

        def _update():
            if progress is not None:
                # Conditional write: progress only moves forward, even across writers
                (
                    self._table()
                    .update({"progress": progress, "updated_at": changes["updated_at"]})
                    .eq("id", generation_id)
                    .lte("progress", progress)
                    .execute()
                )
            result = self._table().update(changes).eq("id", generation_id).execute()
            if not result.data:
                return None
            return self._fetch(generation_id)

        updated = await asyncio.to_thread(_update)
        if updated is None:
            logger.warning(f"update_status on unknown generation {generation_id}")
        return updated

    async def delete(self, generation_id: str) -> bool:
        result = await asyncio.to_thread(
            lambda: self._table().delete().eq("id", generation_id).execute()
        )
        return bool(result.data)
