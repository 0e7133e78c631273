"""
In-memory generation quota and concurrency guard.

Two safety mechanisms:
  1. Sliding-window quota per user, sized by the user's plan (thread-safe)
  2. Background job slots so async generations cannot flood the providers

State is per process and lost on restart.
"""

import threading
import time
from typing import Dict, List, Tuple

from . import config

WINDOW_SECONDS = 24 * 3600


class GenerationLimiter:
    def __init__(self, max_concurrent_jobs: int = None, window_seconds: int = WINDOW_SECONDS):
        self._lock = threading.Lock()
        self._request_log: Dict[str, List[float]] = {}  # user_id → [timestamp, ...]
        self._active_jobs = 0
        self.max_concurrent_jobs = max_concurrent_jobs or config.MAX_CONCURRENT_JOBS
        self.window_seconds = window_seconds

    # ── Quota ────────────────────────────────────────────────────────────

    def check_quota(self, user_id: str, max_requests: int) -> Tuple[bool, int, int]:
        """
        Record a generation attempt for user_id if it fits the window.

        Returns:
            (allowed, remaining, retry_after_seconds)

        A negative max_requests means unlimited.
        """
        if max_requests < 0:
            return True, -1, 0

        now = time.time()
        window_start = now - self.window_seconds

        with self._lock:
            timestamps = [ts for ts in self._request_log.get(user_id, []) if ts > window_start]

            if len(timestamps) >= max_requests:
                oldest = timestamps[0] if timestamps else now
                retry_after = int(oldest + self.window_seconds - now) + 1
                self._request_log[user_id] = timestamps
                return False, 0, retry_after

            timestamps.append(now)
            self._request_log[user_id] = timestamps
            return True, max_requests - len(timestamps), 0

    def refund(self, user_id: str):
        """Forget the newest attempt, e.g. when the request was rejected later on."""
        with self._lock:
            timestamps = self._request_log.get(user_id)
            if timestamps:
                timestamps.pop()

    # ── Concurrent job guard ─────────────────────────────────────────────

    def acquire_job_slot(self) -> bool:
        with self._lock:
            if self._active_jobs >= self.max_concurrent_jobs:
                return False
            self._active_jobs += 1
            return True

    def release_job_slot(self):
        with self._lock:
            self._active_jobs = max(0, self._active_jobs - 1)

    @property
    def active_jobs(self) -> int:
        with self._lock:
            return self._active_jobs

    # ── Cleanup ──────────────────────────────────────────────────────────

    def cleanup_expired(self):
        """Drop users whose window is empty. The app lifespan runs this on a timer."""
        cutoff = time.time() - self.window_seconds
        with self._lock:
            for user_id in list(self._request_log):
                kept = [ts for ts in self._request_log[user_id] if ts > cutoff]
                if kept:
                    self._request_log[user_id] = kept
                else:
                    del self._request_log[user_id]
