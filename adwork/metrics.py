"""
Thread-safe in-memory metrics for the ad worker.

Counters (requests, outcomes, fallbacks, errors by type), per-stage latency
samples and the last few pipeline errors. Resets on restart.
"""

import threading
import time
from collections import defaultdict
from typing import Dict, List

_lock = threading.Lock()

_counters: Dict[str, int] = defaultdict(int)

# Last 100 samples per stage
_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

_recent_errors: List[dict] = []
MAX_ERRORS = 50

_started_at = time.time()


def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'generations.succeeded', 'copy.fallback')."""
    with _lock:
        _counters[name] += amount


def record_latency(stage: str, duration_ms: float):
    with _lock:
        samples = _latency_samples[stage]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[stage] = samples[-MAX_SAMPLES:]


def record_error(stage: str, error_type: str, message: str, generation_id: str = ""):
    """Count an error by type and keep it for root-cause analysis."""
    with _lock:
        _counters[f"errors.{error_type}"] += 1
        _recent_errors.append({
            "timestamp": time.time(),
            "stage": stage,
            "error_type": error_type,
            "message": message[:300],
            "generation_id": generation_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


class timed:
    """Context manager recording the wall time of a pipeline stage."""

    def __init__(self, stage: str):
        self.stage = stage

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, *exc):
        record_latency(self.stage, (time.perf_counter() - self._start) * 1000)
        return False


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        latency = {}
        for stage, samples in _latency_samples.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            latency[stage] = {
                "p50": ordered[n // 2],
                "p95": ordered[int(n * 0.95)] if n >= 20 else ordered[-1],
                "avg": sum(ordered) / n,
                "count": n,
            }
        return {
            "timestamp": now,
            "counters": dict(_counters),
            "latency_ms": latency,
            "recent_errors": list(_recent_errors[-10:]),
            "uptime_seconds": now - _started_at,
        }


def reset():
    """Clear everything. Used by tests."""
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _recent_errors.clear()
