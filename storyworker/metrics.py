"""
Thread-safe in-memory counters for the storyboard worker.

  - generations.started / completed / failed / timeout / superseded
  - webhooks.received / unknown / duplicate
  - poll.attempts / poll.unavailable
  - requests.<route>

Everything resets on restart; generation history lives in the
generations table.
"""

import threading
import time
from collections import defaultdict
from typing import Dict, List

_lock = threading.Lock()

_counters: Dict[str, int] = defaultdict(int)

# ── Latency samples (last 100 per operation) ─────────────────────────────────
_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

# ── Recent failures (last 50) ────────────────────────────────────────────────
_recent_errors: List[dict] = []
MAX_ERRORS = 50

_started_at = time.time()


def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'generations.completed', 'webhooks.unknown')."""
    with _lock:
        _counters[name] += amount


def get_counter(name: str) -> int:
    with _lock:
        return _counters.get(name, 0)


def record_latency(operation: str, duration_ms: float):
    with _lock:
        samples = _latency_samples[operation]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[operation] = samples[-MAX_SAMPLES:]


def record_error(operation: str, error_code: str, message: str, generation_id: str = ""):
    """Keep the last few job failures for the /metrics payload."""
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "operation": operation,
            "error_code": error_code,
            "message": message[:300],
            "generation_id": generation_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        latency = {}
        for operation, samples in _latency_samples.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            latency[operation] = {
                "p50": ordered[n // 2],
                "p95": ordered[int(n * 0.95)] if n >= 20 else ordered[-1],
                "avg": sum(ordered) / n,
                "count": n,
            }
        return {
            "timestamp": now,
            "uptime_seconds": now - _started_at,
            "counters": dict(_counters),
            "latency": latency,
            "recent_errors": list(_recent_errors[-10:]),
        }


def reset():
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _recent_errors.clear()
