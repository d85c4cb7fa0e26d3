"""
Thread-safe in-memory metrics collector.

Counter families:
  - ledger.admitted.<kind> / ledger.denied.<kind>
  - stages.succeeded.<stage> / stages.failed.<error kind>
  - jobs.<final status>

Gauges track saturation (active jobs). Stage latencies are kept as the
last 100 samples per stage. All data is ephemeral and resets on restart.
"""

import time
import threading
from typing import Deque, Dict, List, Tuple
from collections import defaultdict, deque

_lock = threading.Lock()

# ── Counters ──────────────────────────────────────────────────────────────────
_counters: Dict[str, int] = defaultdict(int)

# ── Latency samples (last 100 per stage) ─────────────────────────────────────
_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

# ── Stage outcomes (timestamp, ok) for the rolling failure rate ──────────────
_stage_outcomes: Deque[Tuple[float, bool]] = deque(maxlen=1000)
FAILURE_WINDOW_SECONDS = 5 * 60

# ── Gauges ────────────────────────────────────────────────────────────────────
_gauges: Dict[str, float] = defaultdict(float)

# ── Error log (last 50 stage failures) ────────────────────────────────────────
_recent_errors: List[dict] = []
MAX_ERRORS = 50


# ── Public API ────────────────────────────────────────────────────────────────

def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'ledger.denied.video', 'jobs.partial')."""
    with _lock:
        _counters[name] += amount
        if name.startswith("stages."):
            ok = name.startswith("stages.succeeded.")
            _stage_outcomes.extend([(time.time(), ok)] * amount)


def get_counter(name: str) -> int:
    with _lock:
        return _counters.get(name, 0)


def record_latency(stage: str, duration_ms: float):
    with _lock:
        samples = _latency_samples[stage]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[stage] = samples[-MAX_SAMPLES:]


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def add_gauge(name: str, delta: float):
    with _lock:
        _gauges[name] += delta


def record_error(stage: str, error_kind: str, message: str, job_id: str = ""):
    """Keep a stage failure around for the /metrics error panel."""
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "stage": stage,
            "error_kind": error_kind,
            "message": message[:300],
            "job_id": job_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


def reset():
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _stage_outcomes.clear()
        _gauges.clear()
        _recent_errors.clear()


def get_snapshot() -> dict:
    """Return a complete metrics snapshot for the /metrics endpoint."""
    now = time.time()

    with _lock:
        latency_stats = {}
        for stage, samples in _latency_samples.items():
            if not samples:
                continue
            sorted_s = sorted(samples)
            n = len(sorted_s)
            latency_stats[stage] = {
                "p50": sorted_s[n // 2],
                "p95": sorted_s[int(n * 0.95)] if n >= 20 else sorted_s[-1],
                "avg": sum(sorted_s) / n,
                "count": n,
            }

        recent = [ok for ts, ok in _stage_outcomes if ts >= now - FAILURE_WINDOW_SECONDS]
        failed = recent.count(False)
        failure_rate = (failed / len(recent) * 100) if recent else 0

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": latency_stats,
            "stage_failure_rate_5m": round(failure_rate, 2),
            "recent_errors": list(_recent_errors[-10:]),
            "uptime_seconds": now - _gauges.get("start_time", now),
        }
