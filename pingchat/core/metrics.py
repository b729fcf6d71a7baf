"""
In-memory counters rendered by the /metrics endpoint.
"""
import time
from typing import Dict, List, Optional

_metrics: Dict[str, object] = {
    "http_requests_total": {},  # {(method, path, status): count}
    "http_request_duration_seconds": {},  # {(method, path): [durations]}
    "events_total": {},  # {event_kind: count}
    "startup_time": None,
}

# Keep only the most recent durations per route
MAX_DURATIONS = 1000


def record_request(method: str, path: str, status_code: int, duration: float) -> None:
    """Record an HTTP request metric."""
    totals: Dict = _metrics["http_requests_total"]
    key = (method, path, str(status_code))
    totals[key] = totals.get(key, 0) + 1

    durations_by_route: Dict = _metrics["http_request_duration_seconds"]
    durations: List[float] = durations_by_route.setdefault((method, path), [])
    durations.append(duration)
    if len(durations) > MAX_DURATIONS:
        durations_by_route[(method, path)] = durations[-MAX_DURATIONS:]


def record_event(kind: str) -> None:
    events: Dict = _metrics["events_total"]
    events[kind] = events.get(kind, 0) + 1


def set_startup_time() -> None:
    """Record application startup time."""
    _metrics["startup_time"] = time.time()


def startup_time() -> Optional[float]:
    return _metrics["startup_time"]


def snapshot() -> Dict[str, Dict]:
    return {
        "http_requests_total": dict(_metrics["http_requests_total"]),
        "http_request_duration_seconds": {k: list(v) for k, v in _metrics["http_request_duration_seconds"].items()},
        "events_total": dict(_metrics["events_total"]),
    }
