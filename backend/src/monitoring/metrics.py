"""In-memory counters for the /metrics endpoint: HTTP status buckets and aggregation outcomes."""
import time
from collections.abc import MutableMapping
from threading import Lock

AGGREGATION_OUTCOMES = ("ok", "not_found", "upstream_error", "config_error", "error")

_start_time = time.monotonic()
_status_counts: MutableMapping[str, int] = {}
_outcome_counts: MutableMapping[str, int] = {}
_lock = Lock()


def _status_bucket(status_code: int) -> str:
    if 200 <= status_code < 300:
        return "2xx"
    if 400 <= status_code < 500:
        return "4xx"
    if status_code >= 500:
        return "5xx"
    return "other"


def record_request(status_code: int) -> None:
    bucket = _status_bucket(status_code)
    with _lock:
        _status_counts[bucket] = _status_counts.get(bucket, 0) + 1


def record_aggregation(outcome: str) -> None:
    if outcome not in AGGREGATION_OUTCOMES:
        raise ValueError(f"unknown aggregation outcome: {outcome}")
    with _lock:
        _outcome_counts[outcome] = _outcome_counts.get(outcome, 0) + 1


def get_metrics() -> dict:
    with _lock:
        statuses = dict(_status_counts)
        outcomes = dict(_outcome_counts)
    return {
        "requests_total": sum(statuses.values()),
        "requests_2xx": statuses.get("2xx", 0),
        "requests_4xx": statuses.get("4xx", 0),
        "requests_5xx": statuses.get("5xx", 0),
        "aggregations": {name: outcomes.get(name, 0) for name in AGGREGATION_OUTCOMES},
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
    }
