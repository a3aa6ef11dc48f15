"""Per-stop departure selection: allow-list, staleness, time order, cap."""
from collections.abc import Iterable

from src.departures.models import DepartureEvent, PipelineConfig

# 9999-12-31T23:59:59Z, the last instant format_utc_iso can render
MAX_DEPARTURE_EPOCH = 253_402_300_799


def select_departures(
    events: Iterable[DepartureEvent],
    config: PipelineConfig,
    now_epoch: int,
) -> list[DepartureEvent]:
    """
    Keep allow-listed lines (exact match) departing after now - grace,
    soonest first, capped at config.max_departures_per_stop.
    Times past MAX_DEPARTURE_EPOCH are corrupt upstream data and are dropped.
    """
    cutoff = now_epoch - config.stale_grace_seconds
    kept = [
        e for e in events
        if e.line in config.wanted_lines and cutoff < e.epoch <= MAX_DEPARTURE_EPOCH
    ]
    kept.sort(key=lambda e: e.epoch)
    return kept[: config.max_departures_per_stop]
