"""
Next departures near an address.
Geocode the address, find nearby stops, fetch and filter departures per stop with
bounded concurrency, then merge all stops into one time-ordered, capped list.
Any stage failing fails the whole aggregation; there are no partial results.
"""
import logging
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from src.departures.concurrency import map_bounded
from src.departures.filtering import select_departures
from src.departures.models import (
    AggregatedResult,
    Coordinate,
    DepartureEvent,
    FlattenedDeparture,
    PipelineConfig,
    ResolvedAddress,
    StopCandidate,
    StopWithDepartures,
)
from src.digitransit.errors import NotFoundError

logger = logging.getLogger(__name__)

ResolveAddress = Callable[[str], Awaitable[ResolvedAddress | None]]
FindNearbyStops = Callable[[Coordinate, int, int], Awaitable[list[StopCandidate]]]
FetchDepartures = Callable[[str, int], Awaitable[list[DepartureEvent]]]


def format_utc_iso(epoch: int) -> str:
    """Fixed-width UTC timestamp with milliseconds, e.g. 2023-11-14T22:13:20.000Z."""
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def flatten_departures(stops: list[StopWithDepartures], max_results: int) -> list[FlattenedDeparture]:
    """
    One row per (stop, departure), soonest first, capped at max_results.
    Sorted on the numeric epoch; equal times keep stop order, then per-stop order.
    """
    rows: list[tuple[int, FlattenedDeparture]] = []
    for stop in stops:
        for dep in stop.departures:
            rows.append((
                dep.epoch,
                FlattenedDeparture(
                    stop_name=stop.name,
                    distance_m=_round_half_up(stop.distance),
                    line=dep.line,
                    headsign=dep.headsign,
                    realtime=dep.realtime,
                    time=format_utc_iso(dep.epoch),
                ),
            ))
    rows.sort(key=lambda r: r[0])
    return [row for _, row in rows[:max_results]]


async def aggregate(
    address: str,
    radius_m: int,
    departures_per_stop: int,
    *,
    config: PipelineConfig,
    resolve_address: ResolveAddress,
    find_nearby_stops: FindNearbyStops,
    fetch_departures: FetchDepartures,
    now: datetime | None = None,
) -> AggregatedResult:
    """
    Return upcoming allow-listed departures near `address`.
    Raises NotFoundError when the address does not geocode; upstream errors propagate.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    now_epoch = int(now.timestamp())

    resolved = await resolve_address(address)
    if resolved is None:
        raise NotFoundError("Address not found")

    stops = await find_nearby_stops(resolved.coordinate, radius_m, config.max_stops)

    async def with_departures(stop: StopCandidate) -> StopWithDepartures:
        events = await fetch_departures(stop.stop_id, departures_per_stop)
        return StopWithDepartures(
            **stop.model_dump(),
            departures=select_departures(events, config, now_epoch),
        )

    stop_results = await map_bounded(stops, config.concurrency, with_departures)
    results = flatten_departures(stop_results, config.max_results)
    logger.info(
        "telemetry aggregate_done radius_m=%s stops=%s rows=%s",
        radius_m,
        len(stop_results),
        len(results),
        extra={"stops": len(stop_results), "rows": len(results)},
    )
    return AggregatedResult(address_used=resolved.label, radius=radius_m, results=results)
