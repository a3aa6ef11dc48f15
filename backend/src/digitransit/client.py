"""
Digitransit API client: address geocoding plus the HSL routing GraphQL endpoint
(stops by radius, departures per stop).
One shared httpx.AsyncClient with a per-call timeout; no retries. Any non-2xx
response raises UpstreamError carrying the status and body.
"""
import logging
import math
from typing import Any

import httpx

from src.departures.models import Coordinate, DepartureEvent, ResolvedAddress, StopCandidate
from src.digitransit.errors import MalformedResponseError, UpstreamError
from src.digitransit.geo import haversine_distance_m

logger = logging.getLogger(__name__)

ROUTING_URL = "https://api.digitransit.fi/routing/v2/hsl/gtfs/v1"
GEOCODE_URL = "https://api.digitransit.fi/geocoding/v1/search"
SUBSCRIPTION_KEY_HEADER = "digitransit-subscription-key"
REQUEST_TIMEOUT_SECONDS = 10.0

STOPS_BY_RADIUS_QUERY = """
query StopsByRadius($lat: Float!, $lon: Float!, $radius: Int!) {
  stopsByRadius(lat: $lat, lon: $lon, radius: $radius) {
    edges {
      node {
        distance
        stop { gtfsId name lat lon }
      }
    }
  }
}
"""

STOP_DEPARTURES_QUERY = """
query StopDeps($id: String!, $n: Int!) {
  stop(id: $id) {
    gtfsId
    name
    stoptimesWithoutPatterns(numberOfDepartures: $n) {
      serviceDay
      scheduledDeparture
      realtimeDeparture
      realtime
      headsign
      trip { route { shortName } }
    }
  }
}
"""


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def departure_epoch(raw: dict[str, Any]) -> int:
    """
    Absolute departure time in epoch seconds: serviceDay plus the realtime estimate,
    falling back to the scheduled time. Non-numeric values count as missing. With
    neither time, the offset is 0 (midnight of the service day), which the staleness
    filter normally drops.
    """
    seconds = _as_float(raw.get("realtimeDeparture"))
    if seconds is None:
        seconds = _as_float(raw.get("scheduledDeparture"))
    if seconds is None:
        seconds = 0.0
    service_day = _as_float(raw.get("serviceDay"))
    if service_day is None:
        service_day = 0.0
    return int(service_day) + int(seconds)


def _normalize_stoptime(raw: dict[str, Any]) -> DepartureEvent:
    """Map one stoptimesWithoutPatterns record to a DepartureEvent."""
    route = (raw.get("trip") or {}).get("route") or {}
    return DepartureEvent(
        line=str(route.get("shortName") or ""),
        headsign=str(raw.get("headsign") or ""),
        realtime=bool(raw.get("realtime")),
        epoch=departure_epoch(raw),
    )


def _normalize_stoptimes_response(raw: dict[str, Any]) -> list[DepartureEvent]:
    stop = (raw.get("data") or {}).get("stop") or {}
    times = stop.get("stoptimesWithoutPatterns") or []
    if not isinstance(times, list):
        times = []
    return [_normalize_stoptime(st) for st in times if isinstance(st, dict)]


def _normalize_stop_edges(raw: dict[str, Any], origin: Coordinate) -> list[StopCandidate]:
    """
    Extract stop candidates from a stopsByRadius response, in upstream order.
    Candidates without gtfsId or name are dropped. A missing distance is computed
    from the stop's coordinates when present, else 0.
    """
    edges = ((raw.get("data") or {}).get("stopsByRadius") or {}).get("edges") or []
    if not isinstance(edges, list):
        edges = []
    out: list[StopCandidate] = []
    for edge in edges:
        if not isinstance(edge, dict):
            continue
        node = edge.get("node") or {}
        stop = node.get("stop") or {}
        stop_id = stop.get("gtfsId")
        name = stop.get("name")
        if not stop_id or not name:
            continue
        distance = _as_float(node.get("distance"))
        if distance is None:
            lat, lon = _as_float(stop.get("lat")), _as_float(stop.get("lon"))
            distance = haversine_distance_m(origin, lat, lon) if lat is not None and lon is not None else 0.0
        out.append(StopCandidate(stop_id=str(stop_id), name=str(name), distance=max(0.0, distance)))
    return out


def _normalize_geocode_response(text: str, raw: dict[str, Any]) -> ResolvedAddress | None:
    """First feature -> ResolvedAddress; None when there are no features."""
    features = raw.get("features") or []
    if not isinstance(features, list) or not features:
        return None
    feat = features[0] if isinstance(features[0], dict) else {}
    coords = (feat.get("geometry") or {}).get("coordinates")
    if not isinstance(coords, list) or len(coords) < 2:
        raise MalformedResponseError("Geocode response feature has no coordinates")
    # GeoJSON order: [lon, lat]
    lon, lat = _as_float(coords[0]), _as_float(coords[1])
    if lon is None or lat is None:
        raise MalformedResponseError("Geocode response feature has non-numeric coordinates")
    label = (feat.get("properties") or {}).get("label")
    if label is None:
        label = text
    return ResolvedAddress(coordinate=Coordinate(lat=lat, lon=lon), label=str(label))


class DigitransitClient:
    """Async client for the Digitransit geocoding and routing APIs."""

    def __init__(
        self,
        api_key: str,
        routing_url: str = ROUTING_URL,
        geocode_url: str = GEOCODE_URL,
        lang: str = "fi",
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._routing_url = routing_url
        self._geocode_url = geocode_url
        self._lang = lang
        self._http = httpx.AsyncClient(
            timeout=timeout,
            headers={SUBSCRIPTION_KEY_HEADER: api_key},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "DigitransitClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _send(self, service: str, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("telemetry digitransit_timeout service=%s", service)
            raise UpstreamError(service, None, "timed out") from e
        except httpx.HTTPError as e:
            logger.warning("telemetry digitransit_transport_error service=%s error=%s", service, str(e))
            raise UpstreamError(service, None, str(e)) from e

        if not resp.is_success:
            logger.warning(
                "telemetry digitransit_http_error service=%s status=%s",
                service,
                resp.status_code,
                extra={"service": service, "status_code": resp.status_code},
            )
            raise UpstreamError(service, resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"{service} returned a non-JSON response") from e
        return data if isinstance(data, dict) else {}

    async def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """POST a GraphQL query to the routing endpoint and return the decoded JSON."""
        data = await self._send(
            "GraphQL",
            "POST",
            self._routing_url,
            json={"query": query, "variables": variables},
        )
        if data.get("errors"):
            # Partial data may still be present; callers read it defensively
            logger.warning("telemetry graphql_errors count=%s", len(data["errors"]))
        return data

    async def resolve_address(self, text: str) -> ResolvedAddress | None:
        """Best single geocoder match for free text, or None when nothing matches."""
        data = await self._send(
            "Geocode",
            "GET",
            self._geocode_url,
            params={"text": text, "size": "1", "lang": self._lang},
        )
        resolved = _normalize_geocode_response(text, data)
        logger.info("telemetry geocode_resolved found=%s", resolved is not None)
        return resolved

    async def find_nearby_stops(
        self,
        coordinate: Coordinate,
        radius_m: int,
        limit: int = 10,
    ) -> list[StopCandidate]:
        """Stops within radius_m of coordinate, nearest first (ties keep upstream order), up to limit."""
        data = await self.graphql(
            STOPS_BY_RADIUS_QUERY,
            {"lat": coordinate.lat, "lon": coordinate.lon, "radius": int(radius_m)},
        )
        stops = sorted(_normalize_stop_edges(data, coordinate), key=lambda s: s.distance)[:limit]
        logger.info("telemetry stops_found radius_m=%s count=%s", radius_m, len(stops))
        return stops

    async def fetch_departures(self, stop_id: str, count: int = 25) -> list[DepartureEvent]:
        """Up to `count` raw upcoming departures for a stop, unfiltered."""
        data = await self.graphql(STOP_DEPARTURES_QUERY, {"id": stop_id, "n": count})
        events = _normalize_stoptimes_response(data)
        logger.info(
            "telemetry departures_fetched stop_id=%s count=%s",
            stop_id,
            len(events),
            extra={"stop_id": stop_id, "count": len(events)},
        )
        return events
