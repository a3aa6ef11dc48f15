"""Pytest configuration and fixtures."""
import json
import sys
import time
from pathlib import Path

import httpx
import pytest

# Ensure backend root is on path when running pytest from repo root or backend
backend = Path(__file__).resolve().parent.parent
if str(backend) not in sys.path:
    sys.path.insert(0, str(backend))

from src.digitransit.client import DigitransitClient  # noqa: E402

GEOCODE_URL = "https://geocode.test/v1/search"
ROUTING_URL = "https://routing.test/gtfs/v1"


def stoptime(line: str, epoch: int, headsign: str = "Kamppi", realtime: bool = True) -> dict:
    """Raw stoptimesWithoutPatterns record departing at `epoch` (service day at a fixed base)."""
    service_day = 1_700_000_000
    return {
        "serviceDay": service_day,
        "scheduledDeparture": epoch - service_day,
        "realtimeDeparture": epoch - service_day if realtime else None,
        "realtime": realtime,
        "headsign": headsign,
        "trip": {"route": {"shortName": line}},
    }


def stop_edge(gtfs_id: str, name: str, distance: float | None) -> dict:
    return {"node": {"distance": distance, "stop": {"gtfsId": gtfs_id, "name": name}}}


class FakeDigitransit:
    """In-memory stand-in for the geocoding and routing APIs, served through httpx.MockTransport."""

    def __init__(self):
        self.features: list[dict] = [
            {
                "geometry": {"coordinates": [24.7385, 60.1595]},
                "properties": {"label": "Matinpuronkuja 1, Espoo"},
            }
        ]
        self.edges: list[dict] = []
        self.stoptimes: dict[str, list[dict]] = {}
        self.geocode_status = 200
        self.routing_status = 200
        self.failing_stops: set[str] = set()
        self.routing_text: str | None = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "geocode.test":
            if self.geocode_status != 200:
                return httpx.Response(self.geocode_status, text="geocoder unavailable")
            return httpx.Response(200, json={"features": self.features})
        if self.routing_status != 200:
            return httpx.Response(self.routing_status, text="routing unavailable")
        if self.routing_text is not None:
            return httpx.Response(200, text=self.routing_text)
        body = json.loads(request.content)
        if "stopsByRadius" in body["query"]:
            return httpx.Response(200, json={"data": {"stopsByRadius": {"edges": self.edges}}})
        stop_id = body["variables"]["id"]
        if stop_id in self.failing_stops:
            return httpx.Response(502, text=f"stop {stop_id} failed")
        times = self.stoptimes.get(stop_id, [])[: body["variables"]["n"]]
        return httpx.Response(200, json={"data": {"stop": {"stoptimesWithoutPatterns": times}}})

    def client(self) -> DigitransitClient:
        return DigitransitClient(
            api_key="test-key",
            routing_url=ROUTING_URL,
            geocode_url=GEOCODE_URL,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def fake_upstream() -> FakeDigitransit:
    return FakeDigitransit()


@pytest.fixture
def now_epoch() -> int:
    return int(time.time())
