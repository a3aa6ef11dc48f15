"""Pydantic models for the next-departures pipeline and GET /api/next."""
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_WANTED_LINES = frozenset(["114", "111", "164", "164K", "164k"])


class PipelineConfig(BaseModel):
    """Allow-list and caps passed explicitly into aggregate()."""

    model_config = ConfigDict(frozen=True)

    wanted_lines: frozenset[str] = DEFAULT_WANTED_LINES
    max_stops: int = Field(default=10, ge=1)
    max_departures_per_stop: int = Field(default=4, ge=1)
    max_results: int = Field(default=12, ge=1)
    concurrency: int = Field(default=4, ge=1)
    # Departures up to this many seconds in the past are still shown (clock / latency skew)
    stale_grace_seconds: int = Field(default=60, ge=0)


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float


class ResolvedAddress(BaseModel):
    coordinate: Coordinate
    label: str


class StopCandidate(BaseModel):
    stop_id: str  # gtfsId, e.g. "HSL:2222234"
    name: str
    distance: float = Field(ge=0)


class DepartureEvent(BaseModel):
    line: str
    headsign: str
    realtime: bool
    epoch: int  # serviceDay + seconds since midnight; 0 means unknown


class StopWithDepartures(StopCandidate):
    departures: list[DepartureEvent]


class FlattenedDeparture(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stop_name: str = Field(alias="stopName")
    distance_m: int = Field(alias="distanceM")
    line: str
    headsign: str
    realtime: bool
    time: str  # UTC, YYYY-MM-DDTHH:MM:SS.000Z


class AggregatedResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address_used: str = Field(alias="addressUsed")
    radius: int
    results: list[FlattenedDeparture]


class ErrorResponse(BaseModel):
    error: str
