"""Tests for the HTTP boundary: GET /api/next status codes and JSON envelopes."""
import pytest
from fastapi.testclient import TestClient

import main
from conftest import stop_edge, stoptime
from settings import Settings
from src.digitransit.errors import ConfigError


@pytest.fixture
def api(monkeypatch, fake_upstream):
    """TestClient whose Digitransit client talks to the in-memory fake upstream."""
    monkeypatch.setattr(main, "settings", Settings(digitransit_key="test-key"))
    monkeypatch.setattr(main, "_build_client", lambda cfg: fake_upstream.client())
    with TestClient(main.app) as client:
        yield client


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_next_returns_filtered_sorted_rows(api, fake_upstream, now_epoch):
    fake_upstream.edges = [
        stop_edge("HSL:far", "Matinkylä (M)", 412.6),
        stop_edge("HSL:near", "Matinpuro", 88.0),
    ]
    fake_upstream.stoptimes = {
        "HSL:near": [stoptime("99", now_epoch + 60), stoptime("111", now_epoch + 420, "Matinkylä")],
        "HSL:far": [stoptime("164K", now_epoch + 120, "Kamppi", realtime=False), stoptime("114", now_epoch - 600)],
    }
    r = api.get("/api/next", params={"address": "Matinpuronkuja 1", "radius": 500, "n": 10})
    assert r.status_code == 200
    body = r.json()
    assert body["addressUsed"] == "Matinpuronkuja 1, Espoo"
    assert body["radius"] == 500
    assert [(x["line"], x["stopName"], x["distanceM"]) for x in body["results"]] == [
        ("164K", "Matinkylä (M)", 413),
        ("111", "Matinpuro", 88),
    ]
    first = body["results"][0]
    assert first["realtime"] is False
    assert first["headsign"] == "Kamppi"
    assert first["time"].endswith(".000Z")


def test_next_uses_defaults(api, fake_upstream):
    r = api.get("/api/next")
    assert r.status_code == 200
    assert r.json() == {"addressUsed": "Matinpuronkuja 1, Espoo", "radius": 700, "results": []}
    geocode_req = fake_upstream.requests[0]
    assert geocode_req.url.params["text"] == "Matinpuronkuja 1"


def test_next_address_not_found(api, fake_upstream):
    fake_upstream.features = []
    r = api.get("/api/next", params={"address": "Nowhereistan 9999"})
    assert r.status_code == 404
    assert r.json() == {"error": "Address not found"}


def test_next_upstream_error_is_500_with_message(api, fake_upstream):
    fake_upstream.edges = [stop_edge("HSL:1", "A", 10), stop_edge("HSL:2", "B", 20)]
    fake_upstream.failing_stops = {"HSL:2"}
    r = api.get("/api/next")
    assert r.status_code == 500
    assert r.json() == {"error": "GraphQL 502: stop HSL:2 failed"}


def test_next_geocoder_error_is_500(api, fake_upstream):
    fake_upstream.geocode_status = 401
    r = api.get("/api/next")
    assert r.status_code == 500
    assert r.json()["error"].startswith("Geocode 401")


def test_next_rejects_non_positive_radius(api):
    r = api.get("/api/next", params={"radius": 0})
    assert r.status_code == 422
    assert "radius" in r.json()["error"]


def test_metrics_counts_outcomes(api, fake_upstream):
    before = api.get("/metrics").json()["aggregations"]
    fake_upstream.features = []
    api.get("/api/next")
    after = api.get("/metrics").json()
    assert after["aggregations"]["not_found"] == before["not_found"] + 1
    assert after["requests_total"] >= 2


def test_missing_key_refuses_to_start(monkeypatch):
    monkeypatch.setattr(main, "settings", Settings(digitransit_key="", require_key_at_startup=True))
    with pytest.raises(ConfigError, match="DIGITRANSIT_KEY"):
        with TestClient(main.app):
            pass


def test_missing_key_answers_500_when_startup_is_lenient(monkeypatch):
    monkeypatch.setattr(main, "settings", Settings(digitransit_key="", require_key_at_startup=False))
    with TestClient(main.app) as client:
        r = client.get("/api/next")
    assert r.status_code == 500
    assert "DIGITRANSIT_KEY" in r.json()["error"]


def test_next_non_json_routing_body_is_500(api, fake_upstream):
    fake_upstream.routing_text = "<html>maintenance</html>"
    r = api.get("/api/next")
    assert r.status_code == 500
    assert r.json() == {"error": "GraphQL returned a non-JSON response"}
