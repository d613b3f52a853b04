from __future__ import annotations

from typing import Any

import httpx
import pytest

from stopover_router.models import Coordinate
from stopover_router.routing_osrm import OSRMClient, OSRMError, parse_osrm_route

WAYPOINTS = [
    Coordinate(latitude=52.50, longitude=13.40),
    Coordinate(latitude=52.52, longitude=13.42),
    Coordinate(latitude=52.55, longitude=13.45),
]


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "code": "Ok",
        "routes": [
            {
                "distance": 2500.4,
                "duration": 610.6,
                "geometry": "_p~iF~ps|U_ulLnnqC",
                "legs": [
                    {"distance": 1200.2, "duration": 300.1},
                    {"distance": 1300.2, "duration": 310.5},
                ],
            }
        ],
    }
    payload.update(overrides)
    return payload


class _Recorder:
    def __init__(self, responses: list[httpx.Response | Exception]) -> None:
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(recorder: _Recorder, *, max_retries: int = 2) -> OSRMClient:
    return OSRMClient(
        base_url="http://osrm.test/",
        max_retries=max_retries,
        transport=httpx.MockTransport(recorder),
    )


def test_parse_osrm_route_maps_legs_totals_and_geometry() -> None:
    result = parse_osrm_route(_payload())

    assert [(leg.distance_meters, leg.duration_seconds) for leg in result.legs] == [(1200, 300), (1300, 310)]
    assert result.total_distance_meters == 2500
    assert result.total_duration_seconds == 611
    assert result.encoded_path == "_p~iF~ps|U_ulLnnqC"


def test_parse_osrm_route_rejects_error_codes_and_empty_routes() -> None:
    with pytest.raises(OSRMError) as excinfo:
        parse_osrm_route({"code": "NoRoute", "message": "Impossible route"})
    assert excinfo.value.reason_code == "provider_no_route"

    with pytest.raises(OSRMError) as excinfo:
        parse_osrm_route({"code": "Ok", "routes": []})
    assert excinfo.value.reason_code == "provider_no_route"


def test_parse_osrm_route_requires_leg_metrics() -> None:
    payload = _payload()
    payload["routes"][0]["legs"][1] = {"distance": 10}

    with pytest.raises(OSRMError) as excinfo:
        parse_osrm_route(payload)
    assert excinfo.value.reason_code == "provider_bad_payload"


def test_parse_osrm_route_tolerates_missing_totals_and_geometry() -> None:
    payload = _payload()
    route = payload["routes"][0]
    del route["distance"], route["duration"], route["geometry"]

    result = parse_osrm_route(payload)

    assert result.total_distance_meters is None
    assert result.total_duration_seconds is None
    assert result.encoded_path is None
    assert len(result.legs) == 2


@pytest.mark.anyio
async def test_route_builds_osrm_request() -> None:
    recorder = _Recorder([httpx.Response(200, json=_payload())])
    client = _client(recorder)

    result = await client.route(WAYPOINTS, "walking")
    await client.aclose()

    assert len(result.legs) == 2
    request = recorder.requests[0]
    assert request.url.path == "/route/v1/walking/13.4,52.5;13.42,52.52;13.45,52.55"
    assert request.url.params["overview"] == "full"
    assert request.url.params["geometries"] == "polyline"
    assert request.url.params["steps"] == "false"
    assert request.url.params["alternatives"] == "false"


@pytest.mark.anyio
async def test_route_fast_fails_on_client_error() -> None:
    recorder = _Recorder([httpx.Response(400, json={"code": "InvalidQuery", "message": "bad coords"})])
    client = _client(recorder, max_retries=3)

    with pytest.raises(OSRMError) as excinfo:
        await client.route(WAYPOINTS, "driving")
    await client.aclose()

    assert excinfo.value.reason_code == "provider_http_error"
    assert "InvalidQuery" in str(excinfo.value)
    assert len(recorder.requests) == 1


@pytest.mark.anyio
async def test_route_retries_transient_status_then_succeeds() -> None:
    recorder = _Recorder([httpx.Response(503, text="busy"), httpx.Response(200, json=_payload())])
    client = _client(recorder)

    result = await client.route(WAYPOINTS, "driving")
    await client.aclose()

    assert result.total_duration_seconds == 611
    assert len(recorder.requests) == 2


@pytest.mark.anyio
async def test_route_gives_up_after_bounded_attempts() -> None:
    request = httpx.Request("GET", "http://osrm.test/route/v1/driving/x")
    recorder = _Recorder(
        [
            httpx.ConnectError("refused", request=request),
            httpx.ConnectError("refused", request=request),
        ]
    )
    client = _client(recorder)

    with pytest.raises(OSRMError) as excinfo:
        await client.route(WAYPOINTS, "driving")
    await client.aclose()

    assert excinfo.value.reason_code == "provider_transport_error"
    assert "after 2 attempts" in str(excinfo.value)
    assert len(recorder.requests) == 2


@pytest.mark.anyio
async def test_route_timeout_maps_to_timeout_reason() -> None:
    request = httpx.Request("GET", "http://osrm.test/route/v1/driving/x")
    recorder = _Recorder([httpx.ReadTimeout("slow", request=request)])
    client = _client(recorder, max_retries=1)

    with pytest.raises(OSRMError) as excinfo:
        await client.route(WAYPOINTS, "driving")
    await client.aclose()

    assert excinfo.value.reason_code == "provider_timeout"


@pytest.mark.anyio
async def test_route_requires_two_waypoints() -> None:
    client = _client(_Recorder([]))
    with pytest.raises(ValueError):
        await client.route(WAYPOINTS[:1], "driving")
    await client.aclose()


def test_unknown_reason_codes_collapse_to_provider_unavailable() -> None:
    assert OSRMError("provider_timeout", "x").reason_code == "provider_timeout"
    assert OSRMError("something_else", "x").reason_code == "provider_unavailable"
