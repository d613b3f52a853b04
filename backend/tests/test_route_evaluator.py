from __future__ import annotations

from collections.abc import Sequence

import pytest

from stopover_router.bounded_cache import LruCacheStore
from stopover_router.candidate_finder import CandidateFinder
from stopover_router.metrics_store import metrics_snapshot, reset_metrics
from stopover_router.models import (
    Coordinate,
    DirectionsLeg,
    DirectionsResult,
    GeocodeHit,
    PlaceLocation,
    TravelMode,
)
from stopover_router.route_evaluator import (
    RouteEvaluator,
    build_route_candidate,
    format_distance,
    format_duration,
    route_cache_key,
)
from stopover_router.routing_osrm import OSRMError

START = PlaceLocation(id="start", name="Start", coordinate=Coordinate(latitude=52.50, longitude=13.40))
DESTINATION = PlaceLocation(id="dest", name="Destination", coordinate=Coordinate(latitude=52.55, longitude=13.45))


class StaticGeocoder:
    def __init__(self, hits: list[GeocodeHit]) -> None:
        self.hits = hits
        self.queries: list[str] = []

    async def search(self, query: str, anchor: Coordinate | None, limit: int) -> list[GeocodeHit]:
        self.queries.append(query)
        return list(self.hits)


class FakeDirections:
    """Two-leg routes whose totals depend on the stopover latitude."""

    def __init__(self, totals: dict[float, tuple[int, int] | Exception]) -> None:
        self.totals = totals
        self.calls: list[tuple[list[Coordinate], str]] = []
        self.leg_count: int | None = None
        self.report_totals = True

    async def route(self, waypoints: Sequence[Coordinate], profile: str) -> DirectionsResult:
        self.calls.append((list(waypoints), profile))
        outcome = self.totals[waypoints[1].latitude]
        if isinstance(outcome, Exception):
            raise outcome
        duration_s, distance_m = outcome
        count = self.leg_count if self.leg_count is not None else len(waypoints) - 1
        legs = tuple(
            DirectionsLeg(distance_meters=distance_m // count, duration_seconds=duration_s // count)
            for _ in range(count)
        )
        return DirectionsResult(
            legs=legs,
            total_distance_meters=distance_m if self.report_totals else None,
            total_duration_seconds=duration_s if self.report_totals else None,
            encoded_path="_p~iF~ps|U_ulLnnqC",
        )


def _place(place_id: str, lat: float) -> PlaceLocation:
    return PlaceLocation(id=place_id, name=f"Bakery {place_id}", coordinate=Coordinate(latitude=lat, longitude=13.42))


def _evaluator(
    directions: FakeDirections,
    hits: list[GeocodeHit] | None = None,
    geocoder: StaticGeocoder | None = None,
) -> RouteEvaluator:
    finder = CandidateFinder(
        geocoder or StaticGeocoder(hits or []),
        place_cache=LruCacheStore(max_entries=8),
        suggestion_cache=LruCacheStore(max_entries=8),
        timeout_s=1.0,
    )
    return RouteEvaluator(
        directions,
        finder,
        route_cache=LruCacheStore(max_entries=8),
        timeout_s=1.0,
        candidate_limit=10,
    )


@pytest.mark.parametrize(
    ("meters", "expected"),
    [(0, "0 m"), (999, "999 m"), (1000, "1.0 km"), (1250, "1.2 km"), (12345, "12.3 km")],
)
def test_format_distance(meters: int, expected: str) -> None:
    assert format_distance(meters) == expected


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0 s"), (59, "59 s"), (60, "1 min"), (900, "15 min"), (3600, "1 h 00 min"), (3 * 3600 + 5 * 60 + 9, "3 h 05 min")],
)
def test_format_duration(seconds: int, expected: str) -> None:
    assert format_duration(seconds) == expected


def test_cache_key_falls_back_to_coordinates_for_blank_ids() -> None:
    adhoc = PlaceLocation(id="", name="Current location", coordinate=Coordinate(latitude=1.5, longitude=2.5))
    key = route_cache_key(adhoc, _place("c1", 52.52), DESTINATION, "driving")
    assert key == "1.5,2.5|c1|dest|driving"


def test_build_route_candidate_sums_legs_when_totals_missing() -> None:
    waypoints = [START.coordinate, _place("c", 52.52).coordinate, DESTINATION.coordinate]
    result = DirectionsResult(
        legs=(
            DirectionsLeg(distance_meters=700, duration_seconds=100),
            DirectionsLeg(distance_meters=800, duration_seconds=3550),
        )
    )
    route = build_route_candidate(result, waypoints)

    assert route is not None
    assert route.total_distance_meters == 1500
    assert route.total_distance_text == "1.5 km"
    assert route.total_duration_seconds == 3650
    assert route.total_duration_text == "1 h 00 min"
    assert route.legs[0].start == START.coordinate
    assert route.legs[0].end == waypoints[1]
    assert route.legs[1].end == DESTINATION.coordinate
    assert route.legs[0].distance_text == "700 m"
    assert route.legs[0].duration_text == "1 min"


def test_build_route_candidate_rejects_leg_count_mismatch() -> None:
    waypoints = [START.coordinate, _place("c", 52.52).coordinate, DESTINATION.coordinate]
    result = DirectionsResult(legs=(DirectionsLeg(distance_meters=700, duration_seconds=100),))
    assert build_route_candidate(result, waypoints) is None


@pytest.mark.anyio
async def test_evaluate_prefers_provider_totals_and_caches_success() -> None:
    directions = FakeDirections({52.52: (901, 1201)})
    evaluator = _evaluator(directions)
    candidate = _place("c1", 52.52)

    route = await evaluator.evaluate(START, candidate, DESTINATION, TravelMode.DRIVING)
    again = await evaluator.evaluate(START, candidate, DESTINATION, TravelMode.DRIVING)

    assert route is not None
    assert route.total_duration_seconds == 901
    assert route.total_distance_meters == 1201
    assert route.total_duration_text == "15 min"
    assert route.overview_polyline == "_p~iF~ps|U_ulLnnqC"
    assert len(route.legs) == 2
    assert again == route
    assert len(directions.calls) == 1
    assert directions.calls[0][1] == "driving"


@pytest.mark.anyio
async def test_evaluate_cache_is_keyed_by_travel_mode() -> None:
    directions = FakeDirections({52.52: (900, 1200)})
    evaluator = _evaluator(directions)
    candidate = _place("c1", 52.52)

    await evaluator.evaluate(START, candidate, DESTINATION, TravelMode.DRIVING)
    await evaluator.evaluate(START, candidate, DESTINATION, TravelMode.WALKING)

    assert [profile for _, profile in directions.calls] == ["driving", "walking"]


@pytest.mark.anyio
async def test_unsupported_mode_short_circuits() -> None:
    directions = FakeDirections({52.52: (900, 1200)})
    evaluator = _evaluator(directions)

    assert await evaluator.evaluate(START, _place("c1", 52.52), DESTINATION, TravelMode.TRANSIT) is None
    assert directions.calls == []


@pytest.mark.anyio
async def test_leg_count_mismatch_is_not_cached() -> None:
    directions = FakeDirections({52.52: (900, 1200)})
    directions.leg_count = 1
    evaluator = _evaluator(directions)
    candidate = _place("c1", 52.52)

    assert await evaluator.evaluate(START, candidate, DESTINATION, TravelMode.DRIVING) is None

    directions.leg_count = None
    assert await evaluator.evaluate(START, candidate, DESTINATION, TravelMode.DRIVING) is not None
    assert len(directions.calls) == 2


@pytest.mark.anyio
async def test_provider_failure_returns_none() -> None:
    directions = FakeDirections({52.52: OSRMError("provider_no_route", "OSRM returned no routes")})
    evaluator = _evaluator(directions)

    assert await evaluator.evaluate(START, _place("c1", 52.52), DESTINATION, TravelMode.DRIVING) is None


def _hit(place_id: str, lat: float) -> GeocodeHit:
    return GeocodeHit(id=place_id, name=f"Bakery {place_id}", coordinate=Coordinate(latitude=lat, longitude=13.42))


@pytest.mark.anyio
async def test_find_best_route_picks_lowest_duration() -> None:
    directions = FakeDirections({52.51: (900, 1200), 52.52: (1200, 800)})
    evaluator = _evaluator(directions, [_hit("a", 52.51), _hit("b", 52.52)])

    best = await evaluator.find_best_route(START, "bakery", DESTINATION, TravelMode.DRIVING, None)

    assert best is not None
    assert best.candidate.id == "a"


@pytest.mark.anyio
async def test_find_best_route_drops_failed_candidates() -> None:
    directions = FakeDirections(
        {
            52.51: OSRMError("provider_timeout", "timed out"),
            52.52: (1500, 3000),
            52.53: RuntimeError("unexpected"),
        }
    )
    evaluator = _evaluator(directions, [_hit("a", 52.51), _hit("b", 52.52), _hit("c", 52.53)])

    best = await evaluator.find_best_route(START, "bakery", DESTINATION, TravelMode.DRIVING, None)

    assert best is not None
    assert best.candidate.id == "b"
    assert len(directions.calls) == 3


@pytest.mark.anyio
async def test_find_best_route_without_candidates_is_none() -> None:
    directions = FakeDirections({})
    evaluator = _evaluator(directions, [])

    assert await evaluator.find_best_route(START, "xyz-nonexistent", DESTINATION, TravelMode.DRIVING, None) is None
    assert directions.calls == []


@pytest.mark.anyio
async def test_unexpected_provider_exception_is_contained() -> None:
    reset_metrics()
    directions = FakeDirections({52.52: OSError("connection reset")})
    evaluator = _evaluator(directions)

    assert await evaluator.evaluate(START, _place("c1", 52.52), DESTINATION, TravelMode.DRIVING) is None
    stats = metrics_snapshot()["providers"]["directions.route"]  # type: ignore[index]
    assert stats["reason_codes"] == {"provider_unavailable": 1}


@pytest.mark.anyio
async def test_find_best_route_unsupported_mode_skips_geocoding() -> None:
    geocoder = StaticGeocoder([_hit("a", 52.51)])
    directions = FakeDirections({52.51: (900, 1200)})
    evaluator = _evaluator(directions, geocoder=geocoder)

    assert await evaluator.find_best_route(START, "bakery", DESTINATION, TravelMode.TRANSIT, None) is None
    assert geocoder.queries == []
    assert directions.calls == []
