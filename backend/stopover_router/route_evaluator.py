from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

import httpx

from .bounded_cache import LruCacheStore
from .candidate_finder import CandidateFinder
from .candidate_selection import select_best_candidate
from .errors import ProviderError
from .logging_utils import log_event, log_warning
from .metrics_store import record_provider_call
from .models import (
    CandidateResult,
    Coordinate,
    DirectionsResult,
    PlaceLocation,
    RouteCandidate,
    RouteLeg,
    TravelMode,
)
from .routing_osrm import DirectionsProvider


def format_distance(meters: int) -> str:
    if meters >= 1000:
        return "%.1f km" % (meters / 1000.0)
    return "%d m" % meters


def format_duration(seconds: int) -> str:
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return "%d h %02d min" % (hours, minutes)
    if minutes > 0:
        return "%d min" % minutes
    return "%d s" % seconds


def route_cache_key(
    start: PlaceLocation,
    candidate: PlaceLocation,
    destination: PlaceLocation,
    profile: str,
) -> str:
    return "|".join((start.cache_key(), candidate.cache_key(), destination.cache_key(), profile))


def build_route_candidate(
    result: DirectionsResult,
    waypoints: Sequence[Coordinate],
) -> RouteCandidate | None:
    """Attach provider legs to consecutive waypoint pairs.

    Returns None when the provider leg count does not match `len(waypoints) - 1`.
    """
    if len(result.legs) != len(waypoints) - 1 or not result.legs:
        return None

    legs = tuple(
        RouteLeg(
            start=waypoints[i],
            end=waypoints[i + 1],
            distance_meters=leg.distance_meters,
            distance_text=format_distance(leg.distance_meters),
            duration_seconds=leg.duration_seconds,
            duration_text=format_duration(leg.duration_seconds),
        )
        for i, leg in enumerate(result.legs)
    )

    total_distance = result.total_distance_meters
    if total_distance is None:
        total_distance = sum(leg.distance_meters for leg in legs)
    total_duration = result.total_duration_seconds
    if total_duration is None:
        total_duration = sum(leg.duration_seconds for leg in legs)

    return RouteCandidate(
        overview_polyline=result.encoded_path,
        total_distance_meters=total_distance,
        total_distance_text=format_distance(total_distance),
        total_duration_seconds=total_duration,
        total_duration_text=format_duration(total_duration),
        legs=legs,
    )


class RouteEvaluator:
    def __init__(
        self,
        provider: DirectionsProvider,
        finder: CandidateFinder,
        *,
        route_cache: LruCacheStore[str, RouteCandidate],
        timeout_s: float,
        candidate_limit: int,
    ) -> None:
        self._provider = provider
        self._finder = finder
        self._route_cache = route_cache
        self._timeout_s = timeout_s
        self._candidate_limit = candidate_limit

    async def _request(self, waypoints: list[Coordinate], profile: str) -> DirectionsResult | None:
        t0 = time.perf_counter()
        reason_code: str | None = None
        try:
            return await asyncio.wait_for(self._provider.route(waypoints, profile), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            reason_code = "provider_timeout"
            log_warning("directions_failed", profile=profile, reason_code=reason_code)
        except ProviderError as e:
            reason_code = e.reason_code
            log_warning("directions_failed", profile=profile, reason_code=reason_code, detail=str(e))
        except httpx.HTTPError as e:
            reason_code = "provider_transport_error"
            log_warning("directions_failed", profile=profile, reason_code=reason_code, detail=str(e))
        except ValueError as e:
            reason_code = "provider_bad_payload"
            log_warning("directions_failed", profile=profile, reason_code=reason_code, detail=str(e))
        except Exception as e:
            reason_code = "provider_unavailable"
            log_warning("directions_failed", profile=profile, reason_code=reason_code, detail=repr(e))
        finally:
            record_provider_call("directions.route", duration_ms=(time.perf_counter() - t0) * 1000, reason_code=reason_code)
        return None

    async def evaluate(
        self,
        start: PlaceLocation,
        candidate: PlaceLocation,
        destination: PlaceLocation,
        mode: TravelMode,
    ) -> RouteCandidate | None:
        profile = mode.profile
        if profile is None:
            return None

        key = route_cache_key(start, candidate, destination, profile)
        cached = self._route_cache.get(key)
        if cached is not None:
            return cached

        waypoints = [start.coordinate, candidate.coordinate, destination.coordinate]
        result = await self._request(waypoints, profile)
        if result is None:
            return None

        route = build_route_candidate(result, waypoints)
        if route is None:
            log_warning(
                "directions_leg_mismatch",
                candidate_id=candidate.id,
                expected_legs=len(waypoints) - 1,
                actual_legs=len(result.legs),
            )
            return None

        self._route_cache.put(key, route)
        return route

    async def _evaluate_one(
        self,
        start: PlaceLocation,
        candidate: PlaceLocation,
        destination: PlaceLocation,
        mode: TravelMode,
    ) -> CandidateResult | None:
        route = await self.evaluate(start, candidate, destination, mode)
        if route is None:
            return None
        return CandidateResult(candidate=candidate, route=route)

    async def find_best_route(
        self,
        start: PlaceLocation,
        stopover_query: str,
        destination: PlaceLocation,
        mode: TravelMode,
        anchor: Coordinate | None,
    ) -> CandidateResult | None:
        if not mode.is_supported:
            return None
        t0 = time.perf_counter()
        candidates = await self._finder.find(stopover_query, anchor, self._candidate_limit)
        if not candidates:
            log_event("best_route", query=stopover_query, candidate_count=0, evaluated_count=0)
            return None

        outcomes = await asyncio.gather(
            *(self._evaluate_one(start, c, destination, mode) for c in candidates),
            return_exceptions=True,
        )
        evaluated: list[CandidateResult] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                log_warning("candidate_evaluation_failed", detail=repr(outcome))
                continue
            if outcome is not None:
                evaluated.append(outcome)

        best = select_best_candidate(evaluated)
        log_event(
            "best_route",
            query=stopover_query,
            travel_mode=mode.value,
            candidate_count=len(candidates),
            evaluated_count=len(evaluated),
            selected_id=best.candidate.id if best else None,
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        )
        return best
