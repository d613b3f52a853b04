# backend/stopover_router/routing_osrm.py
from __future__ import annotations

import asyncio
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Final, Protocol
from urllib.parse import urlparse

import httpx

from .errors import ProviderError
from .models import Coordinate, DirectionsLeg, DirectionsResult


class DirectionsProvider(Protocol):
    async def route(self, waypoints: Sequence[Coordinate], profile: str) -> DirectionsResult:
        """Route through `waypoints` in order; raise on any failure."""
        ...


class OSRMError(ProviderError):
    pass


class OSRMRetryableError(OSRMError):
    """An OSRM error that is likely transient and safe to retry."""

    pass


_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}
_LOCALHOST_HOSTS: Final[set[str]] = {"localhost", "127.0.0.1"}


def _running_in_docker() -> bool:
    # Best-effort detection; used only for better defaults / hints.
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _format_osrm_error(resp: httpx.Response) -> str:
    """Best-effort decode of OSRM JSON error payloads."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            code = data.get("code")
            message = data.get("message")
            if code and message:
                return f"OSRM {resp.status_code} {code}: {message}"
            if code:
                return f"OSRM {resp.status_code} {code}"
            if message:
                return f"OSRM {resp.status_code}: {message}"
    except ValueError:
        # fall through to text
        pass

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"OSRM {resp.status_code}: {body}"
    return f"OSRM HTTP {resp.status_code}"


def _as_meters(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value < 0:
        return None
    return int(round(float(value)))


def parse_osrm_route(data: dict[str, Any]) -> DirectionsResult:
    """Map the first OSRM route of a `/route/v1` payload onto a DirectionsResult."""
    if data.get("code") != "Ok":
        raise OSRMError(
            "provider_no_route",
            f"OSRM error code={data.get('code')} message={data.get('message')}",
        )

    routes = data.get("routes", [])
    if not isinstance(routes, list) or not routes or not isinstance(routes[0], dict):
        raise OSRMError("provider_no_route", "OSRM returned no routes")
    route = routes[0]

    raw_legs = route.get("legs", [])
    if not isinstance(raw_legs, list):
        raise OSRMError("provider_bad_payload", "OSRM route legs malformed")

    legs: list[DirectionsLeg] = []
    for leg in raw_legs:
        leg = leg or {}
        distance = _as_meters(leg.get("distance"))
        duration = _as_meters(leg.get("duration"))
        if distance is None or duration is None:
            raise OSRMError("provider_bad_payload", "OSRM leg missing distance/duration")
        legs.append(DirectionsLeg(distance_meters=distance, duration_seconds=duration))

    geometry = route.get("geometry")
    return DirectionsResult(
        legs=tuple(legs),
        total_distance_meters=_as_meters(route.get("distance")),
        total_duration_seconds=_as_meters(route.get("duration")),
        encoded_path=geometry if isinstance(geometry, str) and geometry else None,
    )


class OSRMClient:
    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float = 5.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, int(max_retries))

        # IMPORTANT: trust_env=False prevents corporate proxy env vars (HTTP_PROXY/HTTPS_PROXY)
        # from hijacking requests to localhost / docker service names.
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=min(timeout_s, 3.0)),
            trust_env=False,
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def route(self, waypoints: Sequence[Coordinate], profile: str) -> DirectionsResult:
        """Fetch a single route through `waypoints` (in order) from OSRM.

        The geometry is requested as an encoded polyline (precision 5) so it can be
        handed to map renderers untouched. Legs come back one per consecutive
        waypoint pair.
        """
        if len(waypoints) < 2:
            raise ValueError("at least two waypoints are required")

        coords = ";".join(f"{p.longitude},{p.latitude}" for p in waypoints)
        url = f"{self.base_url}/route/v1/{profile}/{coords}"
        params = {
            "overview": "full",
            "geometries": "polyline",
            "steps": "false",
            "alternatives": "false",
        }

        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                resp = await self._client.get(url, params=params)

                # Fast-fail on most 4xx: these are usually request errors
                # (bad param, no segment, etc.)
                if 400 <= resp.status_code < 500 and resp.status_code not in _RETRYABLE_STATUS:
                    raise OSRMError("provider_http_error", _format_osrm_error(resp))

                if resp.status_code in _RETRYABLE_STATUS:
                    raise OSRMRetryableError("provider_http_error", _format_osrm_error(resp))

                resp.raise_for_status()
                try:
                    data = resp.json()
                except ValueError as e:
                    raise OSRMError("provider_bad_payload", "OSRM returned invalid JSON") from e
                if not isinstance(data, dict):
                    raise OSRMError("provider_bad_payload", "OSRM payload is not an object")
                return parse_osrm_route(data)

            except OSRMRetryableError as e:
                last_err = e
            except httpx.TimeoutException as e:
                last_err = e
            except (httpx.NetworkError, httpx.TransportError) as e:
                last_err = e
            except httpx.HTTPStatusError as e:
                raise OSRMError("provider_http_error", str(e)) from e

            if attempt < self.max_retries - 1:
                await asyncio.sleep(min(0.25 * (2**attempt), 2.0))

        # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
        if last_err is None:
            detail = "unknown error"
        else:
            msg = str(last_err).strip()
            detail = f"{type(last_err).__name__}: {msg}" if msg else f"{type(last_err).__name__}: {last_err!r}"

        hint = ""
        host = urlparse(self.base_url).hostname or ""
        if _running_in_docker() and host in _LOCALHOST_HOSTS:
            hint = (
                " Hint: you're running inside a container; `localhost` points to that container. "
                "In docker-compose, set OSRM_BASE_URL=http://osrm:5000."
            )
        elif (not _running_in_docker()) and host == "osrm":
            hint = (
                " Hint: `osrm` is the docker-compose service name. "
                "If you're running directly on your host, set OSRM_BASE_URL=http://localhost:5000."
            )

        reason = "provider_timeout" if isinstance(last_err, httpx.TimeoutException) else "provider_transport_error"
        raise OSRMError(
            reason,
            f"OSRM request failed after {self.max_retries} attempts (base={self.base_url}): {detail}{hint}",
        )
