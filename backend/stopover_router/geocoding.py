from __future__ import annotations

from typing import Any, Final, Protocol

import httpx

from .errors import ProviderError
from .models import Coordinate, GeocodeHit


class GeocodeProvider(Protocol):
    async def search(self, query: str, anchor: Coordinate | None, limit: int) -> list[GeocodeHit]:
        """Ranked places matching `query`, biased towards `anchor`; raise on any failure."""
        ...


class GeocodeError(ProviderError):
    pass


_ADDRESS_KEYS: Final[tuple[str, ...]] = ("street", "housenumber", "postcode", "city", "country")


def _feature_id(props: dict[str, Any]) -> str:
    osm_type = str(props.get("osm_type") or "").strip()
    osm_id = props.get("osm_id")
    if osm_id is None:
        return ""
    return f"{osm_type}{osm_id}" if osm_type else str(osm_id)


def _feature_address(props: dict[str, Any]) -> str | None:
    street = str(props.get("street") or "").strip()
    number = str(props.get("housenumber") or "").strip()
    line1 = f"{street} {number}".strip() if street else ""
    locality = " ".join(
        part for part in (str(props.get("postcode") or "").strip(), str(props.get("city") or "").strip()) if part
    )
    country = str(props.get("country") or "").strip()
    parts = [p for p in (line1, locality, country) if p]
    return ", ".join(parts) if parts else None


def _feature_coordinate(geometry: Any) -> Coordinate | None:
    if not isinstance(geometry, dict):
        return None
    coords = geometry.get("coordinates")
    # GeoJSON points are [lon, lat].
    if (
        not isinstance(coords, (list, tuple))
        or len(coords) < 2
        or not all(isinstance(c, (int, float)) for c in coords[:2])
    ):
        return None
    try:
        return Coordinate(latitude=float(coords[1]), longitude=float(coords[0]))
    except ValueError:
        return None


def parse_photon_features(data: Any) -> list[GeocodeHit]:
    if not isinstance(data, dict) or not isinstance(data.get("features"), list):
        raise GeocodeError("provider_bad_payload", "Photon payload missing features")

    hits: list[GeocodeHit] = []
    for feature in data["features"]:
        if not isinstance(feature, dict):
            continue
        props = feature.get("properties") or {}
        if not isinstance(props, dict):
            props = {}
        name = str(props.get("name") or props.get("street") or props.get("city") or "").strip()
        address = _feature_address(props)
        if not name:
            name = address or "Unnamed place"
        hits.append(
            GeocodeHit(
                id=_feature_id(props),
                name=name,
                address=address,
                coordinate=_feature_coordinate(feature.get("geometry")),
            )
        )
    return hits


class PhotonClient:
    """Async client for a Photon (komoot) geocoder."""

    def __init__(
        self,
        *,
        base_url: str,
        language: str = "",
        timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.language = language
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=min(timeout_s, 3.0)),
            trust_env=False,
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, query: str, anchor: Coordinate | None, limit: int) -> list[GeocodeHit]:
        params: dict[str, str | int | float] = {"q": query, "limit": max(1, int(limit))}
        if self.language:
            params["lang"] = self.language
        if anchor is not None:
            params["lat"] = anchor.latitude
            params["lon"] = anchor.longitude

        try:
            resp = await self._client.get(f"{self.base_url}/api/", params=params)
        except httpx.TimeoutException as e:
            raise GeocodeError("provider_timeout", f"Photon timeout: {type(e).__name__}") from e
        except httpx.TransportError as e:
            raise GeocodeError("provider_transport_error", f"Photon transport error: {e}") from e

        if resp.status_code != 200:
            raise GeocodeError("provider_http_error", f"Photon HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise GeocodeError("provider_bad_payload", "Photon returned invalid JSON") from e
        return parse_photon_features(data)
