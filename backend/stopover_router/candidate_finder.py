from __future__ import annotations

import asyncio
import time

import httpx

from .bounded_cache import LruCacheStore
from .errors import ProviderError
from .geocoding import GeocodeProvider
from .logging_utils import log_warning
from .metrics_store import record_provider_call
from .models import Coordinate, GeocodeHit, PlaceLocation, PlaceSuggestion


def normalize_query(query: str) -> str:
    return " ".join(query.split()).lower()


def _cache_key(kind: str, query: str, anchor: Coordinate | None, limit: int) -> str:
    return "|".join((kind, normalize_query(query), anchor.key() if anchor else "-", str(limit)))


class CandidateFinder:
    """Cached wrapper around a GeocodeProvider.

    Provider failures never escape: they are logged and turn into an empty list,
    and nothing is cached for that query.
    """

    def __init__(
        self,
        provider: GeocodeProvider,
        *,
        place_cache: LruCacheStore[str, list[PlaceLocation]],
        suggestion_cache: LruCacheStore[str, list[PlaceSuggestion]],
        timeout_s: float,
    ) -> None:
        self._provider = provider
        self._place_cache = place_cache
        self._suggestion_cache = suggestion_cache
        self._timeout_s = timeout_s

    async def _search(self, query: str, anchor: Coordinate | None, limit: int) -> list[GeocodeHit] | None:
        t0 = time.perf_counter()
        reason_code: str | None = None
        try:
            return await asyncio.wait_for(self._provider.search(query, anchor, limit), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            reason_code = "provider_timeout"
            log_warning("geocode_failed", query=query, reason_code=reason_code)
        except ProviderError as e:
            reason_code = e.reason_code
            log_warning("geocode_failed", query=query, reason_code=reason_code, detail=str(e))
        except httpx.HTTPError as e:
            reason_code = "provider_transport_error"
            log_warning("geocode_failed", query=query, reason_code=reason_code, detail=str(e))
        except ValueError as e:
            reason_code = "provider_bad_payload"
            log_warning("geocode_failed", query=query, reason_code=reason_code, detail=str(e))
        except Exception as e:
            reason_code = "provider_unavailable"
            log_warning("geocode_failed", query=query, reason_code=reason_code, detail=repr(e))
        finally:
            record_provider_call("geocode.search", duration_ms=(time.perf_counter() - t0) * 1000, reason_code=reason_code)
        return None

    async def find(self, query: str, anchor: Coordinate | None, limit: int) -> list[PlaceLocation]:
        """Ranked, routable stopover candidates for `query` near `anchor`."""
        if not query.strip() or limit <= 0:
            return []
        key = _cache_key("place", query, anchor, limit)
        cached = self._place_cache.get(key)
        if cached is not None:
            return cached

        hits = await self._search(query.strip(), anchor, limit)
        if hits is None:
            return []
        places = [
            PlaceLocation(id=h.id, name=h.name, address=h.address, coordinate=h.coordinate)
            for h in hits
            if h.coordinate is not None
        ][:limit]
        self._place_cache.put(key, places)
        return places

    async def suggest(self, query: str, anchor: Coordinate | None, limit: int) -> list[PlaceSuggestion]:
        if not query.strip() or limit <= 0:
            return []
        key = _cache_key("suggest", query, anchor, limit)
        cached = self._suggestion_cache.get(key)
        if cached is not None:
            return cached

        hits = await self._search(query.strip(), anchor, limit)
        if hits is None:
            return []
        suggestions = [
            PlaceSuggestion(id=h.id, description=h.name, address=h.address, coordinate=h.coordinate)
            for h in hits
            if h.coordinate is not None
        ][:limit]
        self._suggestion_cache.put(key, suggestions)
        return suggestions
