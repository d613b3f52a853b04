from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field

from .bounded_cache import LruCacheStore
from .candidate_finder import CandidateFinder
from .geocoding import GeocodeProvider
from .logging_utils import log_event
from .models import PlaceLocation, PlaceSuggestion, RouteCandidate
from .orchestrator import RouteOrchestrator
from .route_evaluator import RouteEvaluator
from .routing_osrm import DirectionsProvider
from .settings import Settings


@dataclass
class RouterServices:
    """Process-scoped caches and components shared by every session."""

    finder: CandidateFinder
    evaluator: RouteEvaluator
    suggestion_cache: LruCacheStore[str, list[PlaceSuggestion]]
    place_cache: LruCacheStore[str, list[PlaceLocation]]
    route_cache: LruCacheStore[str, RouteCandidate]
    debounce_s: float
    settle_s: float
    suggestion_limit: int
    caches: dict[str, LruCacheStore] = field(init=False)

    def __post_init__(self) -> None:
        self.caches = {
            "suggestions": self.suggestion_cache,
            "places": self.place_cache,
            "routes": self.route_cache,
        }

    def new_orchestrator(self) -> RouteOrchestrator:
        return RouteOrchestrator(
            finder=self.finder,
            evaluator=self.evaluator,
            debounce_s=self.debounce_s,
            settle_s=self.settle_s,
            suggestion_limit=self.suggestion_limit,
        )

    def clear_caches(self) -> dict[str, int]:
        return {name: cache.clear() for name, cache in self.caches.items()}

    def cache_stats(self) -> dict[str, dict[str, int]]:
        return {name: cache.snapshot() for name, cache in self.caches.items()}


def build_services(
    *,
    geocoder: GeocodeProvider,
    directions: DirectionsProvider,
    config: Settings,
) -> RouterServices:
    suggestion_cache: LruCacheStore[str, list[PlaceSuggestion]] = LruCacheStore(
        max_entries=config.suggestion_cache_max_entries
    )
    place_cache: LruCacheStore[str, list[PlaceLocation]] = LruCacheStore(max_entries=config.place_cache_max_entries)
    route_cache: LruCacheStore[str, RouteCandidate] = LruCacheStore(max_entries=config.route_cache_max_entries)

    finder = CandidateFinder(
        geocoder,
        place_cache=place_cache,
        suggestion_cache=suggestion_cache,
        timeout_s=config.provider_timeout_s,
    )
    evaluator = RouteEvaluator(
        directions,
        finder,
        route_cache=route_cache,
        timeout_s=config.provider_timeout_s,
        candidate_limit=config.candidate_limit,
    )
    return RouterServices(
        finder=finder,
        evaluator=evaluator,
        suggestion_cache=suggestion_cache,
        place_cache=place_cache,
        route_cache=route_cache,
        debounce_s=config.query_debounce_s,
        settle_s=config.route_settle_s,
        suggestion_limit=config.suggestion_limit,
    )


class SessionRegistry:
    """In-memory sessions, each owning one RouteOrchestrator.

    The least recently used session is closed once `max_sessions` is exceeded.
    """

    def __init__(self, services: RouterServices, *, max_sessions: int) -> None:
        self._services = services
        self._closing: set[asyncio.Task] = set()
        self._sessions: LruCacheStore[str, RouteOrchestrator] = LruCacheStore(
            max_entries=max_sessions,
            copy_values=False,
            on_evict=self._on_evict,
        )

    def _on_evict(self, session_id: str, orchestrator: RouteOrchestrator) -> None:
        log_event("session_evicted", session_id=session_id)
        task = asyncio.get_running_loop().create_task(orchestrator.aclose())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def create(self) -> tuple[str, RouteOrchestrator]:
        session_id = uuid.uuid4().hex
        orchestrator = self._services.new_orchestrator()
        self._sessions.put(session_id, orchestrator)
        log_event("session_created", session_id=session_id)
        return session_id, orchestrator

    def get(self, session_id: str) -> RouteOrchestrator | None:
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        orchestrator = self._sessions.pop(session_id)
        if orchestrator is None:
            return False
        await orchestrator.aclose()
        log_event("session_closed", session_id=session_id)
        return True

    async def close_all(self) -> None:
        for session_id in self._sessions.keys():
            await self.close(session_id)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._sessions)
