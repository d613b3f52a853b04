from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

from .candidate_finder import CandidateFinder
from .debounce import QueryDebouncer, wait_task
from .errors import MODE_NOT_SUPPORTED_MESSAGE, NO_ROUTE_FOUND_MESSAGE
from .location import LocationSource
from .logging_utils import log_event
from .models import (
    IDLE,
    LOADING,
    Coordinate,
    ErrorStatus,
    LoadingStatus,
    PlaceLocation,
    PlaceSuggestion,
    RouteSummary,
    RouteUiState,
    TravelMode,
)
from .route_evaluator import RouteEvaluator

CURRENT_LOCATION_LABEL = "Current location"

StateListener = Callable[[RouteUiState], None]

# Everything derived from the last computed route; stale once the inputs change.
_CLEARED_ROUTE: dict[str, Any] = {
    "stopover_selection": None,
    "route_polyline": None,
    "route_summary": None,
    "map_center": None,
}


class RouteOrchestrator:
    """Owns the UI-facing RouteUiState and sequences search, routing and selection.

    All mutators must be called from the event loop that runs the background
    work. The state is never mutated in place: each transition replaces the
    snapshot, so readers always see a complete record.

    Single-flight rules:
      - one pending/in-flight suggestion search per field (see QueryDebouncer)
      - one pending/in-flight route refresh; a newer one supersedes it and a
        superseded result is never applied
    """

    def __init__(
        self,
        *,
        finder: CandidateFinder,
        evaluator: RouteEvaluator,
        debounce_s: float,
        settle_s: float,
        suggestion_limit: int,
    ) -> None:
        self._finder = finder
        self._evaluator = evaluator
        self._settle_s = max(0.0, float(settle_s))
        self._suggestion_limit = suggestion_limit
        self._state = RouteUiState()
        self._listeners: list[StateListener] = []
        self._known_location: Coordinate | None = None
        self._location_seeded = False

        self._refresh_task: asyncio.Task | None = None
        self._refresh_generation = 0

        self._start_search: QueryDebouncer[list[PlaceSuggestion]] = QueryDebouncer(
            "start",
            delay_s=debounce_s,
            search=self._search_start,
            commit=lambda _text, found: self._update(start_suggestions=tuple(found)),
        )
        self._stopover_search: QueryDebouncer[list[PlaceSuggestion]] = QueryDebouncer(
            "stopover",
            delay_s=debounce_s,
            search=self._search_stopover,
            commit=lambda _text, found: self._update(stopover_suggestions=tuple(found)),
        )
        self._destination_search: QueryDebouncer[list[PlaceSuggestion]] = QueryDebouncer(
            "destination",
            delay_s=debounce_s,
            search=self._search_destination,
            commit=lambda _text, found: self._update(destination_suggestions=tuple(found)),
        )

    # State ---------------------------------------------------------------

    @property
    def state(self) -> RouteUiState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _update(self, **fields: Any) -> None:
        self._state = self._state.model_copy(update=fields)
        snapshot = self._state
        for listener in list(self._listeners):
            listener(snapshot)

    # Suggestion searches -------------------------------------------------

    async def _search_start(self, text: str) -> list[PlaceSuggestion]:
        return await self._finder.suggest(text, self._known_location, self._suggestion_limit)

    async def _search_destination(self, text: str) -> list[PlaceSuggestion]:
        start = self._state.start_selection
        anchor = start.coordinate if start is not None else self._known_location
        return await self._finder.suggest(text, anchor, self._suggestion_limit)

    async def _search_stopover(self, text: str) -> list[PlaceSuggestion]:
        return await self._finder.suggest(text, self._corridor_anchor(), self._suggestion_limit)

    def _corridor_anchor(self) -> Coordinate | None:
        start = self._state.start_selection
        destination = self._state.destination_selection
        if start is not None and destination is not None:
            return start.coordinate.midpoint(destination.coordinate)
        if start is not None:
            return start.coordinate
        return self._known_location

    # Mutators ------------------------------------------------------------

    def set_start_query(self, text: str) -> None:
        self._update(start_query=text, start_selection=None, use_current_location=False, **_CLEARED_ROUTE)
        self._start_search.update(text)
        self._on_inputs_changed()

    def select_start_suggestion(self, suggestion: PlaceSuggestion) -> None:
        self._start_search.reset()
        self._update(
            start_selection=PlaceLocation.from_suggestion(suggestion),
            start_query=suggestion.description,
            start_suggestions=(),
            use_current_location=False,
        )
        self._on_inputs_changed()

    def set_stopover_query(self, text: str) -> None:
        self._update(stopover_query=text)
        self._stopover_search.update(text)
        self._on_inputs_changed()

    def set_destination_query(self, text: str) -> None:
        self._update(destination_query=text, destination_selection=None, **_CLEARED_ROUTE)
        self._destination_search.update(text)
        self._on_inputs_changed()

    def select_destination_suggestion(self, suggestion: PlaceSuggestion) -> None:
        self._destination_search.reset()
        self._update(
            destination_selection=PlaceLocation.from_suggestion(suggestion),
            destination_query=suggestion.description,
            destination_suggestions=(),
        )
        self._on_inputs_changed()

    def set_travel_mode(self, mode: TravelMode) -> None:
        if self._state.travel_mode == mode:
            return
        self._update(travel_mode=mode)
        self._on_inputs_changed()

    def set_current_location(self, coordinate: Coordinate) -> None:
        self._known_location = coordinate
        self._start_search.reset()
        self._update(
            start_selection=PlaceLocation(id="", name=CURRENT_LOCATION_LABEL, coordinate=coordinate),
            start_query=CURRENT_LOCATION_LABEL,
            start_suggestions=(),
            use_current_location=True,
        )
        self._on_inputs_changed()

    async def seed_from_location(self, source: LocationSource) -> Coordinate | None:
        """Ask `source` once for the device position and use it as the start."""
        if self._location_seeded:
            return None
        self._location_seeded = True
        coordinate = await source.current_coordinate()
        if coordinate is None:
            return None
        if self._state.start_selection is None and not self._state.start_query.strip():
            self.set_current_location(coordinate)
        else:
            self._known_location = coordinate
        return coordinate

    def clear_error(self) -> None:
        if isinstance(self._state.status, ErrorStatus):
            self._update(status=IDLE)

    # Route refresh -------------------------------------------------------

    def _on_inputs_changed(self) -> None:
        if self._state.has_complete_selection():
            self._schedule_refresh()
            return
        self._cancel_refresh()
        if isinstance(self._state.status, LoadingStatus):
            self._update(status=IDLE)

    def _cancel_refresh(self) -> None:
        self._refresh_generation += 1
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

    def _schedule_refresh(self) -> None:
        self._cancel_refresh()
        generation = self._refresh_generation
        self._refresh_task = asyncio.get_running_loop().create_task(
            self._refresh(generation), name=f"route-refresh:{generation}"
        )

    async def _refresh(self, generation: int) -> None:
        await asyncio.sleep(self._settle_s)
        if generation != self._refresh_generation:
            return

        state = self._state
        start = state.start_selection
        destination = state.destination_selection
        if start is None or destination is None or not state.stopover_query.strip():
            return

        t0 = time.perf_counter()
        self._update(status=LOADING)

        mode = state.travel_mode
        if not mode.is_supported:
            self._update(status=ErrorStatus(message=MODE_NOT_SUPPORTED_MESSAGE), **_CLEARED_ROUTE)
            log_event("route_refresh", generation=generation, travel_mode=mode.value, outcome="mode_not_supported")
            return

        anchor = start.coordinate.midpoint(destination.coordinate)
        result = await self._evaluator.find_best_route(
            start,
            state.stopover_query.strip(),
            destination,
            mode,
            anchor,
        )
        if generation != self._refresh_generation:
            return

        duration_ms = round((time.perf_counter() - t0) * 1000, 2)
        if result is None:
            self._update(status=ErrorStatus(message=NO_ROUTE_FOUND_MESSAGE), **_CLEARED_ROUTE)
            log_event("route_refresh", generation=generation, travel_mode=mode.value, outcome="no_route", duration_ms=duration_ms)
            return

        route = result.route
        self._update(
            stopover_selection=result.candidate,
            route_polyline=route.overview_polyline,
            route_summary=RouteSummary(
                stopover_name=result.candidate.name,
                stopover_address=result.candidate.address,
                distance_text=route.total_distance_text,
                duration_text=route.total_duration_text,
            ),
            map_center=route.legs[0].start.midpoint(route.legs[-1].end),
            status=IDLE,
        )
        log_event(
            "route_refresh",
            generation=generation,
            travel_mode=mode.value,
            outcome="ok",
            stopover_id=result.candidate.id,
            total_duration_s=route.total_duration_seconds,
            total_distance_m=route.total_distance_meters,
            duration_ms=duration_ms,
        )

    # Lifecycle -----------------------------------------------------------

    def _pending_tasks(self) -> list[asyncio.Task]:
        tasks = [
            self._refresh_task,
            self._start_search.task,
            self._stopover_search.task,
            self._destination_search.task,
        ]
        return [t for t in tasks if t is not None and not t.done()]

    async def settle(self) -> RouteUiState:
        """Wait until no search or refresh is pending, then return the snapshot."""
        while True:
            pending = self._pending_tasks()
            if not pending:
                return self._state
            for task in pending:
                await wait_task(task)

    async def aclose(self) -> None:
        refresh_task = self._refresh_task
        self._cancel_refresh()
        await wait_task(refresh_task)
        for debouncer in (self._start_search, self._stopover_search, self._destination_search):
            await debouncer.aclose()
        self._listeners.clear()
