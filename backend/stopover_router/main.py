from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .geocoding import PhotonClient
from .location import FixedLocationSource
from .logging_utils import log_event
from .metrics_store import metrics_snapshot
from .models import (
    Coordinate,
    PlaceSuggestion,
    QueryUpdate,
    RouteUiState,
    SessionCreated,
    TravelModeUpdate,
)
from .orchestrator import RouteOrchestrator
from .routing_osrm import OSRMClient
from .sessions import RouterServices, SessionRegistry, build_services
from .settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    geocoder = PhotonClient(
        base_url=settings.photon_base_url,
        language=settings.photon_language,
        timeout_s=settings.provider_timeout_s,
    )
    directions = OSRMClient(
        base_url=settings.osrm_base_url,
        timeout_s=settings.provider_timeout_s,
        max_retries=settings.provider_max_retries,
    )
    services = build_services(geocoder=geocoder, directions=directions, config=settings)
    app.state.services = services
    app.state.sessions = SessionRegistry(services, max_sessions=settings.max_sessions)
    yield
    await app.state.sessions.close_all()
    await geocoder.aclose()
    await directions.aclose()


app = FastAPI(title="Stopover Router", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def router_services(request: Request) -> RouterServices:
    services: RouterServices | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Router services not initialised")
    return services


def session_registry(request: Request) -> SessionRegistry:
    sessions: SessionRegistry | None = getattr(request.app.state, "sessions", None)
    if sessions is None:
        raise HTTPException(status_code=503, detail="Session registry not initialised")
    return sessions


ServicesDep = Annotated[RouterServices, Depends(router_services)]
SessionsDep = Annotated[SessionRegistry, Depends(session_registry)]


def _session(sessions: SessionRegistry, session_id: str) -> RouteOrchestrator:
    orchestrator = sessions.get(session_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return orchestrator


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Stopover router is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionCreated, status_code=201)
async def create_session(sessions: SessionsDep, seed: Coordinate | None = None) -> SessionCreated:
    session_id, orchestrator = sessions.create()
    if seed is not None:
        await orchestrator.seed_from_location(FixedLocationSource(seed))
    return SessionCreated(session_id=session_id, state=orchestrator.state)


@app.get("/sessions/{session_id}", response_model=RouteUiState)
async def get_session_state(session_id: str, sessions: SessionsDep, settle: bool = False) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    if settle:
        t0 = time.perf_counter()
        state = await orchestrator.settle()
        log_event(
            "session_settled",
            session_id=session_id,
            status=state.status.kind,
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        )
        return state
    return orchestrator.state


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str, sessions: SessionsDep) -> dict[str, str]:
    if not await sessions.close(session_id):
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return {"status": "closed"}


@app.put("/sessions/{session_id}/start/query", response_model=RouteUiState)
async def put_start_query(session_id: str, body: QueryUpdate, sessions: SessionsDep) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    orchestrator.set_start_query(body.text)
    return orchestrator.state


@app.put("/sessions/{session_id}/start/selection", response_model=RouteUiState)
async def put_start_selection(session_id: str, body: PlaceSuggestion, sessions: SessionsDep) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    orchestrator.select_start_suggestion(body)
    return orchestrator.state


@app.put("/sessions/{session_id}/start/current-location", response_model=RouteUiState)
async def put_current_location(session_id: str, body: Coordinate, sessions: SessionsDep) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    orchestrator.set_current_location(body)
    return orchestrator.state


@app.put("/sessions/{session_id}/stopover/query", response_model=RouteUiState)
async def put_stopover_query(session_id: str, body: QueryUpdate, sessions: SessionsDep) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    orchestrator.set_stopover_query(body.text)
    return orchestrator.state


@app.put("/sessions/{session_id}/destination/query", response_model=RouteUiState)
async def put_destination_query(session_id: str, body: QueryUpdate, sessions: SessionsDep) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    orchestrator.set_destination_query(body.text)
    return orchestrator.state


@app.put("/sessions/{session_id}/destination/selection", response_model=RouteUiState)
async def put_destination_selection(session_id: str, body: PlaceSuggestion, sessions: SessionsDep) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    orchestrator.select_destination_suggestion(body)
    return orchestrator.state


@app.put("/sessions/{session_id}/travel-mode", response_model=RouteUiState)
async def put_travel_mode(session_id: str, body: TravelModeUpdate, sessions: SessionsDep) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    orchestrator.set_travel_mode(body.mode)
    return orchestrator.state


@app.post("/sessions/{session_id}/clear-error", response_model=RouteUiState)
async def clear_session_error(session_id: str, sessions: SessionsDep) -> RouteUiState:
    orchestrator = _session(sessions, session_id)
    orchestrator.clear_error()
    return orchestrator.state


@app.get("/cache/stats")
async def cache_stats(services: ServicesDep) -> dict[str, dict[str, int]]:
    return services.cache_stats()


@app.delete("/cache")
async def clear_cache(services: ServicesDep) -> dict[str, dict[str, int]]:
    cleared = services.clear_caches()
    log_event("cache_cleared", **{f"{name}_cleared": count for name, count in cleared.items()})
    return {"cleared": cleared}


@app.get("/metrics")
async def metrics() -> dict[str, object]:
    return metrics_snapshot()
