from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Coordinate(_Frozen):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def midpoint(self, other: Coordinate) -> Coordinate:
        return Coordinate(
            latitude=(self.latitude + other.latitude) / 2.0,
            longitude=(self.longitude + other.longitude) / 2.0,
        )

    def key(self) -> str:
        return f"{self.latitude},{self.longitude}"


class TravelMode(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"
    CYCLING = "cycling"
    TRANSIT = "transit"

    @property
    def profile(self) -> str | None:
        """Routing backend profile, or None when the backend cannot serve the mode."""
        return _TRAVEL_MODE_PROFILES.get(self)

    @property
    def is_supported(self) -> bool:
        return self.profile is not None


# OSRM has no public-transport profile.
_TRAVEL_MODE_PROFILES: dict[TravelMode, str] = {
    TravelMode.DRIVING: "driving",
    TravelMode.WALKING: "walking",
    TravelMode.CYCLING: "cycling",
}


class PlaceSuggestion(_Frozen):
    id: str
    description: str
    address: str | None = None
    coordinate: Coordinate


class PlaceLocation(_Frozen):
    id: str = ""
    name: str
    address: str | None = None
    coordinate: Coordinate

    def cache_key(self) -> str:
        return self.id if self.id.strip() else self.coordinate.key()

    @classmethod
    def from_suggestion(cls, suggestion: PlaceSuggestion) -> PlaceLocation:
        return cls(
            id=suggestion.id,
            name=suggestion.description,
            address=suggestion.address,
            coordinate=suggestion.coordinate,
        )


class RouteLeg(_Frozen):
    start: Coordinate
    end: Coordinate
    distance_meters: int = Field(..., ge=0)
    distance_text: str
    duration_seconds: int = Field(..., ge=0)
    duration_text: str


class RouteCandidate(_Frozen):
    overview_polyline: str | None = None
    total_distance_meters: int = Field(..., ge=0)
    total_distance_text: str
    total_duration_seconds: int = Field(..., ge=0)
    total_duration_text: str
    legs: tuple[RouteLeg, ...]


class CandidateResult(_Frozen):
    candidate: PlaceLocation
    route: RouteCandidate


class RouteSummary(_Frozen):
    stopover_name: str
    stopover_address: str | None = None
    distance_text: str
    duration_text: str


class IdleStatus(_Frozen):
    kind: Literal["idle"] = "idle"


class LoadingStatus(_Frozen):
    kind: Literal["loading"] = "loading"


class ErrorStatus(_Frozen):
    kind: Literal["error"] = "error"
    message: str


RouteStatus = Annotated[Union[IdleStatus, LoadingStatus, ErrorStatus], Field(discriminator="kind")]

IDLE = IdleStatus()
LOADING = LoadingStatus()


class RouteUiState(_Frozen):
    start_query: str = ""
    start_selection: PlaceLocation | None = None
    use_current_location: bool = False
    stopover_query: str = ""
    stopover_selection: PlaceLocation | None = None
    destination_query: str = ""
    destination_selection: PlaceLocation | None = None
    travel_mode: TravelMode = TravelMode.DRIVING
    start_suggestions: tuple[PlaceSuggestion, ...] = ()
    stopover_suggestions: tuple[PlaceSuggestion, ...] = ()
    destination_suggestions: tuple[PlaceSuggestion, ...] = ()
    route_polyline: str | None = None
    map_center: Coordinate | None = None
    map_zoom: float = 10.0
    route_summary: RouteSummary | None = None
    status: RouteStatus = IDLE

    def has_complete_selection(self) -> bool:
        return (
            self.start_selection is not None
            and self.destination_selection is not None
            and bool(self.stopover_query.strip())
        )


# Provider payloads ------------------------------------------------------------


class GeocodeHit(_Frozen):
    id: str = ""
    name: str
    address: str | None = None
    coordinate: Coordinate | None = None


class DirectionsLeg(_Frozen):
    distance_meters: int = Field(..., ge=0)
    duration_seconds: int = Field(..., ge=0)


class DirectionsResult(_Frozen):
    legs: tuple[DirectionsLeg, ...]
    total_distance_meters: int | None = Field(default=None, ge=0)
    total_duration_seconds: int | None = Field(default=None, ge=0)
    encoded_path: str | None = None


# HTTP surface -----------------------------------------------------------------


class QueryUpdate(BaseModel):
    text: str = Field(default="", max_length=512)


class TravelModeUpdate(BaseModel):
    mode: TravelMode


class SessionCreated(BaseModel):
    session_id: str
    state: RouteUiState
