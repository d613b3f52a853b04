from __future__ import annotations

from typing import Protocol

from .models import Coordinate


class LocationSource(Protocol):
    async def current_coordinate(self) -> Coordinate | None:
        """Single-shot device location; None when unavailable or not permitted."""
        ...


class FixedLocationSource:
    """Location source backed by a coordinate the consumer already knows."""

    def __init__(self, coordinate: Coordinate | None) -> None:
        self._coordinate = coordinate

    async def current_coordinate(self) -> Coordinate | None:
        return self._coordinate
