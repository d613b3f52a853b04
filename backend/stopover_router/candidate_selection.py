from __future__ import annotations

from collections.abc import Sequence

from .models import CandidateResult


def selection_key(result: CandidateResult) -> tuple[int, int]:
    return (result.route.total_duration_seconds, result.route.total_distance_meters)


def select_best_candidate(results: Sequence[CandidateResult]) -> CandidateResult | None:
    """Shortest total duration wins; equal durations fall back to shortest distance."""
    if not results:
        return None
    return min(results, key=selection_key)
