from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "provider_timeout",
        "provider_transport_error",
        "provider_http_error",
        "provider_bad_payload",
        "provider_no_route",
        "provider_unavailable",
    }
)

# User-visible status messages. The orchestrator is the only place they are raised into state.
MODE_NOT_SUPPORTED_MESSAGE = "mode not supported"
NO_ROUTE_FOUND_MESSAGE = "no route found"


@dataclass
class ProviderError(RuntimeError):
    """A geocoding/directions backend failed; recovered locally by callers."""

    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        self.reason_code = normalize_reason_code(self.reason_code)

    def __str__(self) -> str:
        return self.message


def normalize_reason_code(reason_code: str, *, default: str = "provider_unavailable") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
