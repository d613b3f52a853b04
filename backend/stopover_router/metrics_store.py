from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock


@dataclass
class ProviderCallStats:
    call_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    reason_codes: Counter[str] = field(default_factory=Counter)

    def as_dict(self) -> dict[str, object]:
        avg_duration_ms = self.total_duration_ms / self.call_count if self.call_count else 0.0
        return {
            "call_count": self.call_count,
            "error_count": self.error_count,
            "avg_duration_ms": round(avg_duration_ms, 3),
            "max_duration_ms": round(self.max_duration_ms, 3),
            "reason_codes": dict(sorted(self.reason_codes.items())),
        }


class MetricsStore:
    """Per-backend call counters (`geocode.search`, `directions.route`).

    A call counts as an error when it is recorded with a reason code.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._created_at = datetime.now(UTC).isoformat()
        self._providers: dict[str, ProviderCallStats] = {}

    def record(self, provider_call: str, *, duration_ms: float, reason_code: str | None = None) -> None:
        name = provider_call.strip() or "unknown"
        with self._lock:
            stats = self._providers.setdefault(name, ProviderCallStats())
            stats.call_count += 1
            stats.total_duration_ms += max(float(duration_ms), 0.0)
            stats.max_duration_ms = max(stats.max_duration_ms, float(duration_ms))
            if reason_code:
                stats.error_count += 1
                stats.reason_codes[reason_code] += 1

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            providers = {name: self._providers[name].as_dict() for name in sorted(self._providers)}
            return {
                "created_at": self._created_at,
                "total_calls": sum(s.call_count for s in self._providers.values()),
                "total_errors": sum(s.error_count for s in self._providers.values()),
                "provider_count": len(providers),
                "providers": providers,
            }

    def reset(self) -> None:
        with self._lock:
            self._created_at = datetime.now(UTC).isoformat()
            self._providers.clear()


METRICS = MetricsStore()


def record_provider_call(provider_call: str, *, duration_ms: float, reason_code: str | None = None) -> None:
    METRICS.record(provider_call, duration_ms=duration_ms, reason_code=reason_code)


def metrics_snapshot() -> dict[str, object]:
    return METRICS.snapshot()


def reset_metrics() -> None:
    METRICS.reset()
