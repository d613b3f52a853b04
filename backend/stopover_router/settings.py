from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_osrm_base_url() -> str:
    # In docker-compose, OSRM is reachable by service name "osrm".
    # Outside a container fall back to the public demo server.
    return "http://osrm:5000" if _running_in_docker() else "https://router.project-osrm.org"


def _default_out_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping config out of code for easy extension."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    osrm_base_url: str = Field(default_factory=_default_osrm_base_url, alias="OSRM_BASE_URL")
    photon_base_url: str = Field(default="https://photon.komoot.io", alias="PHOTON_BASE_URL")
    photon_language: str = Field(default="", alias="PHOTON_LANGUAGE")

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Quiet periods for keystroke coalescing and route refresh.
    query_debounce_ms: int = Field(default=250, ge=0, le=10_000, alias="QUERY_DEBOUNCE_MS")
    route_settle_ms: int = Field(default=200, ge=0, le=10_000, alias="ROUTE_SETTLE_MS")

    provider_timeout_s: float = Field(default=5.0, gt=0.0, le=120.0, alias="PROVIDER_TIMEOUT_S")
    provider_max_retries: int = Field(default=2, ge=1, le=10, alias="PROVIDER_MAX_RETRIES")

    suggestion_limit: int = Field(default=5, ge=1, le=50, alias="SUGGESTION_LIMIT")
    candidate_limit: int = Field(default=10, ge=1, le=50, alias="CANDIDATE_LIMIT")

    suggestion_cache_max_entries: int = Field(default=50, ge=1, alias="SUGGESTION_CACHE_MAX_ENTRIES")
    place_cache_max_entries: int = Field(default=50, ge=1, alias="PLACE_CACHE_MAX_ENTRIES")
    route_cache_max_entries: int = Field(default=30, ge=1, alias="ROUTE_CACHE_MAX_ENTRIES")

    max_sessions: int = Field(default=256, ge=1, alias="MAX_SESSIONS")

    @model_validator(mode="after")
    def _normalise(self) -> "Settings":
        self.osrm_base_url = self.osrm_base_url.strip().rstrip("/")
        self.photon_base_url = self.photon_base_url.strip().rstrip("/")
        self.photon_language = self.photon_language.strip().lower()
        self.log_level = (self.log_level or "INFO").strip().upper()
        return self

    @property
    def query_debounce_s(self) -> float:
        return self.query_debounce_ms / 1000.0

    @property
    def route_settle_s(self) -> float:
        return self.route_settle_ms / 1000.0


settings = Settings()
