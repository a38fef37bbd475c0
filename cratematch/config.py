from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class MatchingSettings(BaseModel):
    accept_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    title_weight: float = Field(default=0.6, ge=0.0)
    artist_weight: float = Field(default=0.25, ge=0.0)
    duration_weight: float = Field(default=0.15, ge=0.0)
    duration_tolerance_seconds: float = Field(default=5.0, ge=0.0)
    duration_cutoff_seconds: float = 30.0
    max_near_misses: int = Field(default=3, ge=0, le=3)

    @model_validator(mode="after")
    def _check_weights(self) -> "MatchingSettings":
        total = self.title_weight + self.artist_weight + self.duration_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"score weights must sum to 1.0 (got {total:.3f})")
        if self.duration_cutoff_seconds <= self.duration_tolerance_seconds:
            raise ValueError("duration_cutoff_seconds must be larger than duration_tolerance_seconds")
        return self


class SoundCloudSettings(BaseModel):
    client_id: Optional[str] = None
    access_token: Optional[str] = None
    api_base: str = "https://api.soundcloud.com"
    search_limit: int = Field(default=10, ge=1, le=200)
    useragent: str = "cratematch/0.1 (+https://example.com)"

    @field_validator("api_base")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")


class MusicBrainzSettings(BaseModel):
    useragent: str = "cratematch/0.1 (unknown@example.com)"
    search_limit: int = Field(default=10, ge=1, le=100)
    min_interval_seconds: float = 1.1


class ProviderSettings(BaseModel):
    search_provider: Literal["soundcloud", "musicbrainz"] = "soundcloud"
    network_retries: int = Field(default=1, ge=0)
    network_retry_backoff_seconds: float = Field(default=0.5, ge=0.0)
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    soundcloud: SoundCloudSettings = SoundCloudSettings()
    musicbrainz: MusicBrainzSettings = MusicBrainzSettings()


class ThrottleSettings(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    success_threshold: int = Field(default=2, ge=1)
    reset_timeout_seconds: float = 30.0
    failure_window_seconds: float = 60.0
    default_retry_after_seconds: float = 60.0


class ResolverSettings(BaseModel):
    worker_concurrency: int = Field(default=5, ge=1)
    cache_path: Path = Field(default=Path("./cache/cratematch.sqlite3"), validate_default=True)
    batch_timeout_seconds: Optional[float] = None

    @field_validator("cache_path", mode="before")
    @classmethod
    def _expand_cache(cls, value: str | Path) -> Path:
        return Path(value).expanduser().resolve()


class Settings(BaseModel):
    matching: MatchingSettings = MatchingSettings()
    providers: ProviderSettings = ProviderSettings()
    throttle: ThrottleSettings = ThrottleSettings()
    resolver: ResolverSettings = ResolverSettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})


def find_config(explicit_path: Optional[Path]) -> Path:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml - pass --config explicitly.")
