"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_SPORT_PLAYLISTS: tuple[tuple[str, str], ...] = (
    ("college", "PFauvVKV"),
    ("soccer", "QzHRrJRZ"),
    ("baseball", "BC45vsNB"),
    ("football", "FZgrLpfJ"),
    ("basketball", "YY5zhjLQ"),
    ("action-sports", "iCwCBaL7"),
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Bolt Progress", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./bolt_progress.db", alias="DATABASE_URL"
    )
    store_timeout_seconds: float = Field(
        default=5.0, alias="STORE_TIMEOUT_SECONDS", gt=0, le=60
    )

    catalog_api_url: HttpUrl = Field(
        default="https://cdn.jwplayer.com", alias="CATALOG_API_URL"
    )
    catalog_timeout_seconds: float = Field(
        default=10.0, alias="CATALOG_TIMEOUT_SECONDS", gt=0, le=120
    )
    series_cache_seconds: int = Field(
        default=600, alias="SERIES_CACHE_SECONDS", ge=0, le=86_400
    )
    sport_playlists: Annotated[tuple[tuple[str, str], ...], NoDecode] = Field(
        default=DEFAULT_SPORT_PLAYLISTS, alias="SPORT_PLAYLISTS"
    )

    auth_api_url: HttpUrl | None = Field(default=None, alias="AUTH_API_URL")
    auth_api_key: str | None = Field(default=None, alias="AUTH_API_KEY")

    continue_watching_limit: int = Field(
        default=20, alias="CONTINUE_WATCHING_LIMIT", ge=1, le=100
    )
    continue_min_ratio: float = Field(
        default=0.02, alias="CONTINUE_MIN_RATIO", ge=0, lt=1
    )
    finished_ratio: float = Field(default=0.95, alias="FINISHED_RATIO", gt=0, le=1)
    rewatch_finished_series: bool = Field(
        default=True, alias="REWATCH_FINISHED_SERIES"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("sport_playlists", mode="before")
    @classmethod
    def _parse_sport_playlists(cls, value: object) -> tuple[tuple[str, str], ...]:
        """Parse ``slug:playlistId`` pairs from environment values."""

        if value is None:
            return DEFAULT_SPORT_PLAYLISTS
        if isinstance(value, str):
            raw_values: list[object] = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = list(value)
        else:
            raise TypeError("SPORT_PLAYLISTS must be a string or iterable of pairs")

        cleaned: list[tuple[str, str]] = []
        seen: set[str] = set()
        for entry in raw_values:
            if isinstance(entry, str):
                if not entry:
                    continue
                slug, sep, playlist_id = entry.partition(":")
                if not sep:
                    raise ValueError(
                        "SPORT_PLAYLISTS entries must use the slug:playlistId format"
                    )
            elif isinstance(entry, (tuple, list)) and len(entry) == 2:
                slug, playlist_id = (str(part) for part in entry)
            else:
                raise ValueError("SPORT_PLAYLISTS entries must be slug/playlist pairs")
            slug = slug.strip().lower()
            playlist_id = playlist_id.strip()
            if not slug or not playlist_id:
                raise ValueError("SPORT_PLAYLISTS entries may not be blank")
            if slug in seen:
                continue
            seen.add(slug)
            cleaned.append((slug, playlist_id))
        return tuple(cleaned)

    @model_validator(mode="after")
    def _check_ratio_band(self) -> "Settings":
        """The continue-watching band must be a non-empty interval."""

        if self.continue_min_ratio >= self.finished_ratio:
            raise ValueError("CONTINUE_MIN_RATIO must be lower than FINISHED_RATIO")
        return self

    @property
    def auth_enabled(self) -> bool:
        return bool(self.auth_api_url and self.auth_api_key)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
