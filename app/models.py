"""Pydantic models describing progress payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ProgressReport(BaseModel):
    """Heartbeat sent by the player while media is playing.

    Numeric fields are left loose on purpose; the reconciler coerces them.
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")
    media_id: str | None = Field(default=None, alias="mediaId")
    title: str | None = None
    poster_image: str | None = Field(default=None, alias="posterImage")
    duration: Any = None
    watched_seconds: Any = Field(
        default=None, validation_alias=AliasChoices("watchedSeconds", "watched_seconds")
    )
    category: str | None = None


class MigrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")


class ProgressRecordView(BaseModel):
    """Read-only snapshot of a stored progress record."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    session_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("owner_session_id", "session_id"),
        serialization_alias="sessionId",
    )
    user_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("owner_user_id", "user_id"),
        serialization_alias="userId",
    )
    media_id: str = Field(serialization_alias="mediaId")
    title: str
    poster_image: str = Field(default="", serialization_alias="posterImage")
    duration_seconds: int = Field(serialization_alias="duration")
    watched_seconds: int = Field(serialization_alias="watchedSeconds")
    progress_ratio: float = Field(serialization_alias="progress")
    category: str | None = None
    last_watched_at: datetime = Field(serialization_alias="lastWatchedAt")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SeriesEpisodeRef(BaseModel):
    """An episode position inside a series, as listed by the catalog."""

    series_id: str = Field(serialization_alias="seriesId")
    media_id: str = Field(serialization_alias="mediaId")
    season_number: int = Field(default=1, serialization_alias="seasonNumber")
    episode_number: int = Field(default=1, serialization_alias="episodeNumber")
    title: str | None = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.season_number, self.episode_number

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NextEpisode(BaseModel):
    """Episode the viewer should play next."""

    season_number: int = Field(serialization_alias="seasonNumber")
    episode_number: int = Field(serialization_alias="episodeNumber")
    media_id: str = Field(serialization_alias="mediaId")

    @classmethod
    def from_episode(cls, episode: SeriesEpisodeRef) -> "NextEpisode":
        return cls(
            season_number=episode.season_number,
            episode_number=episode.episode_number,
            media_id=episode.media_id,
        )

    def label(self) -> str:
        return f"S{self.season_number} E{self.episode_number}"

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CategoryScore(BaseModel):
    category: str
    count: int
    last_watched_at: datetime = Field(serialization_alias="lastWatchedAt")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class MigrationReport(BaseModel):
    """Outcome counters of a session-to-user migration."""

    session_id: str = Field(serialization_alias="sessionId")
    user_id: str = Field(serialization_alias="userId")
    moved: int = 0
    merged_kept_session: int = Field(default=0, serialization_alias="mergedKeptSession")
    merged_kept_user: int = Field(default=0, serialization_alias="mergedKeptUser")
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.moved + self.merged_kept_session + self.merged_kept_user

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True)
        payload["success"] = True
        return payload
