"""Client for the JW Player delivery API used as the content catalog."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from ..config import Settings
from ..errors import CatalogUnavailable
from ..models import SeriesEpisodeRef

logger = logging.getLogger(__name__)


def _coerce_positive_int(value: Any, *, default: int = 1) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def sort_episodes(episodes: list[SeriesEpisodeRef]) -> list[SeriesEpisodeRef]:
    """Order episodes by season then episode number."""

    return sorted(episodes, key=lambda episode: episode.sort_key)


class CatalogClient:
    """Thin wrapper around the series and playlist delivery endpoints."""

    _SERIES_PATH = "/apps/series/{series_id}"
    _SEASON_EPISODES_PATH = "/apps/series/{series_id}/seasons/{season}/episodes"
    _PLAYLIST_PATH = "/v2/playlists/{playlist_id}"
    _PAGE_LIMIT = 50

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = 2
        self._series_cache: dict[str, tuple[float, list[SeriesEpisodeRef]]] = {}

    async def _get_json(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> Any:
        attempt = 0
        while True:
            try:
                response = await self._client.get(
                    path, params=params, headers={"Accept": "application/json"}
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) * 0.25
                    logger.info(
                        "Transient error talking to the catalog (%s). Retrying %s in %.2fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise CatalogUnavailable(f"Catalog request to {path} failed: {exc}") from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) * 0.25
                    logger.info(
                        "Catalog 5xx for %s. Retrying in %.2fs", path, backoff
                    )
                    await asyncio.sleep(backoff)
                    continue
            if response.status_code >= 400:
                raise CatalogUnavailable(
                    f"Catalog returned {response.status_code} for {path}"
                )
            try:
                return response.json()
            except ValueError as exc:
                raise CatalogUnavailable(f"Catalog returned non-JSON for {path}") from exc

    async def fetch_series_episodes(self, series_id: str) -> list[SeriesEpisodeRef]:
        """Return every episode of the series in viewing order."""

        ttl = self._settings.series_cache_seconds
        cached = self._series_cache.get(series_id)
        if cached is not None and ttl > 0 and time.monotonic() - cached[0] < ttl:
            return list(cached[1])

        info = await self._get_json(self._SERIES_PATH.format(series_id=series_id))
        seasons = self._season_numbers(info)
        batches = await asyncio.gather(
            *(self._fetch_season(series_id, season) for season in seasons)
        )
        episodes = sort_episodes([episode for batch in batches for episode in batch])
        if ttl > 0:
            now = time.monotonic()
            # Drop expired listings so ids requested once do not pile up.
            self._series_cache = {
                key: entry
                for key, entry in self._series_cache.items()
                if now - entry[0] < ttl
            }
            self._series_cache[series_id] = (now, episodes)
        return list(episodes)

    @staticmethod
    def _season_numbers(info: Any) -> list[int]:
        if not isinstance(info, dict):
            raise CatalogUnavailable("Unexpected series payload from the catalog")
        raw_seasons = info.get("seasons")
        if not isinstance(raw_seasons, list) or not raw_seasons:
            return [1]
        numbers: list[int] = []
        for season in raw_seasons:
            if not isinstance(season, dict):
                continue
            number = _coerce_positive_int(season.get("season_number"))
            if number not in numbers:
                numbers.append(number)
        return sorted(numbers) or [1]

    async def _fetch_season(self, series_id: str, season: int) -> list[SeriesEpisodeRef]:
        path = self._SEASON_EPISODES_PATH.format(series_id=series_id, season=season)
        episodes: list[SeriesEpisodeRef] = []
        page = 1
        while True:
            payload = await self._get_json(
                path, params={"page": page, "page_limit": self._PAGE_LIMIT}
            )
            if not isinstance(payload, dict):
                raise CatalogUnavailable(f"Unexpected episodes payload for {series_id}")
            raw_episodes = payload.get("episodes") or []
            if not isinstance(raw_episodes, list):
                raise CatalogUnavailable(f"Unexpected episodes payload for {series_id}")
            for entry in raw_episodes:
                episode = self._parse_episode(series_id, season, entry)
                if episode is not None:
                    episodes.append(episode)

            total = _coerce_positive_int(payload.get("total"), default=0)
            if not raw_episodes or len(raw_episodes) < self._PAGE_LIMIT:
                break
            if total and page * self._PAGE_LIMIT >= total:
                break
            page += 1
        return episodes

    @staticmethod
    def _parse_episode(
        series_id: str, season: int, entry: Any
    ) -> SeriesEpisodeRef | None:
        if not isinstance(entry, dict):
            return None
        media = entry.get("media_item")
        if not isinstance(media, dict):
            media = {}
        media_id = str(media.get("mediaid") or entry.get("mediaid") or "").strip()
        if not media_id:
            return None
        title = media.get("title")
        return SeriesEpisodeRef(
            series_id=series_id,
            media_id=media_id,
            season_number=_coerce_positive_int(entry.get("season_number"), default=season),
            episode_number=_coerce_positive_int(entry.get("episode_number")),
            title=str(title) if title else None,
        )

    async def fetch_playlist(self, playlist_id: str) -> list[dict[str, Any]]:
        """Return the media entries of a playlist."""

        payload = await self._get_json(
            self._PLAYLIST_PATH.format(playlist_id=playlist_id)
        )
        if not isinstance(payload, dict):
            raise CatalogUnavailable(f"Unexpected playlist payload for {playlist_id}")
        playlist = payload.get("playlist") or []
        if not isinstance(playlist, list):
            raise CatalogUnavailable(f"Unexpected playlist payload for {playlist_id}")
        return [item for item in playlist if isinstance(item, dict)]
