"""Series continuity: which episode a viewer should play next."""

from __future__ import annotations

import logging

from ..config import Settings
from ..errors import CatalogUnavailable, StoreUnavailable
from ..identity import Identity
from ..models import NextEpisode, ProgressRecordView, SeriesEpisodeRef
from ..store import ProgressStore
from .catalog import CatalogClient, sort_episodes

logger = logging.getLogger(__name__)


class SeriesService:
    """Cross-references catalog episode order with stored progress."""

    def __init__(self, settings: Settings, store: ProgressStore, catalog: CatalogClient):
        self._settings = settings
        self._store = store
        self._catalog = catalog

    async def list_episodes(self, series_id: str) -> list[SeriesEpisodeRef]:
        episodes = await self._catalog.fetch_series_episodes(series_id)
        return sort_episodes(episodes)

    async def _series_records(
        self, identity: Identity, episodes: list[SeriesEpisodeRef]
    ) -> list[ProgressRecordView]:
        owner = identity.owner_key
        if owner is None:
            return []
        try:
            return await self._store.list_owned(
                owner, media_ids=[episode.media_id for episode in episodes]
            )
        except StoreUnavailable as exc:
            logger.warning("Ignoring series progress for %s: %s", owner[0], exc)
            return []

    async def series_progress(
        self, identity: Identity, series_id: str
    ) -> dict[str, float]:
        """Map each watched episode's media id to its completion ratio."""

        try:
            episodes = await self.list_episodes(series_id)
        except CatalogUnavailable as exc:
            logger.warning("Episodes unavailable for series %s: %s", series_id, exc)
            return {}
        records = await self._series_records(identity, episodes)
        return {record.media_id: record.progress_ratio for record in records}

    async def next_episode_to_watch(
        self, identity: Identity, series_id: str
    ) -> NextEpisode | None:
        """Resume the latest unfinished episode or advance past a finished one.

        A fresh or fully anonymous viewer starts at the first episode. Once the
        final episode is finished the viewer is offered it again, unless
        ``REWATCH_FINISHED_SERIES`` is disabled.
        """

        try:
            episodes = await self.list_episodes(series_id)
        except CatalogUnavailable as exc:
            logger.warning("Episodes unavailable for series %s: %s", series_id, exc)
            return None
        if not episodes:
            return None

        records = await self._series_records(identity, episodes)
        if not records:
            return NextEpisode.from_episode(episodes[0])

        latest = records[0]
        position = next(
            index
            for index, episode in enumerate(episodes)
            if episode.media_id == latest.media_id
        )
        if latest.progress_ratio < self._settings.finished_ratio:
            return NextEpisode.from_episode(episodes[position])
        if position + 1 < len(episodes):
            return NextEpisode.from_episode(episodes[position + 1])
        if self._settings.rewatch_finished_series:
            return NextEpisode.from_episode(episodes[position])
        return None
