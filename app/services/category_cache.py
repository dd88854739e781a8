"""Media-to-category lookup built from the sport playlists."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from ..errors import CatalogUnavailable
from .catalog import CatalogClient

logger = logging.getLogger(__name__)


class CategoryCache:
    """Explicitly initialised map of media ids to sport category slugs.

    Until :meth:`init` completes, :meth:`get` answers ``None`` for every
    media id and :meth:`is_ready` is ``False``.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        playlists: Sequence[tuple[str, str]],
    ) -> None:
        self._catalog = catalog
        self._playlists = tuple(playlists)
        self._categories: dict[str, str] = {}
        self._ready = False
        self._lock = asyncio.Lock()

    def is_ready(self) -> bool:
        return self._ready

    def get(self, media_id: str) -> str | None:
        return self._categories.get(media_id)

    def __len__(self) -> int:
        return len(self._categories)

    async def init(self) -> None:
        """Build the map once. Later calls are no-ops."""

        if self._ready:
            return
        await self.refresh()

    async def refresh(self) -> None:
        """Rebuild the map from the catalog and swap it in."""

        async with self._lock:
            results = await asyncio.gather(
                *(
                    self._catalog.fetch_playlist(playlist_id)
                    for _, playlist_id in self._playlists
                ),
                return_exceptions=True,
            )
            categories: dict[str, str] = {}
            for (slug, playlist_id), result in zip(self._playlists, results):
                if isinstance(result, CatalogUnavailable):
                    logger.warning(
                        "Skipping category %s, playlist %s unavailable: %s",
                        slug,
                        playlist_id,
                        result,
                    )
                    continue
                if isinstance(result, BaseException):
                    raise result
                for item in result:
                    media_id = str(item.get("mediaid") or "").strip()
                    if media_id:
                        categories.setdefault(media_id, slug)
            self._categories = categories
            self._ready = True
            logger.info(
                "Category cache ready with %s media across %s playlists",
                len(categories),
                len(self._playlists),
            )
