"""Progress reconciliation: recording positions and building Continue Watching."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..config import Settings
from ..db_models import utcnow
from ..errors import InvalidInput, StoreUnavailable
from ..identity import Identity
from ..models import CategoryScore, ProgressRecordView
from ..store import ProgressStore
from .category_cache import CategoryCache

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


def coerce_seconds(value: Any) -> int:
    """Return ``value`` as whole non-negative seconds, ``0`` when unusable."""

    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number <= 0:
        return 0
    return int(number)


def completion_ratio(watched_seconds: int, duration_seconds: int) -> float:
    if duration_seconds <= 0:
        return 0.0
    return min(max(watched_seconds / duration_seconds, 0.0), 1.0)


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ProgressService:
    """Validates playback reports and answers progress queries."""

    def __init__(
        self,
        settings: Settings,
        store: ProgressStore,
        categories: CategoryCache | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings
        self._store = store
        self._categories = categories
        self._clock = clock

    async def record_progress(
        self,
        identity: Identity,
        media_id: Any,
        title: Any,
        poster_image: Any = "",
        duration_seconds: Any = 0,
        watched_seconds: Any = 0,
        category: Any = None,
    ) -> ProgressRecordView:
        """Upsert the viewer's position on ``media_id``.

        Raises :class:`InvalidInput` for unusable reports and
        :class:`StoreUnavailable` when the write cannot be made.
        """

        if identity.is_empty:
            raise InvalidInput("A session id or user id is required", field="identity")
        clean_media_id = _clean_text(media_id)
        if clean_media_id is None:
            raise InvalidInput("mediaId is required", field="mediaId")
        clean_title = _clean_text(title)
        if clean_title is None:
            raise InvalidInput("title is required", field="title")

        duration = coerce_seconds(duration_seconds)
        if duration == 0:
            raise InvalidInput("Invalid duration", field="duration")
        watched = min(coerce_seconds(watched_seconds), duration)

        clean_category = _clean_text(category)
        if clean_category is None and self._categories is not None:
            if self._categories.is_ready():
                clean_category = self._categories.get(clean_media_id)

        return await self._store.upsert(
            identity,
            clean_media_id,
            title=clean_title,
            poster_image=_clean_text(poster_image) or "",
            duration_seconds=duration,
            watched_seconds=watched,
            progress_ratio=completion_ratio(watched, duration),
            category=clean_category,
            now=self._clock(),
        )

    async def list_continue_watching(
        self, identity: Identity, limit: int | None = None
    ) -> list[ProgressRecordView]:
        """Return started but unfinished items, most recent first.

        Store failures yield an empty list.
        """

        owner = identity.owner_key
        if owner is None:
            return []
        if limit is None:
            limit = self._settings.continue_watching_limit
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        try:
            return await self._store.list_owned(
                owner,
                min_ratio=self._settings.continue_min_ratio,
                max_ratio=self._settings.finished_ratio,
                limit=limit,
            )
        except StoreUnavailable as exc:
            logger.warning("Continue watching unavailable for %s: %s", owner[0], exc)
            return []

    async def remove_progress(self, identity: Identity, media_id: Any) -> bool:
        """Delete the viewer's record for ``media_id``. Missing rows are fine."""

        owner = identity.owner_key
        if owner is None:
            raise InvalidInput("A session id or user id is required", field="identity")
        clean_media_id = _clean_text(media_id)
        if clean_media_id is None:
            raise InvalidInput("mediaId is required", field="mediaId")
        removed = await self._store.delete(owner, clean_media_id)
        if removed:
            logger.info("Removed %s from continue watching for %s", clean_media_id, owner[0])
        return removed

    async def get_progress(
        self, identity: Identity, media_id: Any
    ) -> ProgressRecordView | None:
        owner = identity.owner_key
        clean_media_id = _clean_text(media_id)
        if owner is None or clean_media_id is None:
            return None
        return await self._store.get(owner, clean_media_id)

    async def recommended_categories(
        self, identity: Identity, limit: int = 3
    ) -> list[CategoryScore]:
        """Rank the viewer's categories by how often and how recently they watch."""

        owner = identity.owner_key
        if owner is None:
            return []
        try:
            records = await self._store.list_owned(owner)
        except StoreUnavailable as exc:
            logger.warning("Recommendations unavailable for %s: %s", owner[0], exc)
            return []

        scores: dict[str, CategoryScore] = {}
        for record in records:
            if not record.category:
                continue
            score = scores.get(record.category)
            if score is None:
                scores[record.category] = CategoryScore(
                    category=record.category,
                    count=1,
                    last_watched_at=record.last_watched_at,
                )
                continue
            score.count += 1
            if record.last_watched_at > score.last_watched_at:
                score.last_watched_at = record.last_watched_at

        ranked = sorted(
            scores.values(),
            key=lambda score: (score.count, score.last_watched_at),
            reverse=True,
        )
        return ranked[: max(0, limit)]
