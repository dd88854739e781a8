"""Progress reconciler behaviour tests."""

from __future__ import annotations

import asyncio
from typing import Any, cast

import pytest

from app.errors import InvalidInput, StoreUnavailable
from app.identity import Identity
from app.services.catalog import CatalogClient
from app.services.category_cache import CategoryCache
from app.services.progress import ProgressService, coerce_seconds
from app.store import ProgressStore
from conftest import FakeClock, build_settings

pytestmark = pytest.mark.anyio

VIEWER = Identity.of(session_id="session-1")


class UnavailableStore:
    """Store stand-in whose every call fails like an unreachable backend."""

    async def upsert(self, *args: Any, **kwargs: Any) -> Any:
        raise StoreUnavailable("store offline")

    async def list_owned(self, *args: Any, **kwargs: Any) -> Any:
        raise StoreUnavailable("store offline")

    async def delete(self, *args: Any, **kwargs: Any) -> Any:
        raise StoreUnavailable("store offline")


class PlaylistCatalog:
    def __init__(self, playlists: dict[str, list[dict[str, Any]]]) -> None:
        self._playlists = playlists

    async def fetch_playlist(self, playlist_id: str) -> list[dict[str, Any]]:
        return self._playlists.get(playlist_id, [])


def make_service(store: ProgressStore, clock: FakeClock, **kwargs: Any) -> ProgressService:
    return ProgressService(build_settings(), store, clock=clock, **kwargs)


async def test_record_progress_twice_keeps_one_row(store, clock) -> None:
    """Repeating a report updates the same row and advances its timestamp."""

    service = make_service(store, clock)
    first = await service.record_progress(VIEWER, "m1", "Title", "", 100, 30)
    second = await service.record_progress(VIEWER, "m1", "Title", "", 100, 30)

    rows = await store.list_owned(("session", "session-1"))
    assert len(rows) == 1
    assert second.id == first.id
    assert second.last_watched_at > first.last_watched_at


async def test_concurrent_reports_keep_one_row(store, clock) -> None:
    service = make_service(store, clock)

    results = await asyncio.gather(
        *(
            service.record_progress(VIEWER, "m1", "Title", "", 100, seconds)
            for seconds in range(10, 90, 10)
        )
    )

    rows = await store.list_owned(("session", "session-1"))
    assert len(results) == 8
    assert len(rows) == 1
    assert {result.id for result in results} == {rows[0].id}


async def test_lost_insert_race_is_retried_as_update(store, clock, monkeypatch) -> None:
    """An insert that collides with a row written meanwhile updates that row."""

    service = make_service(store, clock)
    first = await service.record_progress(VIEWER, "m1", "Title", "", 100, 10)

    original_find = ProgressStore._find
    misses = [True]

    async def racing_find(session, owner, media_id):
        if misses:
            misses.pop()
            return None
        return await original_find(session, owner, media_id)

    monkeypatch.setattr(ProgressStore, "_find", staticmethod(racing_find))

    second = await service.record_progress(VIEWER, "m1", "Title", "", 100, 60)

    rows = await store.list_owned(("session", "session-1"))
    assert misses == []
    assert second.id == first.id
    assert len(rows) == 1
    assert rows[0].watched_seconds == 60


async def test_record_progress_clamps_watched_seconds(store, clock) -> None:
    service = make_service(store, clock)

    record = await service.record_progress(VIEWER, "m1", "T", "", 100, 150)

    assert record.watched_seconds == 100
    assert record.progress_ratio == 1.0


async def test_zero_duration_is_rejected(store, clock) -> None:
    service = make_service(store, clock)

    with pytest.raises(InvalidInput, match="duration"):
        await service.record_progress(VIEWER, "m1", "T", "", 0, 0)

    assert await store.list_owned(("session", "session-1")) == []


@pytest.mark.parametrize(
    ("identity", "media_id", "title", "field"),
    [
        (Identity(), "m1", "T", "identity"),
        (VIEWER, "", "T", "mediaId"),
        (VIEWER, "m1", "   ", "title"),
    ],
)
async def test_missing_fields_are_rejected(
    store, clock, identity: Identity, media_id: str, title: str, field: str
) -> None:
    service = make_service(store, clock)

    with pytest.raises(InvalidInput) as excinfo:
        await service.record_progress(identity, media_id, title, "", 100, 10)

    assert excinfo.value.field == field


def test_coerce_seconds_treats_garbage_as_zero() -> None:
    assert coerce_seconds("120.7") == 120
    assert coerce_seconds(-5) == 0
    assert coerce_seconds("abc") == 0
    assert coerce_seconds(None) == 0
    assert coerce_seconds(float("nan")) == 0
    assert coerce_seconds(True) == 0


async def test_non_numeric_position_is_stored_as_zero(store, clock) -> None:
    service = make_service(store, clock)

    record = await service.record_progress(VIEWER, "m1", "T", None, "90", "later")

    assert record.duration_seconds == 90
    assert record.watched_seconds == 0
    assert record.progress_ratio == 0.0
    assert record.poster_image == ""


async def test_continue_watching_keeps_only_the_in_progress_band(store, clock) -> None:
    service = make_service(store, clock)
    await service.record_progress(VIEWER, "barely", "Barely", "", 100, 1)
    await service.record_progress(VIEWER, "halfway", "Halfway", "", 100, 50)
    await service.record_progress(VIEWER, "finished", "Finished", "", 100, 97)

    items = await service.list_continue_watching(VIEWER)

    assert [item.media_id for item in items] == ["halfway"]


async def test_continue_watching_orders_most_recent_first(store, clock) -> None:
    service = make_service(store, clock)
    await service.record_progress(VIEWER, "a", "A", "", 100, 40)
    await service.record_progress(VIEWER, "b", "B", "", 100, 40)

    items = await service.list_continue_watching(VIEWER)

    assert [item.media_id for item in items] == ["b", "a"]


async def test_continue_watching_respects_limit(store, clock) -> None:
    service = make_service(store, clock)
    for index in range(5):
        await service.record_progress(VIEWER, f"m{index}", "T", "", 100, 50)

    items = await service.list_continue_watching(VIEWER, limit=2)

    assert [item.media_id for item in items] == ["m4", "m3"]


async def test_continue_watching_for_unknown_viewer_is_empty(store, clock) -> None:
    service = make_service(store, clock)

    assert await service.list_continue_watching(Identity()) == []
    assert await service.list_continue_watching(Identity.of(session_id="other")) == []


async def test_user_id_takes_precedence_over_session(store, clock) -> None:
    """Signed-in reports are keyed by user, separate from anonymous rows."""

    service = make_service(store, clock)
    both = Identity.of(session_id="session-1", user_id="user-1")
    await service.record_progress(VIEWER, "m1", "Anonymous", "", 100, 10)
    await service.record_progress(both, "m1", "Signed in", "", 100, 60)

    anonymous_rows = await store.list_owned(("session", "session-1"))
    user_rows = await store.list_owned(("user", "user-1"))

    assert [row.title for row in anonymous_rows] == ["Anonymous"]
    assert [row.title for row in user_rows] == ["Signed in"]
    assert user_rows[0].session_id == "session-1"
    items = await service.list_continue_watching(both)
    assert [item.title for item in items] == ["Signed in"]


async def test_category_is_sticky_unless_replaced(store, clock) -> None:
    service = make_service(store, clock)
    await service.record_progress(VIEWER, "m1", "T", "", 100, 10, "soccer")

    kept = await service.record_progress(VIEWER, "m1", "T", "", 100, 20, "")
    assert kept.category == "soccer"

    replaced = await service.record_progress(VIEWER, "m1", "T", "", 100, 30, "college")
    assert replaced.category == "college"


async def test_display_fields_are_overwritten(store, clock) -> None:
    service = make_service(store, clock)
    await service.record_progress(VIEWER, "m1", "Old", "old.jpg", 100, 10)

    record = await service.record_progress(VIEWER, "m1", "New", "new.jpg", 120, 10)

    assert record.title == "New"
    assert record.poster_image == "new.jpg"
    assert record.duration_seconds == 120


async def test_missing_category_is_filled_from_cache(store, clock) -> None:
    catalog = PlaylistCatalog({"PL1": [{"mediaid": "m1"}]})
    categories = CategoryCache(cast(CatalogClient, catalog), [("soccer", "PL1")])
    service = make_service(store, clock, categories=categories)

    before = await service.record_progress(VIEWER, "m1", "T", "", 100, 10)
    assert before.category is None

    await categories.init()
    after = await service.record_progress(VIEWER, "m1", "T", "", 100, 20)
    assert after.category == "soccer"


async def test_remove_progress_is_idempotent(store, clock) -> None:
    service = make_service(store, clock)
    await service.record_progress(VIEWER, "m1", "T", "", 100, 50)

    assert await service.remove_progress(VIEWER, "m1") is True
    assert await service.remove_progress(VIEWER, "m1") is False
    assert await service.get_progress(VIEWER, "m1") is None


async def test_remove_progress_requires_identity(store, clock) -> None:
    service = make_service(store, clock)

    with pytest.raises(InvalidInput):
        await service.remove_progress(Identity(), "m1")


async def test_get_progress_returns_resume_position(store, clock) -> None:
    service = make_service(store, clock)
    await service.record_progress(VIEWER, "m1", "T", "", 200, 50)

    record = await service.get_progress(VIEWER, "m1")

    assert record is not None
    assert record.watched_seconds == 50
    assert record.progress_ratio == 0.25


async def test_store_failures_surface_for_writes_only(clock) -> None:
    service = ProgressService(
        build_settings(), cast(ProgressStore, UnavailableStore()), clock=clock
    )

    with pytest.raises(StoreUnavailable):
        await service.record_progress(VIEWER, "m1", "T", "", 100, 10)
    with pytest.raises(StoreUnavailable):
        await service.remove_progress(VIEWER, "m1")
    assert await service.list_continue_watching(VIEWER) == []
    assert await service.recommended_categories(VIEWER) == []


async def test_recommended_categories_rank_by_count_then_recency(store, clock) -> None:
    service = make_service(store, clock)
    await service.record_progress(VIEWER, "m1", "T", "", 100, 10, "soccer")
    await service.record_progress(VIEWER, "m2", "T", "", 100, 10, "soccer")
    await service.record_progress(VIEWER, "m3", "T", "", 100, 10, "college")
    await service.record_progress(VIEWER, "m4", "T", "", 100, 10, "baseball")
    await service.record_progress(VIEWER, "m5", "T", "", 100, 10)

    scores = await service.recommended_categories(VIEWER)

    assert [(score.category, score.count) for score in scores] == [
        ("soccer", 2),
        ("baseball", 1),
        ("college", 1),
    ]
