"""Persistence layer for watch-progress records."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Literal, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import ProgressRecord
from .errors import StoreUnavailable
from .identity import Identity, OwnerKind
from .models import ProgressRecordView

logger = logging.getLogger(__name__)

T = TypeVar("T")

Owner = tuple[OwnerKind, str]
MergeOutcome = Literal["moved", "kept_session", "kept_user", "skipped"]
# Decides which of (session_row, user_row) survives a migration conflict.
MergeResolver = Callable[[ProgressRecord, ProgressRecord], Literal["session", "user"]]


def _owner_filter(owner: Owner):
    kind, value = owner
    if kind == "user":
        return (ProgressRecord.owner_user_id == value,)
    return (
        ProgressRecord.owner_session_id == value,
        ProgressRecord.owner_user_id.is_(None),
    )


class ProgressStore:
    """Keyed storage for progress rows with upsert-by-owner semantics."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout: float = 5.0,
    ):
        self._session_factory = session_factory
        self._timeout = timeout

    async def _guard(self, operation: str, work: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(work, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailable(f"Progress store timed out during {operation}") from exc
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"Progress store failed during {operation}: {exc}") from exc

    async def get(self, owner: Owner, media_id: str) -> ProgressRecordView | None:
        return await self._guard("get", self._get(owner, media_id))

    async def _get(self, owner: Owner, media_id: str) -> ProgressRecordView | None:
        async with self._session_factory() as session:
            record = await self._find(session, owner, media_id)
            return ProgressRecordView.model_validate(record) if record else None

    @staticmethod
    async def _find(
        session: AsyncSession, owner: Owner, media_id: str
    ) -> ProgressRecord | None:
        stmt = select(ProgressRecord).where(
            *_owner_filter(owner), ProgressRecord.media_id == media_id
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def upsert(
        self,
        identity: Identity,
        media_id: str,
        *,
        title: str,
        poster_image: str,
        duration_seconds: int,
        watched_seconds: int,
        progress_ratio: float,
        category: str | None,
        now: datetime,
    ) -> ProgressRecordView:
        """Insert or overwrite the row for the identity's authoritative owner.

        ``category`` only replaces the stored value when it is not ``None``.
        """

        owner = identity.owner_key
        if owner is None:
            raise ValueError("An identity with a session or user id is required")

        async def _work() -> ProgressRecordView:
            # A lost insert race surfaces as IntegrityError; the second pass
            # finds the winning row and updates it instead.
            attempt = 0
            while True:
                attempt += 1
                async with self._session_factory() as session:
                    record = await self._find(session, owner, media_id)
                    if record is None:
                        record = ProgressRecord(
                            owner_session_id=identity.session_id,
                            owner_user_id=identity.user_id,
                            media_id=media_id,
                            created_at=now,
                        )
                        session.add(record)
                    elif record.owner_session_id is None and identity.session_id:
                        record.owner_session_id = identity.session_id
                    record.title = title
                    record.poster_image = poster_image
                    record.duration_seconds = duration_seconds
                    record.watched_seconds = watched_seconds
                    record.progress_ratio = progress_ratio
                    record.last_watched_at = now
                    if category is not None:
                        record.category = category
                    try:
                        await session.commit()
                    except IntegrityError:
                        await session.rollback()
                        if attempt >= 2:
                            raise
                        logger.info(
                            "Concurrent progress insert for %s/%s, retrying as update",
                            owner[0],
                            media_id,
                        )
                        continue
                    return ProgressRecordView.model_validate(record)

        return await self._guard("upsert", _work())

    async def delete(self, owner: Owner, media_id: str) -> bool:
        return await self._guard("delete", self._delete(owner, media_id))

    async def _delete(self, owner: Owner, media_id: str) -> bool:
        async with self._session_factory() as session:
            stmt = delete(ProgressRecord).where(
                *_owner_filter(owner), ProgressRecord.media_id == media_id
            )
            result = await session.execute(stmt)
            await session.commit()
            return bool(result.rowcount)

    async def list_owned(
        self,
        owner: Owner,
        *,
        min_ratio: float | None = None,
        max_ratio: float | None = None,
        media_ids: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[ProgressRecordView]:
        """Return the owner's rows, most recently watched first.

        Ratio bounds are exclusive.
        """

        async def _work() -> list[ProgressRecordView]:
            stmt = select(ProgressRecord).where(*_owner_filter(owner))
            if min_ratio is not None:
                stmt = stmt.where(ProgressRecord.progress_ratio > min_ratio)
            if max_ratio is not None:
                stmt = stmt.where(ProgressRecord.progress_ratio < max_ratio)
            if media_ids is not None:
                if not media_ids:
                    return []
                stmt = stmt.where(ProgressRecord.media_id.in_(list(media_ids)))
            stmt = stmt.order_by(
                ProgressRecord.last_watched_at.desc(), ProgressRecord.id
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [
                    ProgressRecordView.model_validate(record)
                    for record in result.scalars().all()
                ]

        return await self._guard("list", _work())

    async def claim_for_user(
        self, record_id: str, user_id: str, resolve: MergeResolver
    ) -> MergeOutcome:
        """Hand one anonymous row over to ``user_id`` in its own transaction."""

        return await self._guard("claim", self._claim(record_id, user_id, resolve))

    async def _claim(
        self, record_id: str, user_id: str, resolve: MergeResolver
    ) -> MergeOutcome:
        async with self._session_factory() as session:
            stmt = select(ProgressRecord).where(
                ProgressRecord.id == record_id,
                ProgressRecord.owner_user_id.is_(None),
            )
            session_row = (await session.execute(stmt)).scalars().first()
            if session_row is None:
                return "skipped"

            user_row = await self._find(session, ("user", user_id), session_row.media_id)
            if user_row is None:
                session_row.owner_user_id = user_id
                await session.commit()
                return "moved"

            if resolve(session_row, user_row) == "session":
                if not session_row.category and user_row.category:
                    session_row.category = user_row.category
                await session.delete(user_row)
                await session.flush()
                session_row.owner_user_id = user_id
                await session.commit()
                return "kept_session"

            if not user_row.category and session_row.category:
                user_row.category = session_row.category
            await session.delete(session_row)
            await session.commit()
            return "kept_user"
