"""Transfer of anonymous session progress to a signed-in user."""

from __future__ import annotations

import logging
from typing import Literal

from ..db_models import ProgressRecord
from ..errors import InvalidInput, MigrationError, StoreUnavailable
from ..models import MigrationReport
from ..store import ProgressStore

logger = logging.getLogger(__name__)


def newer_record(
    session_row: ProgressRecord, user_row: ProgressRecord
) -> Literal["session", "user"]:
    """Pick the record with the later ``last_watched_at``; ties keep the user's."""

    if session_row.last_watched_at > user_row.last_watched_at:
        return "session"
    return "user"


class MigrationService:
    """Re-keys session-owned progress rows to a user id.

    Callers run this once per login; running it again only re-examines rows
    still owned by the session, so repeated calls do nothing harmful.
    """

    def __init__(self, store: ProgressStore):
        self._store = store

    async def migrate_session_to_user(
        self, session_id: str, user_id: str
    ) -> MigrationReport:
        session_id = (session_id or "").strip()
        user_id = (user_id or "").strip()
        if not session_id:
            raise InvalidInput("sessionId is required", field="sessionId")
        if not user_id:
            raise InvalidInput("An authenticated user is required", field="userId")

        try:
            records = await self._store.list_owned(("session", session_id))
        except StoreUnavailable as exc:
            raise MigrationError(
                f"Unable to read progress for session {session_id}"
            ) from exc

        report = MigrationReport(session_id=session_id, user_id=user_id)
        for record in records:
            try:
                outcome = await self._store.claim_for_user(
                    record.id, user_id, newer_record
                )
            except StoreUnavailable:
                logger.exception(
                    "Failed to migrate %s from session to user %s",
                    record.media_id,
                    user_id,
                )
                report.failed += 1
                continue
            if outcome == "moved":
                report.moved += 1
            elif outcome == "kept_session":
                report.merged_kept_session += 1
            elif outcome == "kept_user":
                report.merged_kept_user += 1

        logger.info(
            "Migrated session history to user %s: %s moved, %s merged, %s failed",
            user_id,
            report.moved,
            report.merged_kept_session + report.merged_kept_user,
            report.failed,
        )
        return report
