"""Viewer identity resolution for progress tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from .services.auth import AuthClient

logger = logging.getLogger(__name__)

OwnerKind = Literal["user", "session"]


def _clean(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True, slots=True)
class Identity:
    """A viewer known by an anonymous session id, a user id, or both."""

    session_id: str | None = None
    user_id: str | None = None

    @classmethod
    def of(cls, session_id: object = None, user_id: object = None) -> "Identity":
        """Build an identity, treating blank strings as missing."""

        return cls(session_id=_clean(session_id), user_id=_clean(user_id))

    @property
    def is_empty(self) -> bool:
        return self.session_id is None and self.user_id is None

    @property
    def owner_key(self) -> tuple[OwnerKind, str] | None:
        """Return the authoritative owner, preferring the user id."""

        if self.user_id:
            return "user", self.user_id
        if self.session_id:
            return "session", self.session_id
        return None


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    token = authorization.strip()
    if token[:7].lower() == "bearer ":
        token = token[7:].strip()
    return token or None


async def resolve_identity(
    session_id: str | None,
    authorization: str | None,
    auth_client: "AuthClient | None",
) -> Identity:
    """Combine the client session id with a verified user id, if any.

    The bearer credential is only passed to the auth backend. Any failure to
    verify it leaves the viewer anonymous.
    """

    user_id: str | None = None
    token = extract_bearer_token(authorization)
    if token and auth_client is not None:
        user_id = await auth_client.get_user_id(token)
        if user_id is None:
            logger.info("Bearer token rejected, treating request as anonymous")
    return Identity.of(session_id=session_id, user_id=user_id)
