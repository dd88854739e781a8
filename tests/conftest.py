"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncIterator

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.store import ProgressStore  # noqa: E402


class FakeClock:
    """Deterministic clock that moves forward one minute per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object that ignores any local .env file."""

    return Settings(_env_file=None, **overrides)  # type: ignore[arg-type]


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return build_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(tmp_path) -> AsyncIterator[Database]:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}")
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def store(database: Database) -> ProgressStore:
    return ProgressStore(database.session_factory, timeout=5.0)
