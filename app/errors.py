"""Exceptions raised by the progress reconciliation services."""

from __future__ import annotations


class ProgressError(Exception):
    """Base class for watch-progress failures."""


class InvalidInput(ProgressError, ValueError):
    """A progress report or request is missing or has malformed fields."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StoreUnavailable(ProgressError):
    """The progress record store could not be reached in time."""


class CatalogUnavailable(ProgressError):
    """The external video catalog did not return usable data."""


class MigrationError(ProgressError):
    """A session's records could not be enumerated for migration."""
