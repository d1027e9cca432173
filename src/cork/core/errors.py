"""Exception hierarchy shared by the cellar, storage and sync layers."""

from __future__ import annotations


class CorkError(Exception):
    """Base class for all errors raised by cork."""


class ValidationError(CorkError):
    """Raised when record fields fail validation."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid record")


class WineNotFoundError(CorkError):
    """Raised when no active catalog record has the requested ID."""

    def __init__(self, wine_id: str) -> None:
        self.wine_id = wine_id
        super().__init__(f"Wine {wine_id} not found.")


class ArchiveRecordNotFoundError(CorkError):
    """Raised when no archive record has the requested ID."""

    def __init__(self, archive_id: str) -> None:
        self.archive_id = archive_id
        super().__init__(f"Archived wine {archive_id} not found.")


class RemoteError(CorkError):
    """Raised when the remote store is unreachable or rejects a request."""
