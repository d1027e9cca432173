"""ULID-based record IDs and timestamps."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from ulid import ULID

# Identities become remote path segments, so keep them to a safe token.
_IDENTITY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@-]{0,127}$")


def generate_wine_id() -> str:
    """Generate a new catalog record ID with the wine_ prefix."""
    return f"wine_{ULID()}"


def validate_identity(identity: str) -> bool:
    """Return ``True`` if *identity* is usable as a per-user path segment."""
    return isinstance(identity, str) and bool(_IDENTITY_RE.match(identity))


def utc_now() -> str:
    """Return the current UTC time as an RFC 3339 string with ``Z`` suffix.

    Microsecond precision keeps records created in quick succession in
    creation order when sorted by timestamp.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: object) -> datetime | None:
    """Parse an RFC 3339 timestamp, returning ``None`` when it is unusable."""
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
