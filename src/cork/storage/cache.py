"""Durable local snapshot of the collection.

One JSON blob per identity holds the whole collection and is re-written on
every mutation.  Reads fail soft (an unreadable cache is an empty cellar)
and writes degrade: when the blob does not fit the quota the store retries
once without embedded images before giving up.
"""

from __future__ import annotations

import errno
import json
import logging
from pathlib import Path

from cork.core.collection import Collection, serialize_collection
from cork.core.config import DEFAULT_QUOTA_BYTES
from cork.core.errors import CorkError
from cork.core.records import strip_images
from cork.storage.fs import atomic_write
from cork.storage.locks import LockTimeout, cork_lock

logger = logging.getLogger(__name__)

LOCAL_IDENTITY = "local"

SAVED = "saved"
SAVED_WITHOUT_IMAGES = "saved_without_images"
DROPPED = "dropped"

_QUOTA_ERRNOS = frozenset({errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)})


class CacheQuotaExceeded(CorkError):
    """Raised internally when a cache blob does not fit the quota."""


class LocalCacheStore:
    """Load and save the collection blob for one identity."""

    def __init__(
        self,
        cache_dir: Path,
        identity: str | None = None,
        *,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
        locks_dir: Path | None = None,
    ) -> None:
        self.cache_dir = cache_dir
        self.identity = identity or LOCAL_IDENTITY
        self.quota_bytes = quota_bytes
        self.locks_dir = locks_dir or cache_dir.parent / "locks"

    @property
    def path(self) -> Path:
        return self.cache_dir / f"{self.identity}.json"

    def load(self) -> Collection:
        """Return the cached collection; never raises.

        A missing, unreadable or corrupt cache yields an empty collection.
        """
        path = self.path
        if not path.exists():
            return Collection()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Collection.from_dict(data)
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache %s: %s", path, exc)
            return Collection()

    def save(self, collection: Collection) -> str:
        """Persist *collection*, returning ``SAVED``, ``SAVED_WITHOUT_IMAGES`` or ``DROPPED``.

        Never raises: a failed write is logged and reported as ``DROPPED``.
        """
        try:
            self._write(serialize_collection(collection))
            return SAVED
        except CacheQuotaExceeded as exc:
            logger.warning("Cache quota exceeded (%s); retrying without images", exc)
        except (OSError, LockTimeout) as exc:
            logger.warning("Could not write cache %s: %s", self.path, exc)
            return DROPPED

        slim = Collection(strip_images(collection.wines), strip_images(collection.archive))
        try:
            self._write(serialize_collection(slim))
        except (CacheQuotaExceeded, OSError, LockTimeout) as exc:
            logger.warning("Cache write dropped even without images: %s", exc)
            return DROPPED
        return SAVED_WITHOUT_IMAGES

    def clear(self) -> None:
        """Delete this identity's cache file if present."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def _write(self, content: str) -> None:
        size = len(content.encode("utf-8"))
        if size > self.quota_bytes:
            raise CacheQuotaExceeded(f"{size} bytes over quota of {self.quota_bytes}")
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        with cork_lock(self.locks_dir, f"cache_{self.identity}"):
            try:
                atomic_write(self.path, content)
            except OSError as exc:
                if exc.errno in _QUOTA_ERRNOS:
                    raise CacheQuotaExceeded(str(exc)) from exc
                raise
