"""Content-addressed artifact cache for BAR.

Expensive, deterministic build artifacts (downloaded remote images, generated
alt text) are persisted under ``.cache/<namespace>/`` in the project root so
repeated builds reuse them. Keys are hashes over every input of the
computation, so a changed input always produces a different key and a stale
entry is never served.

Key classes:
- CacheEntry: A persisted payload with its key and write time.
- ArtifactCache: One on-disk namespace with atomic writes and in-flight de-duplication.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .utils import atomic_write_bytes, remove_dir

logger = logging.getLogger(__name__)

CACHE_DIR_NAME = ".cache"
REMOTE_IMAGES = "remote_images"
ALT_TEXT = "alt_text"


class CacheIOError(Exception):
    """Error raised when a cache entry cannot be persisted.

    Attributes:
        key: Key of the entry being written.
        path: File that could not be written.
    """

    def __init__(self, key: str, path: Path, original_error: Exception | None = None):
        self.key = key
        self.path = path
        self.original_error = original_error
        super().__init__(f"Failed to persist cache entry {key} at {path}: {original_error}")


@dataclass(frozen=True)
class CacheEntry:
    """A persisted cache payload.

    Attributes:
        key: Hash over all inputs of the computation.
        payload: Stored bytes.
        persisted_at: When the payload was written.
    """

    key: str
    payload: bytes
    persisted_at: datetime


class ArtifactCache:
    """Persistent cache namespace keyed by input hashes.

    Entries live in ``<root>/<namespace>/<key>``. Writes go to a temporary
    file that is renamed into place, so an interrupted build never leaves a
    truncated entry behind.

    Concurrent ``get_or_compute`` calls for the same key share one
    computation: the first caller computes, later callers block on its
    result.

    Attributes:
        directory: Directory holding the entries of this namespace.
        namespace: Namespace name, e.g. ``alt_text``.
    """

    def __init__(self, root: Path, namespace: str):
        self.namespace = namespace
        self.directory = root / namespace
        self._lock = threading.Lock()
        self._in_flight: dict[str, Future] = {}

    @classmethod
    def for_project(cls, project_root: Path, namespace: str) -> ArtifactCache:
        """Create the cache namespace rooted at ``<project_root>/.cache``."""
        return cls(project_root / CACHE_DIR_NAME, namespace)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.directory / key

    def get(self, key: str) -> bytes | None:
        """Return the cached payload, or None on a miss."""
        entry = self.entry(key)
        return entry.payload if entry is not None else None

    def entry(self, key: str) -> CacheEntry | None:
        """Return the full cache entry for ``key``, or None on a miss."""
        path = self._path(key)
        try:
            payload = path.read_bytes()
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return None
        return CacheEntry(
            key=key,
            payload=payload,
            persisted_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )

    def write(self, key: str, payload: bytes) -> None:
        """Persist ``payload`` atomically.

        Raises:
            CacheIOError: If the entry cannot be written.
        """
        path = self._path(key)
        try:
            atomic_write_bytes(path, payload)
        except OSError as exc:
            raise CacheIOError(key, path, exc) from exc

    def put(self, key: str, payload: bytes) -> bool:
        """Persist ``payload``, logging instead of raising on failure.

        A failed write does not fail the build: the caller still holds the
        freshly computed payload, it just is not reused by later builds.

        Returns:
            True if the entry was persisted.
        """
        try:
            self.write(key, payload)
        except CacheIOError as exc:
            logger.warning("%s", exc)
            return False
        logger.debug("cached %s/%s (%d bytes)", self.namespace, key, len(payload))
        return True

    def get_or_compute(self, key: str, compute: Callable[[], bytes]) -> bytes:
        """Return the cached payload for ``key``, computing it on a miss.

        Args:
            key: Hash over every input of ``compute``.
            compute: Produces the payload; called at most once per key across
                concurrent callers.

        Returns:
            The cached or freshly computed payload.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        with self._lock:
            future = self._in_flight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[key] = future

        if not owner:
            logger.debug("waiting for in-flight %s/%s", self.namespace, key)
            return future.result()

        try:
            # Another owner may have finished between our miss and taking the slot.
            payload = self.get(key)
            if payload is None:
                payload = compute()
                self.put(key, payload)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(payload)
            return payload
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

    def clear(self) -> None:
        """Remove every entry of this namespace."""
        if remove_dir(self.directory):
            logger.info("cleared cache namespace %s", self.namespace)


def clear_cache(project_root: Path) -> bool:
    """Remove the whole ``.cache`` directory of a project.

    Returns:
        True if a cache directory existed.
    """
    return remove_dir(project_root / CACHE_DIR_NAME)
