"""Utility functions for BAR.

This module contains small helpers used throughout the codebase: path
normalisation, checksums, cache keys and file writing.

Key functions:
    normalize_page_path: Canonical form of a registry path.
    page_output_path: Map a registry path to a file under the dist directory.
    crc32_checksum: Cache-busting checksum of a byte string.
    cache_key: Stable hash over every input of an expensive computation.
    atomic_write_bytes: Write a file via a temporary sibling and rename.
    write_output: Write a build artifact, creating parent directories.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import base64
import hashlib
import os
import shutil
import tempfile
import zlib
from pathlib import Path


def normalize_page_path(path: str) -> str:
    """Return the canonical form of a page path.

    A leading slash is always present, empty and ``.`` segments are dropped,
    ``..`` removes the previous segment, and a trailing slash is kept because
    it marks a directory index page.

    Args:
        path: Path as written in a template or configuration.

    Returns:
        Normalised path string.

    Raises:
        ValueError: If ``..`` climbs above the site root.

    Examples:
        >>> normalize_page_path("posts//hello.html")
        '/posts/hello.html'

        >>> normalize_page_path("/a/../b/")
        '/b/'

        >>> normalize_page_path("")
        '/'
    """
    cleaned = path.strip().replace("\\", "/")
    segments: list[str] = []
    for segment in cleaned.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise ValueError(f"page path '{path}' escapes the site root")
            segments.pop()
        else:
            segments.append(segment)
    normalized = "/" + "/".join(segments)
    if segments and cleaned.endswith("/"):
        normalized += "/"
    return normalized


def page_output_path(dist_dir: Path, path: str) -> Path:
    """Map a normalised page path to its file in the dist directory.

    Args:
        dist_dir: Output directory.
        path: Normalised page path.

    Returns:
        Target file path; directory paths get an ``index.html``.
    """
    relative = path.lstrip("/")
    if not relative or relative.endswith("/"):
        relative = f"{relative}index.html"
    return dist_dir / relative


def crc32_checksum(data: bytes) -> str:
    """Compute the cache-busting checksum of a byte string.

    The CRC32 digest is encoded as big-endian bytes in unpadded base64url, so
    the result is safe inside a URL query.

    Args:
        data: File contents.

    Returns:
        Short checksum string.
    """
    digest = zlib.crc32(data) & 0xFFFFFFFF
    encoded = base64.urlsafe_b64encode(digest.to_bytes(4, "big"))
    return encoded.decode("ascii").rstrip("=")


def cache_key(*parts: bytes | str | float | int) -> str:
    """Hash all inputs of a computation into a cache key.

    Each part is length-prefixed so that ``("ab", "c")`` and ``("a", "bc")``
    never collide.

    Args:
        *parts: Inputs; strings and numbers are encoded via ``repr``/UTF-8.

    Returns:
        Hex sha256 digest.
    """
    hasher = hashlib.sha256()
    for part in parts:
        if isinstance(part, str):
            raw = part.encode("utf-8")
        elif isinstance(part, bytes):
            raw = part
        else:
            raw = repr(part).encode("ascii")
        hasher.update(len(raw).to_bytes(8, "big"))
        hasher.update(raw)
    return hasher.hexdigest()


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` so readers never observe a partial file.

    Args:
        path: Destination file.
        data: Bytes to write.

    Raises:
        OSError: If the directory cannot be created or the write fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_output(path: Path, content: str | bytes) -> None:
    """Write a build artifact, creating parent directories.

    Args:
        path: Destination file.
        content: Text (written as UTF-8) or bytes.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_bytes(content)


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    If the directory exists, removes all contents. Creates the
    directory if it doesn't exist.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path))
    path.mkdir(parents=True, exist_ok=True)


def remove_dir(path: Path) -> bool:
    """Remove a directory tree if present.

    Args:
        path: Directory to delete.

    Returns:
        True if something was removed.
    """
    if not path.exists():
        return False
    shutil.rmtree(str(path))
    return True
