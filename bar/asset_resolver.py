"""Static asset overlay for BAR.

Static files come from three roots, in fixed priority order: the user's
static directory, the template directory, and built-in defaults shipped with
BAR. The resolver merges them into one logical file set (earlier sources win),
enforces the extension whitelist and computes cache-busting URLs from file
contents.

Resolution never touches the output directory; copying the merged set is the
separate ``apply`` step.

Key classes:
- StaticSource: One root of static files.
- ResolvedAsset: The winning file for a logical path and its public URL.
- AssetResolver: Resolves, enumerates and copies the merged file set.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType

from .utils import crc32_checksum

logger = logging.getLogger(__name__)

DEFAULT_ROBOTS_TXT = b"User-agent: *\nAllow: /\n"
NOT_FOUND_TEMPLATE = "404.html"

BUILTIN_FILES: Mapping[str, bytes] = MappingProxyType({"robots.txt": DEFAULT_ROBOTS_TXT})

CACHE_BUSTER_PARAM = "cb"


class AssetNotFoundError(Exception):
    """Error raised when a static path resolves in none of the sources.

    Attributes:
        asset_name: The logical path that was requested.
        searched_sources: Names of the sources that were searched.
    """

    def __init__(self, asset_name: str, searched_sources: Sequence[str]):
        self.asset_name = asset_name
        self.searched_sources = list(searched_sources)
        super().__init__(
            f"static file '{asset_name}' not found. Searched: {', '.join(self.searched_sources)}"
        )


@dataclass(frozen=True)
class StaticSource:
    """A root of static files.

    A source is either a directory on disk (``root``) or a fixed set of
    in-memory files (``builtin``). Built-in files are synthesised by BAR
    itself and bypass the extension whitelist.

    Attributes:
        name: Label used in logs and errors ("user", "template", "defaults").
        root: Directory of files, or None for an in-memory source.
        builtin: In-memory files keyed by logical path.
        excluded: Logical paths never served from this source.
    """

    name: str
    root: Path | None = None
    builtin: Mapping[str, bytes] = field(default_factory=dict)
    excluded: frozenset[str] = frozenset()

    @property
    def is_builtin(self) -> bool:
        return self.root is None

    def paths(self) -> list[str]:
        """List the logical paths this source provides."""
        if self.root is None:
            found = list(self.builtin)
        elif not self.root.is_dir():
            return []
        else:
            found = [
                p.relative_to(self.root).as_posix()
                for p in self.root.rglob("*")
                if p.is_file()
            ]
        return sorted(p for p in found if p not in self.excluded)

    def contains(self, logical_path: str) -> bool:
        if logical_path in self.excluded:
            return False
        if self.root is None:
            return logical_path in self.builtin
        return (self.root / logical_path).is_file()

    def read(self, logical_path: str) -> bytes:
        if self.root is None:
            return self.builtin[logical_path]
        return (self.root / logical_path).read_bytes()

    def copy_to(self, logical_path: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if self.root is None:
            dest.write_bytes(self.builtin[logical_path])
        else:
            shutil.copyfile(self.root / logical_path, dest)


@dataclass(frozen=True)
class ResolvedAsset:
    """The winning file for a logical static path.

    Attributes:
        logical_path: Path relative to the site root, without leading slash.
        source_index: Index of the winning source (0 = highest priority).
        content_hash: Checksum of the file bytes.
        public_url: Root-relative URL with the checksum as cache buster.
    """

    logical_path: str
    source_index: int
    content_hash: str
    public_url: str


def normalize_logical_path(path: str) -> str:
    """Normalise a static path or public URL to its logical path.

    Strips the query string (cache buster), leading slashes and ``.``
    segments.

    Args:
        path: Path as written by a template, with or without leading slash.

    Returns:
        Logical path such as ``css/main.css``.

    Raises:
        ValueError: If the path is empty or escapes the site root.
    """
    cleaned = path.split("?", 1)[0].split("#", 1)[0].strip().replace("\\", "/")
    parts = [p for p in PurePosixPath(cleaned.lstrip("/")).parts if p not in (".", "")]
    if not parts or ".." in parts:
        raise ValueError(f"Invalid static path: {path!r}")
    return "/".join(parts)


def public_url_for(logical_path: str, content_hash: str) -> str:
    """Build the cache-busted public URL of a logical path."""
    return f"/{logical_path}?{CACHE_BUSTER_PARAM}={content_hash}"


def logical_path_from_url(url: str) -> str:
    """Recover the logical path from a public URL produced by ``public_url_for``."""
    return normalize_logical_path(url)


class AssetResolver:
    """Resolves logical static paths against an ordered list of sources.

    Resolution is a pure function of the source snapshot: nothing is cached
    between calls, so results only change when files on disk change.

    Attributes:
        sources: Sources in priority order, highest first.
        extensions: Whitelisted extensions (lowercase, no dot).
    """

    def __init__(self, sources: Sequence[StaticSource], extensions: Sequence[str]):
        self.sources = tuple(sources)
        self.extensions = frozenset(e.lower().lstrip(".") for e in extensions)

    @classmethod
    def from_config(cls, config) -> AssetResolver:
        """Build the standard user/template/defaults overlay for a project."""
        sources = build_static_sources(config.static_source_path, config.template)
        return cls(sources, config.static_files_extensions)

    def is_allowed(self, source: StaticSource, logical_path: str) -> bool:
        """Check whether ``source`` may serve ``logical_path``.

        Files that have a built-in default can always be overridden.
        """
        if source.is_builtin or logical_path in BUILTIN_FILES:
            return True
        suffix = PurePosixPath(logical_path).suffix.lower().lstrip(".")
        return suffix in self.extensions

    def _winner(self, logical_path: str) -> tuple[int, StaticSource] | None:
        for index, source in enumerate(self.sources):
            if source.contains(logical_path) and self.is_allowed(source, logical_path):
                return index, source
        return None

    def _resolved(self, logical_path: str, index: int, source: StaticSource) -> ResolvedAsset:
        content_hash = crc32_checksum(source.read(logical_path))
        return ResolvedAsset(
            logical_path=logical_path,
            source_index=index,
            content_hash=content_hash,
            public_url=public_url_for(logical_path, content_hash),
        )

    def resolve(self, path: str) -> ResolvedAsset:
        """Resolve a static path to its winning file.

        Args:
            path: Logical path, with or without leading slash or cache buster.

        Returns:
            The resolved asset.

        Raises:
            AssetNotFoundError: If no source provides an allowed file at the path.
        """
        try:
            logical_path = normalize_logical_path(path)
        except ValueError:
            raise AssetNotFoundError(path, [s.name for s in self.sources]) from None
        winner = self._winner(logical_path)
        if winner is None:
            raise AssetNotFoundError(logical_path, [s.name for s in self.sources])
        return self._resolved(logical_path, *winner)

    def read(self, path: str) -> bytes:
        """Return the bytes of the winning file for ``path``.

        Raises:
            AssetNotFoundError: If the path does not resolve.
        """
        asset = self.resolve(path)
        return self.sources[asset.source_index].read(asset.logical_path)

    def exists(self, path: str) -> bool:
        try:
            self.resolve(path)
        except AssetNotFoundError:
            return False
        return True

    def enumerate(self) -> list[ResolvedAsset]:
        """Return every resolvable asset, sorted by logical path."""
        union: set[str] = set()
        for source in self.sources:
            union.update(source.paths())
        resolved = []
        for logical_path in sorted(union):
            winner = self._winner(logical_path)
            if winner is None:
                logger.debug("skipping %s: extension not whitelisted", logical_path)
                continue
            resolved.append(self._resolved(logical_path, *winner))
        return resolved

    def apply(self, dest_root: Path) -> list[Path]:
        """Copy each winning file into ``dest_root``.

        Args:
            dest_root: Output directory.

        Returns:
            Written file paths, in logical path order.
        """
        written = []
        for asset in self.enumerate():
            dest = dest_root / asset.logical_path
            self.sources[asset.source_index].copy_to(asset.logical_path, dest)
            logger.debug(
                "copied %s from %s",
                asset.logical_path,
                self.sources[asset.source_index].name,
            )
            written.append(dest)
        logger.info("copied %d static files", len(written))
        return written


def build_static_sources(
    static_source_path: Path, template_path: Path
) -> tuple[StaticSource, ...]:
    """Construct the user/template/defaults source list.

    The template's ``404.html`` is a template, not a static file, so it is
    excluded from the template source.
    """
    return (
        StaticSource(name="user", root=static_source_path),
        StaticSource(
            name="template",
            root=template_path,
            excluded=frozenset({NOT_FOUND_TEMPLATE}),
        ),
        StaticSource(name="defaults", builtin=BUILTIN_FILES),
    )
