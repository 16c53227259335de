"""Content loading for BAR.

This module discovers Markdown documents under the content directory, splits
their frontmatter from the body and parses the body into a mistune token
tree.

Key classes:
- ContentDocument: A parsed document with its metadata and token tree.
- ContentError: A document that could not be loaded.
- FileContentLoader: Discovers content files.
- ContentProcessor: Facade that loads and parses every document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

from .extractors import (
    DocumentMetadata,
    MetadataError,
    extract_frontmatter,
    extract_metadata,
)
from .renderers import Token, parse_markdown, render_tokens

logger = logging.getLogger(__name__)

CONTENT_EXTENSIONS = (".md",)


class ContentError(Exception):
    """Error raised when a content document cannot be loaded.

    Attributes:
        source_path: Path to the document.
        message: Human-readable error message.
    """

    def __init__(self, source_path: Path, message: str):
        self.source_path = source_path
        self.message = message
        super().__init__(f"{source_path}: {message}")


@dataclass(frozen=True)
class ContentDocument:
    """A parsed content document.

    Attributes:
        pid: Path relative to the content root without extension, with a
            leading slash (``/posts/hello``).
        metadata: Validated frontmatter.
        tokens: mistune token tree of the body.
        source_path: File the document was read from.
    """

    pid: str
    metadata: DocumentMetadata
    tokens: list[Token] = field(compare=False)
    source_path: Path = field(compare=False)

    @property
    def title(self) -> str:
        return self.metadata.title

    @property
    def url_path(self) -> str:
        """Output path of the document's page, by convention ``<pid>.html``."""
        return f"{self.pid}.html"

    def with_tokens(self, tokens: list[Token]) -> ContentDocument:
        return replace(self, tokens=tokens)

    def render(self) -> str:
        """Render the body to HTML."""
        return render_tokens(self.tokens)


def pid_for(path: Path, content_root: Path) -> str:
    """Derive a document's pid from its path.

    Examples:
        >>> pid_for(Path("/site/content/posts/hello.md"), Path("/site/content"))
        '/posts/hello'
    """
    relative = path.relative_to(content_root).with_suffix("")
    return "/" + relative.as_posix()


def parse_document(path: Path, content_root: Path) -> ContentDocument:
    """Load a single document.

    Args:
        path: Path to the Markdown file.
        content_root: Content directory, used to derive the pid.

    Returns:
        The parsed document.

    Raises:
        ContentError: If the file cannot be read or its frontmatter is invalid.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ContentError(path, f"cannot read file: {exc}") from exc
    try:
        frontmatter, body = extract_frontmatter(raw)
        metadata = extract_metadata(frontmatter)
    except MetadataError as exc:
        raise ContentError(path, str(exc)) from exc
    return ContentDocument(
        pid=pid_for(path, content_root),
        metadata=metadata,
        tokens=parse_markdown(body),
        source_path=path,
    )


class FileContentLoader:
    """Discovers content files in a directory.

    Attributes:
        content_dir: Directory containing content documents.
    """

    def __init__(self, content_dir: Path):
        self.content_dir = content_dir

    def iter_files(self) -> list[Path]:
        """Return content files in sorted order, skipping hidden entries."""
        files: list[Path] = []
        for path in sorted(self.content_dir.rglob("*")):
            if path.is_dir():
                continue
            rel = path.relative_to(self.content_dir)
            if any(part.startswith(".") for part in rel.parts):
                continue
            if path.suffix.lower() in CONTENT_EXTENSIONS:
                files.append(path)
        return files


class ContentProcessor:
    """Loads and parses every document of a content directory.

    Attributes:
        content_dir: Directory containing content documents.
    """

    def __init__(self, content_dir: Path, content_loader: FileContentLoader | None = None):
        self.content_dir = content_dir
        self._content_loader = content_loader or FileContentLoader(content_dir)

    def load(self) -> list[ContentDocument]:
        """Load all documents.

        A single broken document aborts the whole load.

        Returns:
            Documents in path order.

        Raises:
            ContentError: If the content directory is missing or a document is invalid.
        """
        if not self.content_dir.is_dir():
            raise ContentError(self.content_dir, "content directory not found")
        documents = []
        for path in self._content_loader.iter_files():
            logger.debug("parsing %s", path)
            documents.append(parse_document(path, self.content_dir))
        logger.info("parsed %d content documents", len(documents))
        return documents
