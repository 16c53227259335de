from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from .content import ContentDocument


def sort_key(document: ContentDocument):
    """Newest first, ties broken by pid."""
    return (-document.metadata.date.timestamp(), document.pid)


class DocumentCollection(Sequence[ContentDocument]):
    """Lightweight helper for working with lists of documents in templates and code."""

    def __init__(self, documents: Iterable[ContentDocument]):
        self._documents = list(documents)

    def __iter__(self) -> Iterator[ContentDocument]:
        return iter(self._documents)

    def __len__(self) -> int:
        return len(self._documents)

    def __getitem__(self, item):
        return self._documents[item]

    def with_tag(self, tag: str) -> DocumentCollection:
        return DocumentCollection(d for d in self._documents if tag in d.metadata.tags)

    def published(self) -> DocumentCollection:
        return DocumentCollection(d for d in self._documents if not d.metadata.is_draft)

    def sorted(self) -> DocumentCollection:
        return DocumentCollection(sorted(self._documents, key=sort_key))

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"DocumentCollection({len(self._documents)} documents)"


@dataclass(frozen=True)
class SliceNumber:
    number: int
    display: int
    is_current: bool


@dataclass(frozen=True)
class DocumentSlice:
    """One page of a paginated document listing.

    Attributes:
        documents: Documents on this page.
        current_slice: Zero-based index of this page.
        total_slices: Number of pages in the listing.
        slice_size: Documents per page.
        numbers: Page numbers for rendering pagination links.
    """

    documents: tuple[ContentDocument, ...]
    current_slice: int
    total_slices: int
    slice_size: int
    numbers: tuple[SliceNumber, ...]

    @property
    def has_next(self) -> bool:
        return self.current_slice + 1 < self.total_slices

    @property
    def has_previous(self) -> bool:
        return self.current_slice > 0


class ContentIndex:
    """Read-only lookups over the published documents of a build.

    Drafts are reachable by pid but left out of tag listings and similar
    documents.
    """

    def __init__(self, documents: Iterable[ContentDocument]):
        self._by_pid = {d.pid: d for d in documents}
        self._published = DocumentCollection(self._by_pid.values()).published().sorted()
        tags = {tag for d in self._published for tag in d.metadata.tags}
        self._tags = {tag: self._published.with_tag(tag) for tag in tags}

    def __len__(self) -> int:
        return len(self._by_pid)

    def __iter__(self) -> Iterator[ContentDocument]:
        return iter(self._by_pid.values())

    @property
    def published(self) -> DocumentCollection:
        return self._published

    def get(self, pid: str) -> ContentDocument | None:
        return self._by_pid.get(pid)

    def get_by_path(self, path: str) -> ContentDocument | None:
        """Find the document whose page lives at ``path`` (``/posts/a.html`` -> ``/posts/a``)."""
        pid = path if path.startswith("/") else f"/{path}"
        if pid.endswith(".html"):
            pid = pid[: -len(".html")]
        return self._by_pid.get(pid)

    def tags(self) -> list[str]:
        return sorted(self._tags)

    def by_tag(self, tag: str, limit: int = 3, offset: int = 0) -> DocumentSlice:
        """Return one page of the documents carrying ``tag``.

        An empty tag lists every published document.

        Args:
            tag: Tag to filter by.
            limit: Documents per page.
            offset: Index of the first document.

        Returns:
            The requested slice; an unknown tag gives an empty slice.
        """
        if limit < 1:
            raise ValueError("limit must be positive")
        if offset < 0:
            raise ValueError("offset must not be negative")
        documents = self._published if not tag else self._tags.get(tag, DocumentCollection([]))
        current = offset // limit
        total = math.ceil(len(documents) / limit)
        numbers = tuple(
            SliceNumber(number=i, display=i + 1, is_current=i == current) for i in range(total)
        )
        return DocumentSlice(
            documents=tuple(documents[offset : offset + limit]),
            current_slice=current,
            total_slices=total,
            slice_size=limit,
            numbers=numbers,
        )

    def similar(self, pid: str, limit: int = 3) -> list[str]:
        """Return pids of the documents sharing most tags with ``pid``.

        Ties are broken newest first, then by pid.
        """
        document = self._by_pid.get(pid)
        if document is None or not document.metadata.tags:
            return []
        tags = set(document.metadata.tags)
        scored = []
        for other in self._published:
            if other.pid == pid:
                continue
            shared = len(tags.intersection(other.metadata.tags))
            if shared:
                scored.append((-shared, sort_key(other), other.pid))
        scored.sort()
        return [other_pid for _, _, other_pid in scored[:limit]]
