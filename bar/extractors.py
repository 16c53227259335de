"""Frontmatter and metadata extraction for BAR.

Every content document starts with a YAML frontmatter block between ``---``
markers. This module splits it from the body and validates it into
``DocumentMetadata``.

Key functions:
- extract_frontmatter: Split raw text into frontmatter mapping and body.
- extract_metadata: Validate a frontmatter mapping into DocumentMetadata.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import yaml

FRONTMATTER_RE = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)


class MetadataError(ValueError):
    """Error raised for missing or malformed frontmatter."""


@dataclass(frozen=True)
class DocumentMetadata:
    """Frontmatter of a content document.

    Attributes:
        title: Document title.
        date: Publication date, timezone aware.
        image: Optional cover image (URL or site path).
        preview: Optional short summary used in listings and feeds.
        tags: Tags in declaration order.
        is_draft: Drafts are left out of listings and feeds.
    """

    title: str
    date: datetime
    image: str | None = None
    preview: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    is_draft: bool = False


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Extract YAML frontmatter from content.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (frontmatter dict, remaining content).

    Raises:
        MetadataError: If there is no frontmatter block or it is not a YAML mapping.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        raise MetadataError("missing frontmatter block")
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise MetadataError(f"invalid frontmatter YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise MetadataError("frontmatter must be a mapping")
    return data, text[match.end() :]


def parse_date(value: Any) -> datetime:
    """Coerce a frontmatter date into a timezone-aware datetime.

    PyYAML already turns unquoted timestamps into ``date``/``datetime``;
    quoted values are parsed as ISO 8601. Naive values are taken as UTC.

    Raises:
        MetadataError: If the value is not a date.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise MetadataError(f"invalid date: {value!r}") from exc
    else:
        raise MetadataError(f"invalid date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_str(frontmatter: dict[str, Any], key: str) -> str | None:
    value = frontmatter.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MetadataError(f"'{key}' must be a string")
    return value


def extract_metadata(frontmatter: dict[str, Any]) -> DocumentMetadata:
    """Validate a frontmatter mapping.

    Args:
        frontmatter: Mapping returned by ``extract_frontmatter``.

    Returns:
        Validated metadata.

    Raises:
        MetadataError: If ``title`` or ``date`` is missing or a field has the wrong type.
    """
    title = frontmatter.get("title")
    if not isinstance(title, str) or not title.strip():
        raise MetadataError("'title' is required")
    if "date" not in frontmatter:
        raise MetadataError("'date' is required")

    tags = frontmatter.get("tags") or []
    if not isinstance(tags, list):
        raise MetadataError("'tags' must be a list")

    return DocumentMetadata(
        title=title,
        date=parse_date(frontmatter["date"]),
        image=_optional_str(frontmatter, "image") or None,
        preview=_optional_str(frontmatter, "preview") or None,
        tags=tuple(str(tag) for tag in tags),
        is_draft=bool(frontmatter.get("is_draft", False)),
    )
