"""Feed generation for BAR.

This module turns the rendered content documents into syndication feeds
(JSON Feed 1.1, RSS 2.0) and lists every rendered page in ``sitemap.xml``.
Feed generation runs after the render loop, over the frozen registry.

Classes:
    FeedItem: One content document as it appears in a feed.
    FeedChannel: Site-level feed metadata.
    FeedGenerator: Base class for feed formats.
    JsonFeedGenerator: Generates JSON Feed 1.1 documents.
    RSSGenerator: Generates RSS 2.0 documents.
    SitemapGenerator: Generates sitemap.xml.

Functions:
    collect_feed_items: Select and order the documents that go into feeds.
    generator_for: Look up the generator of a feed type.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from .collections import sort_key
from .content import ContentDocument
from .html_utils import escape_html, join_root_url

JSON_FEED_VERSION = "https://jsonfeed.org/version/1.1"
RFC822_FORMAT = "%a, %d %b %Y %H:%M:%S %z"


@dataclass(frozen=True)
class FeedItem:
    """A content document as listed in a feed.

    Attributes:
        id: Document pid.
        title: Document title.
        url: Absolute URL of the rendered page.
        content_text: Preview text, empty when the document has none.
        date_published: Publication date.
        image: Absolute URL of the cover image, if any.
        tags: Document tags.
    """

    id: str
    title: str
    url: str
    content_text: str
    date_published: datetime
    image: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_document(cls, document: ContentDocument, domain: str) -> FeedItem:
        metadata = document.metadata
        return cls(
            id=document.pid,
            title=metadata.title,
            url=join_root_url(domain, document.url_path),
            content_text=metadata.preview or "",
            date_published=metadata.date,
            image=join_root_url(domain, metadata.image) if metadata.image else None,
            tags=metadata.tags,
        )


@dataclass(frozen=True)
class FeedChannel:
    """Site-level metadata shared by every feed.

    Attributes:
        title: Site title.
        description: Site description.
        home_page_url: Site domain.
        feed_url: Absolute URL of the feed itself.
        icon: Absolute URL of ``icon.png`` when the site has one.
        favicon: Absolute URL of ``favicon.ico`` when the site has one.
        language: Content language.
    """

    title: str
    description: str
    home_page_url: str
    feed_url: str
    icon: str | None = None
    favicon: str | None = None
    language: str = "en"


def collect_feed_items(
    documents: Iterable[ContentDocument],
    rendered_paths: Iterable[str],
    domain: str,
) -> list[FeedItem]:
    """Select the documents that appear in feeds.

    A document is listed when its page was rendered and it is not a draft.
    Items are ordered newest first, then by pid.
    """
    rendered = set(rendered_paths)
    selected = [
        d for d in documents if d.url_path in rendered and not d.metadata.is_draft
    ]
    return [FeedItem.from_document(d, domain) for d in sorted(selected, key=sort_key)]


class FeedGenerator(ABC):
    """Abstract base class for feed generators.

    Subclasses implement one feed format. The registry decides where a feed
    is written; generators only produce its contents.
    """

    @property
    @abstractmethod
    def kind(self) -> str:
        """Return the feed type name used in ``add_feed`` and configuration."""
        ...

    @abstractmethod
    def generate(self, channel: FeedChannel, items: list[FeedItem]) -> str:
        """Generate feed content.

        Args:
            channel: Site-level metadata.
            items: Items in display order.

        Returns:
            Serialised feed document.
        """
        ...


class JsonFeedGenerator(FeedGenerator):
    """Generates JSON Feed 1.1 documents."""

    @property
    def kind(self) -> str:
        return "json"

    def generate(self, channel: FeedChannel, items: list[FeedItem]) -> str:
        feed = {
            "version": JSON_FEED_VERSION,
            "title": channel.title,
            "home_page_url": channel.home_page_url,
            "feed_url": channel.feed_url,
            "description": channel.description,
            "icon": channel.icon,
            "favicon": channel.favicon,
            "language": channel.language,
            "items": [self._item(item) for item in items],
        }
        return json.dumps(_without_none(feed), ensure_ascii=False)

    @staticmethod
    def _item(item: FeedItem) -> dict:
        return _without_none(
            {
                "id": item.id,
                "url": item.url,
                "title": item.title,
                "content_text": item.content_text,
                "image": item.image,
                "date_published": item.date_published.isoformat(),
                "tags": list(item.tags),
            }
        )


class RSSGenerator(FeedGenerator):
    """Generates RSS 2.0 feeds.

    ``lastBuildDate`` is the date of the newest item, so rebuilding unchanged
    content produces identical output.
    """

    @property
    def kind(self) -> str:
        return "rss"

    def generate(self, channel: FeedChannel, items: list[FeedItem]) -> str:
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{escape_html(channel.title)}</title>",
            f"<link>{escape_html(channel.home_page_url)}</link>",
            f"<description>{escape_html(channel.description)}</description>",
            f"<language>{channel.language}</language>",
        ]
        if items:
            last_build = items[0].date_published.strftime(RFC822_FORMAT)
            lines.append(f"<lastBuildDate>{last_build}</lastBuildDate>")
        if channel.icon:
            lines.append(
                f"<image><url>{escape_html(channel.icon)}</url>"
                f"<title>{escape_html(channel.title)}</title>"
                f"<link>{escape_html(channel.home_page_url)}</link></image>"
            )
        for item in items:
            categories = "".join(
                f"<category>{escape_html(tag)}</category>" for tag in item.tags
            )
            lines.append(
                f"<item><title>{escape_html(item.title)}</title>"
                f"<link>{escape_html(item.url)}</link>"
                f"<description>{escape_html(item.content_text)}</description>"
                f'<guid isPermaLink="true">{escape_html(item.url)}</guid>'
                f"{categories}"
                f"<pubDate>{item.date_published.strftime(RFC822_FORMAT)}</pubDate></item>"
            )
        lines.append("</channel></rss>")
        return "\n".join(lines)


class SitemapGenerator:
    """Generates sitemap.xml listing every rendered page.

    Pages backed by a content document get its date as ``lastmod``.
    """

    filename = "sitemap.xml"

    def generate(
        self,
        domain: str,
        paths: Iterable[str],
        documents: Mapping[str, ContentDocument] | None = None,
    ) -> str:
        """Generate sitemap.xml content.

        Args:
            domain: Absolute site URL.
            paths: Rendered page paths.
            documents: Content documents keyed by their page path.

        Returns:
            Sitemap XML content, entries sorted by path.
        """
        documents = documents or {}
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for path in sorted(set(paths)):
            loc = escape_html(join_root_url(domain, path))
            document = documents.get(path)
            if document is not None:
                lastmod = document.metadata.date.strftime("%Y-%m-%d")
                lines.append(f"  <url><loc>{loc}</loc><lastmod>{lastmod}</lastmod></url>")
            else:
                lines.append(f"  <url><loc>{loc}</loc></url>")
        lines.append("</urlset>")
        return "\n".join(lines)


_GENERATORS: dict[str, FeedGenerator] = {
    generator.kind: generator for generator in (JsonFeedGenerator(), RSSGenerator())
}


def generator_for(kind: str) -> FeedGenerator:
    """Return the generator for a feed type.

    Raises:
        ValueError: If the feed type is unknown.
    """
    try:
        return _GENERATORS[kind]
    except KeyError:
        raise ValueError(f"unknown feed type {kind!r}") from None


def _without_none(payload: dict) -> dict:
    return {key: value for key, value in payload.items() if value is not None}
