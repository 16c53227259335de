"""Template rendering engine for BAR.

This module uses Jinja2 to render the pages declared in the page registry.
Templates talk to the build through a ``BuildBindings`` object whose methods
are installed as Jinja globals: ``add_page`` and ``add_feed`` declare new
outputs, ``get_static_file`` returns cache-busted static URLs, and a handful
of read-only helpers expose the parsed content.

Key classes:
- BuildBindings: The callbacks templates may call during a render.
- TemplateEngine: Loads templates and renders page registrations.
"""

from __future__ import annotations

import logging
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from .asset_resolver import AssetResolver
from .collections import ContentIndex, DocumentSlice
from .config import FEED_TYPES, Config
from .content import ContentDocument
from .registry import PageRegistration, PageRegistry
from .renderers import highlight_code
from .utils import crc32_checksum

logger = logging.getLogger(__name__)


def crc32_filter(value: str) -> str:
    """Jinja filter returning the checksum of a string, e.g. for CSP hashes."""
    if not isinstance(value, str):
        raise TypeError("crc32 filter requires a string value")
    return crc32_checksum(value.encode("utf-8"))


class BuildBindings:
    """Callbacks bound into the template environment.

    This is the only handle templates have on the build. Mutating calls go
    to the page registry; lookups go to the static resolver and the content
    index.

    Attributes:
        registry: Page registry of the current build.
        resolver: Static file resolver.
        index: Parsed content documents.
    """

    def __init__(self, registry: PageRegistry, resolver: AssetResolver, index: ContentIndex):
        self.registry = registry
        self.resolver = resolver
        self.index = index

    def add_page(
        self,
        path: str = "/",
        template: str = "index.html",
        title: str = "",
        description: str = "",
        page_num: int = 0,
    ) -> str:
        """Declare a page to be rendered later in the build.

        Returns:
            An empty string, so the call can be used in an expression tag.
        """
        self.registry.register(path, template, title, description, page_num)
        return ""

    def add_feed(self, path: str, type: str) -> str:
        """Declare a feed and return its path."""
        if type not in FEED_TYPES:
            raise ValueError(f"unknown feed type {type!r}; expected one of {FEED_TYPES}")
        return self.registry.register_feed(path, type).path

    def get_static_file(self, path: str) -> str:
        """Return the cache-busted URL of a static file.

        Raises:
            AssetNotFoundError: If no static source provides the file.
        """
        return self.resolver.resolve(path).public_url

    def get_page_by_path(self, path: str) -> ContentDocument | None:
        return self.index.get_by_path(path)

    def get_page_by_pid(self, pid: str) -> ContentDocument | None:
        return self.index.get(pid)

    def get_pages_by_tag(self, tag: str = "", limit: int = 3, offset: int = 0) -> DocumentSlice:
        return self.index.by_tag(tag, limit=limit, offset=offset)

    def get_similar(self, pid: str, limit: int = 3) -> list[str]:
        return self.index.similar(pid, limit=limit)

    def get_tags(self) -> list[str]:
        return self.index.tags()

    def render_content(self, pid: str) -> Markup:
        """Render the body of the document ``pid`` to HTML."""
        document = self.index.get(pid)
        if document is None:
            raise KeyError(f"no content document with pid {pid!r}")
        return Markup(document.render())

    def code(self, source: str, lang: str | None = None) -> Markup:
        return Markup(highlight_code(source, lang))

    def as_globals(self) -> dict[str, Any]:
        return {
            "add_page": self.add_page,
            "add_feed": self.add_feed,
            "get_static_file": self.get_static_file,
            "get_page_by_path": self.get_page_by_path,
            "get_page_by_pid": self.get_page_by_pid,
            "get_pages_by_tag": self.get_pages_by_tag,
            "get_similar": self.get_similar,
            "get_tags": self.get_tags,
            "render_content": self.render_content,
            "code": self.code,
        }


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        config: Project configuration.
        bindings: Callbacks exposed to templates.
        env: Jinja2 environment loading from the template directory.
    """

    def __init__(self, config: Config, bindings: BuildBindings):
        self.config = config
        self.bindings = bindings
        self.env = Environment(
            loader=FileSystemLoader(str(config.template)),
            autoescape=select_autoescape(["html", "xml"]),
            enable_async=False,
        )
        self.env.globals.update(bindings.as_globals())
        self.env.filters["crc32"] = crc32_filter

    def has_template(self, name: str) -> bool:
        return name in self.env.list_templates()

    def context_for(self, registration: PageRegistration) -> dict[str, Any]:
        return {
            "config": self.config.as_template_context(),
            "template_config": self.config.template_config,
            "title": registration.title,
            "description": registration.description,
            "path": registration.path,
            "page_num": registration.page_num,
        }

    def render(self, registration: PageRegistration) -> str:
        """Render a registered page.

        Args:
            registration: The page to render.

        Returns:
            Rendered HTML string.
        """
        logger.debug("rendering %s with %s", registration.path, registration.template_name)
        template = self.env.get_template(registration.template_name)
        return template.render(**self.context_for(registration))

