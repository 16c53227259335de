"""Site building functionality for BAR.

This module contains the build orchestrator. A build runs these phases in
order:

1. load and validate ``config.yaml`` (nothing on disk is touched yet);
2. construct the static source overlay;
3. discover and parse content documents;
4. run content transforms (alt text generation) on a worker pool;
5. render pages in a fixed-point loop over the page registry;
6. write the output: static files, pages, feeds and the sitemap.

Every failure surfaces as ``BuildError`` carrying the offending file.

Key classes:
- BuildContext: Per-build state shared by the phases.
- BuildOrchestrator: Runs the phases.
- BuildResult: Summary of a finished build.

Key functions:
- build_site: Build a project with default collaborators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx
from jinja2 import TemplateSyntaxError

from .asset_resolver import NOT_FOUND_TEMPLATE, AssetResolver
from .cache import ALT_TEXT, REMOTE_IMAGES, ArtifactCache
from .collections import ContentIndex
from .config import CONFIG_FILENAME, Config, ConfigError, load_config
from .content import ContentDocument, ContentError, ContentProcessor
from .feeds import FeedChannel, SitemapGenerator, collect_feed_items, generator_for
from .html_utils import join_root_url
from .processors import (
    AltTextGenerator,
    ModelInferenceError,
    RemoteImageFetcher,
    load_captioner,
    run_transforms,
)
from .protocols import Captioner, ContentTransform
from .registry import (
    FeedRegistration,
    PageRegistration,
    PageRegistrationConflict,
    PageRegistry,
    RenderLoopError,
)
from .templates import BuildBindings, TemplateEngine
from .utils import ensure_clean_dir, page_output_path, write_output

logger = logging.getLogger(__name__)

ENTRY_PATH = "/"
ENTRY_TEMPLATE = "index.html"
NOT_FOUND_PATH = f"/{NOT_FOUND_TEMPLATE}"


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


@dataclass
class BuildContext:
    """State of one build.

    Attributes:
        config: Validated configuration.
        resolver: Static file overlay.
        registry: Pages and feeds declared so far.
        remote_images: Cache of downloaded images.
        alt_text: Cache of generated captions.
    """

    config: Config
    resolver: AssetResolver
    registry: PageRegistry
    remote_images: ArtifactCache
    alt_text: ArtifactCache

    @classmethod
    def create(cls, config: Config) -> BuildContext:
        return cls(
            config=config,
            resolver=AssetResolver.from_config(config),
            registry=PageRegistry(),
            remote_images=ArtifactCache.for_project(config.project_root, REMOTE_IMAGES),
            alt_text=ArtifactCache.for_project(config.project_root, ALT_TEXT),
        )


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        output_dir: Directory where the site was built.
        pages: Rendered page registrations, in registration order.
        feeds: Written feeds.
        static_files: Copied static files.
        documents: Content documents after transforms.
        passes: Number of render passes the registry needed to settle.
    """

    output_dir: Path
    pages: list[PageRegistration]
    feeds: list[FeedRegistration] = field(default_factory=list)
    static_files: list[Path] = field(default_factory=list)
    documents: list[ContentDocument] = field(default_factory=list)
    passes: int = 0


class BuildOrchestrator:
    """Runs a complete build of one project.

    Attributes:
        project_root: Directory containing ``config.yaml``.
        captioner: Caption model to use instead of the configured one.
        http_client: HTTP client for remote images; one is created when omitted.
    """

    def __init__(
        self,
        project_root: Path,
        captioner: Captioner | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.project_root = project_root
        self.captioner = captioner
        self.http_client = http_client

    def run(self) -> BuildResult:
        """Build the site.

        Returns:
            Summary of the build.

        Raises:
            BuildError: If any phase fails.
        """
        try:
            config = load_config(self.project_root)
        except ConfigError as exc:
            raise BuildError(exc.config_path, exc.message, exc) from exc

        context = BuildContext.create(config)
        documents = self._load_content(config)
        documents = self._transform(context, documents)

        index = ContentIndex(documents)
        engine = TemplateEngine(config, BuildBindings(context.registry, context.resolver, index))
        rendered, passes = self._render(context, engine)
        written_feeds, static_files = self._finalize(context, rendered, documents)

        pages = [p for p in context.registry.pages() if p.path in rendered]
        logger.info(
            "built %d pages and %d feeds in %d passes into %s",
            len(pages),
            len(written_feeds),
            passes,
            config.dist_path,
        )
        return BuildResult(
            output_dir=config.dist_path,
            pages=pages,
            feeds=written_feeds,
            static_files=static_files,
            documents=documents,
            passes=passes,
        )

    def _load_content(self, config: Config) -> list[ContentDocument]:
        try:
            return ContentProcessor(config.content_path).load()
        except ContentError as exc:
            raise BuildError(exc.source_path, exc.message, exc) from exc

    def _transforms(
        self, context: BuildContext
    ) -> tuple[list[ContentTransform], RemoteImageFetcher | None]:
        settings = context.config.generate_alt_text
        if settings is None:
            return [], None
        if self.captioner is None and settings.model is None:
            logger.warning("generate_alt_text has no model configured, captions are disabled")
        try:
            captioner = self.captioner or load_captioner(settings.model)
        except ModelInferenceError as exc:
            raise BuildError(
                context.config.project_root / CONFIG_FILENAME, str(exc), exc
            ) from exc
        fetcher = RemoteImageFetcher(context.remote_images, client=self.http_client)
        generator = AltTextGenerator(
            captioner,
            settings.prompt,
            settings.temperature,
            context.alt_text,
            fetcher,
            context.resolver,
        )
        return [generator], fetcher

    def _transform(
        self, context: BuildContext, documents: list[ContentDocument]
    ) -> list[ContentDocument]:
        transforms, fetcher = self._transforms(context)
        if not transforms:
            return documents
        logger.info("running content transforms on %d documents", len(documents))
        try:
            return run_transforms(documents, transforms, context.config.max_workers)
        finally:
            if fetcher is not None:
                fetcher.close()

    def _render(
        self, context: BuildContext, engine: TemplateEngine
    ) -> tuple[dict[str, str], int]:
        """Render registered pages until no new pages are declared.

        The entry page (and ``404.html`` when the template has one) seeds the
        registry; each pass renders every page registered since the previous
        pass.

        Returns:
            Rendered HTML keyed by page path, and the number of passes.

        Raises:
            BuildError: If a template fails or the loop does not settle.
        """
        registry = context.registry
        config = context.config
        try:
            for feed in config.feeds:
                registry.register_feed(feed.path, feed.type)
        except PageRegistrationConflict as exc:
            raise BuildError(config.project_root / CONFIG_FILENAME, str(exc), exc) from exc
        registry.register(ENTRY_PATH, ENTRY_TEMPLATE, config.title, config.description)
        if engine.has_template(NOT_FOUND_TEMPLATE):
            registry.register(NOT_FOUND_PATH, NOT_FOUND_TEMPLATE, config.title, config.description)

        rendered: dict[str, str] = {}
        passes = 0
        while registry.has_pending():
            if passes >= config.max_render_passes:
                exc = RenderLoopError(config.max_render_passes, registry.drain_pending())
                raise BuildError(config.template, str(exc), exc) from exc
            passes += 1
            batch = registry.drain_pending()
            logger.debug("render pass %d: %d pages", passes, len(batch))
            for path in batch:
                rendered[path] = self._render_page(engine, registry.lookup(path))
        registry.freeze()
        return rendered, passes

    def _render_page(self, engine: TemplateEngine, registration: PageRegistration) -> str:
        template_path = engine.config.template / registration.template_name
        try:
            return engine.render(registration)
        except TemplateSyntaxError as exc:
            raise BuildError(
                Path(exc.filename) if exc.filename else template_path,
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except Exception as exc:
            raise BuildError(
                template_path,
                f"rendering {registration.path}: {_format_error_message(exc)}",
                exc,
            ) from exc

    def _finalize(
        self,
        context: BuildContext,
        rendered: dict[str, str],
        documents: list[ContentDocument],
    ) -> tuple[list[FeedRegistration], list[Path]]:
        """Write the site into the dist directory.

        The dist directory is emptied first. A failed write leaves it
        partially written.
        """
        config = context.config
        dist = config.dist_path
        try:
            ensure_clean_dir(dist)
            static_files = context.resolver.apply(dist)
            for path, html in rendered.items():
                write_output(page_output_path(dist, path), html)
            logger.info("wrote %d pages", len(rendered))
            feeds = self._write_feeds(context, rendered, documents)
            page_paths = [p for p in rendered if p != NOT_FOUND_PATH]
            by_path = {d.url_path: d for d in documents}
            sitemap = SitemapGenerator()
            write_output(
                dist / sitemap.filename,
                sitemap.generate(config.domain, page_paths, by_path),
            )
        except OSError as exc:
            raise BuildError(Path(exc.filename) if exc.filename else dist, str(exc), exc) from exc
        return feeds, static_files

    def _write_feeds(
        self,
        context: BuildContext,
        rendered: dict[str, str],
        documents: list[ContentDocument],
    ) -> list[FeedRegistration]:
        config = context.config
        feeds = context.registry.feeds()
        if not feeds:
            return []
        items = collect_feed_items(documents, rendered, config.domain)
        icon = self._site_url(context, "icon.png")
        favicon = self._site_url(context, "favicon.ico")
        for feed in feeds:
            channel = FeedChannel(
                title=config.title,
                description=config.description,
                home_page_url=config.domain,
                feed_url=join_root_url(config.domain, feed.path),
                icon=icon,
                favicon=favicon,
            )
            content = generator_for(feed.kind).generate(channel, items)
            write_output(page_output_path(config.dist_path, feed.path), content)
            logger.debug("wrote %s feed %s with %d items", feed.kind, feed.path, len(items))
        return feeds

    @staticmethod
    def _site_url(context: BuildContext, logical_path: str) -> str | None:
        if not context.resolver.exists(logical_path):
            return None
        return join_root_url(context.config.domain, logical_path)


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TemplateNotFound":
        return f"Template not found: {error_msg}"
    return f"{error_type}: {error_msg}"


def build_site(
    project_root: Path,
    captioner: Captioner | None = None,
    http_client: httpx.Client | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        captioner: Optional caption model overriding the configured one.
        http_client: Optional HTTP client for remote images.

    Returns:
        BuildResult describing the written site.
    """
    return BuildOrchestrator(project_root, captioner=captioner, http_client=http_client).run()
