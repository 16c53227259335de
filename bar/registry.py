"""Page registry for BAR.

Templates declare the pages of the site while they render: the index page
registers pagination pages, list pages register article pages, and so on.
The registry is the single store of those declarations. It also tracks which
paths have been registered but not rendered yet, which lets the build drive
rendering as an explicit fixed-point loop instead of recursive renders.

Key classes:
- PageRegistration: Metadata of one declared page.
- FeedRegistration: A feed declared by a template or the configuration.
- PageRegistry: The path -> registration store with its pending-work queue.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from .utils import normalize_page_path

logger = logging.getLogger(__name__)


class PageRegistrationConflict(Exception):
    """Error raised when a path is registered twice with different metadata.

    Attributes:
        path: The conflicting page path.
        existing: The registration already in the registry.
        incoming: The rejected registration.
    """

    def __init__(self, path: str, existing: object, incoming: object):
        self.path = path
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"page '{path}' already registered as {existing!r}; refusing {incoming!r}"
        )


class PageNotFoundError(KeyError):
    """Error raised when a path is not in the registry."""


class RegistryFrozenError(RuntimeError):
    """Error raised when registering after the render loop has finished."""


class RenderLoopError(RuntimeError):
    """Error raised when rendering keeps discovering new pages past the pass limit.

    Attributes:
        max_passes: The configured pass limit.
        pending: Paths still waiting to be rendered.
    """

    def __init__(self, max_passes: int, pending: list[str]):
        self.max_passes = max_passes
        self.pending = pending
        preview = ", ".join(pending[:5])
        super().__init__(
            f"render loop did not settle after {max_passes} passes; "
            f"{len(pending)} pages still pending ({preview})"
        )


@dataclass(frozen=True)
class PageRegistration:
    """A page declared during rendering.

    Attributes:
        path: Normalised output path, the registry key.
        template_name: Template rendered for the page.
        title: Page title passed to the template.
        description: Page description passed to the template.
        page_num: Page number for paginated listings.
    """

    path: str
    template_name: str
    title: str = ""
    description: str = ""
    page_num: int = 0


@dataclass(frozen=True)
class FeedRegistration:
    """A feed declared by a template or by configuration.

    Attributes:
        path: Normalised output path.
        kind: Feed format, ``json`` or ``rss``.
    """

    path: str
    kind: str


class PageRegistry:
    """Authoritative store of page and feed declarations for one build.

    Registering a path that is already known with identical metadata is a
    no-op, and the path is not queued again. Registering it with different
    metadata raises ``PageRegistrationConflict``.

    All mutation goes through a reentrant lock, so templates may register
    pages from nested renders and from worker threads.
    """

    def __init__(self) -> None:
        self._pages: dict[str, PageRegistration] = {}
        self._feeds: dict[str, FeedRegistration] = {}
        # dict keeps insertion order, so pending paths drain deterministically
        self._pending: dict[str, None] = {}
        self._lock = threading.RLock()
        self._frozen = False

    def register(
        self,
        path: str,
        template_name: str,
        title: str = "",
        description: str = "",
        page_num: int = 0,
    ) -> PageRegistration:
        """Declare a page.

        Args:
            path: Output path; normalised before use.
            template_name: Template to render for the page.
            title: Page title.
            description: Page description.
            page_num: Page number for paginated listings.

        Returns:
            The registration stored for the path.

        Raises:
            PageRegistrationConflict: If the path is known with other metadata.
            RegistryFrozenError: If the registry no longer accepts pages.
        """
        registration = PageRegistration(
            path=normalize_page_path(path),
            template_name=template_name,
            title=title,
            description=description,
            page_num=int(page_num),
        )
        with self._lock:
            self._check_open(registration.path)
            if registration.path in self._feeds:
                raise PageRegistrationConflict(
                    registration.path, self._feeds[registration.path], registration
                )
            existing = self._pages.get(registration.path)
            if existing is not None:
                if existing != registration:
                    raise PageRegistrationConflict(registration.path, existing, registration)
                return existing
            self._pages[registration.path] = registration
            self._pending[registration.path] = None
            logger.debug("registered page %s (%s)", registration.path, template_name)
            return registration

    def register_feed(self, path: str, kind: str) -> FeedRegistration:
        """Declare a feed; same duplicate policy as pages."""
        feed = FeedRegistration(path=normalize_page_path(path), kind=kind)
        with self._lock:
            self._check_open(feed.path)
            existing = self._feeds.get(feed.path)
            if existing is not None and existing != feed:
                raise PageRegistrationConflict(feed.path, existing, feed)
            if feed.path in self._pages:
                raise PageRegistrationConflict(feed.path, self._pages[feed.path], feed)
            self._feeds[feed.path] = feed
            return feed

    def _check_open(self, path: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(f"cannot register '{path}': rendering has finished")

    def lookup(self, path: str) -> PageRegistration:
        """Return the registration for ``path``.

        Raises:
            PageNotFoundError: If the path was never registered.
        """
        key = normalize_page_path(path)
        with self._lock:
            try:
                return self._pages[key]
            except KeyError:
                raise PageNotFoundError(key) from None

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        with self._lock:
            return normalize_page_path(path) in self._pages

    def __len__(self) -> int:
        with self._lock:
            return len(self._pages)

    def drain_pending(self) -> list[str]:
        """Return the paths registered since the last drain and clear them."""
        with self._lock:
            drained = list(self._pending)
            self._pending.clear()
            return drained

    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def freeze(self) -> None:
        """Stop accepting registrations; called once the render loop ends."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def pages(self) -> list[PageRegistration]:
        """Return all page registrations in registration order."""
        with self._lock:
            return list(self._pages.values())

    def feeds(self) -> list[FeedRegistration]:
        """Return all feed registrations in registration order."""
        with self._lock:
            return list(self._feeds.values())
