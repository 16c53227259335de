"""Markup and URL helpers shared by the renderer, feeds and sitemap.

Functions:
    escape_html: Escape text for HTML and XML output.
    join_root_url: Turn a root-relative path into an absolute site URL.
"""

from __future__ import annotations

_ESCAPES = (("&", "&amp;"), ("<", "&lt;"), (">", "&gt;"), ('"', "&quot;"))


def escape_html(text: str) -> str:
    """Escape ``&``, ``<``, ``>`` and ``"`` as entities.

    The result is safe in element content and in double-quoted attributes of
    both HTML pages and XML feeds.

    Examples:
        >>> escape_html('Tom & "Jerry"')
        'Tom &amp; &quot;Jerry&quot;'
    """
    for char, entity in _ESCAPES:
        text = text.replace(char, entity)
    return text


def join_root_url(domain: str, path: str) -> str:
    """Make ``path`` absolute against the site ``domain``.

    Absolute and protocol-relative URLs are returned unchanged; an empty
    domain leaves the path root-relative.

    Examples:
        >>> join_root_url("https://example.com/", "posts/a.html")
        'https://example.com/posts/a.html'

        >>> join_root_url("https://example.com", "https://cdn.example.com/a.png")
        'https://cdn.example.com/a.png'
    """
    if path.startswith(("http://", "https://", "//")):
        return path
    suffix = path if path.startswith("/") else f"/{path}"
    if not domain:
        return suffix
    return domain.rstrip("/") + suffix
