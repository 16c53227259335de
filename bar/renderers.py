"""Markdown parsing and rendering for BAR.

Content is parsed with mistune into a token tree (the document tree). Content
transforms work on that tree; HTML is produced from it only when a template
asks for a document's body.

Key functions:
- parse_markdown: Parse Markdown text into a token tree.
- render_tokens: Render a token tree to HTML.
- highlight_code: Pygments syntax highlighting, shared with the ``code`` template helper.
- iter_images: Walk the image tokens of a tree.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Any

import mistune
from mistune.core import BlockState
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .html_utils import escape_html

Token = dict[str, Any]

MARKDOWN_PLUGINS = ["strikethrough", "table", "url"]


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text.

    Returns:
        URL-friendly slug suitable for anchor links.
    """
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


def highlight_code(code: str, lang: str | None) -> str:
    """Highlight a code block with Pygments.

    Unknown or missing languages fall back to an escaped ``<pre>`` block.

    Args:
        code: Source code.
        lang: Language identifier (e.g. 'python').

    Returns:
        HTML string.
    """
    if lang:
        try:
            lexer = get_lexer_by_name(lang, stripall=True)
        except ClassNotFound:
            lexer = None
        if lexer is not None:
            formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
            return highlight(code, lexer, formatter)
    lang_class = f' class="language-{escape_html(lang)}"' if lang else ""
    return f"<pre><code{lang_class}>{escape_html(code)}</code></pre>\n"


class DocumentRenderer(mistune.HTMLRenderer):
    """HTML renderer with heading anchors and syntax highlighting."""

    def __init__(self) -> None:
        super().__init__(escape=False)
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        """Render a heading with an auto-generated, de-duplicated ID."""
        base_id = _generate_heading_id(text)
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def image(self, text: str, url: str, title: str | None = None) -> str:
        """Render an image lazily loaded, keeping generated alt text."""
        html = super().image(text, url, title)
        return html.replace("<img ", '<img loading="lazy" ', 1)

    def block_code(self, code: str, info: str | None = None) -> str:
        lang = info.split()[0] if info and info.strip() else None
        return highlight_code(code, lang)


def parse_markdown(text: str) -> list[Token]:
    """Parse Markdown text into a mistune token tree.

    Args:
        text: Markdown source (without frontmatter).

    Returns:
        List of block tokens; inline content is already parsed into ``children``.
    """
    parser = mistune.create_markdown(renderer=None, plugins=MARKDOWN_PLUGINS)
    return parser(text)


def render_tokens(tokens: list[Token]) -> str:
    """Render a token tree produced by ``parse_markdown`` to HTML.

    Args:
        tokens: Token tree, possibly rewritten by content transforms.

    Returns:
        Rendered HTML.
    """
    renderer = DocumentRenderer()
    # Building a Markdown instance registers the plugins' render methods.
    mistune.create_markdown(renderer=renderer, plugins=MARKDOWN_PLUGINS)
    return renderer(tokens, BlockState())


def iter_images(tokens: list[Token]) -> Iterator[Token]:
    """Yield every image token of a tree, depth first."""
    for token in tokens:
        if token.get("type") == "image":
            yield token
        children = token.get("children")
        if isinstance(children, list):
            yield from iter_images(children)


def token_text(token: Token) -> str:
    """Return the concatenated plain text of a token's children."""
    parts = []
    for child in token.get("children") or []:
        if "raw" in child:
            parts.append(child["raw"])
        else:
            parts.append(token_text(child))
    return "".join(parts)

