from pathlib import Path

import pytest

CONFIG_YAML = """\
content_path: content
static_source_path: static
dist_path: dist
template: templates
domain: https://example.com
title: Example
description: An example site
"""

INDEX_TEMPLATE = """\
<html><head><link rel="stylesheet" href="{{ get_static_file('/css/main.css') }}"></head>
<body><h1>{{ title }}</h1>
{% for page in get_pages_by_tag('', limit=10).documents %}
{{ add_page(page.url_path, 'article.html', page.title) }}<a href="{{ page.url_path }}">{{ page.title }}</a>
{% endfor %}
</body></html>
"""

ARTICLE_TEMPLATE = """\
{% set page = get_page_by_path(path) %}<article><h1>{{ title }}</h1>{{ render_content(page.pid) }}</article>
"""


def write_post(content_dir: Path, name: str, title: str, date: str, body: str = "Hello.", **extra):
    lines = ["---", f"title: {title}", f"date: {date}"]
    for key, value in extra.items():
        lines.append(f"{key}: {value}")
    lines.append("---")
    path = content_dir / f"{name}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n\n" + body + "\n", encoding="utf-8")
    return path


def create_project(root: Path, config: str = CONFIG_YAML) -> Path:
    (root / "content").mkdir(parents=True)
    (root / "static" / "css").mkdir(parents=True)
    (root / "templates").mkdir()
    (root / "config.yaml").write_text(config, encoding="utf-8")
    (root / "static" / "css" / "main.css").write_text("body { color: red; }", encoding="utf-8")
    (root / "templates" / "index.html").write_text(INDEX_TEMPLATE, encoding="utf-8")
    (root / "templates" / "article.html").write_text(ARTICLE_TEMPLATE, encoding="utf-8")
    write_post(root / "content", "first", "First post", "2024-01-01", "# Intro\n\nFirst body.")
    write_post(root / "content", "second", "Second post", "2024-02-01", "Second body.", tags="[news]")
    return root


@pytest.fixture
def project(tmp_path):
    return create_project(tmp_path / "site")


@pytest.fixture
def png_bytes():
    from io import BytesIO

    from PIL import Image

    buffer = BytesIO()
    Image.new("RGB", (2, 2), color="red").save(buffer, format="PNG")
    return buffer.getvalue()
