from datetime import datetime, timezone
from pathlib import Path

import pytest

from bar.content import (
    ContentDocument,
    ContentError,
    ContentProcessor,
    FileContentLoader,
    parse_document,
    pid_for,
)
from bar.extractors import MetadataError, extract_frontmatter, extract_metadata, parse_date
from bar.renderers import iter_images, parse_markdown, render_tokens, token_text

from conftest import write_post


def test_extract_frontmatter_and_metadata():
    text = "---\ntitle: Hello\ndate: 2024-03-01\ntags: [a, b]\npreview: Short\n---\n\nBody"
    frontmatter, body = extract_frontmatter(text)
    assert body.strip() == "Body"

    metadata = extract_metadata(frontmatter)
    assert metadata.title == "Hello"
    assert metadata.date == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert metadata.tags == ("a", "b")
    assert metadata.preview == "Short"
    assert metadata.image is None
    assert metadata.is_draft is False


@pytest.mark.parametrize(
    "text",
    [
        "no frontmatter here",
        "---\n- a list\n---\nBody",
        "---\ntitle: [unclosed\n---\nBody",
    ],
)
def test_extract_frontmatter_rejects_bad_blocks(text):
    with pytest.raises(MetadataError):
        extract_frontmatter(text)


def test_extract_metadata_requires_title_and_date():
    with pytest.raises(MetadataError, match="title"):
        extract_metadata({"date": "2024-01-01"})
    with pytest.raises(MetadataError, match="date"):
        extract_metadata({"title": "x"})
    with pytest.raises(MetadataError, match="tags"):
        extract_metadata({"title": "x", "date": "2024-01-01", "tags": "news"})


def test_parse_date_variants():
    assert parse_date("2024-01-02T10:00:00+02:00").utcoffset().total_seconds() == 7200
    assert parse_date("2024-01-02T10:00:00").tzinfo == timezone.utc
    assert parse_date(datetime(2024, 1, 2)).tzinfo == timezone.utc
    with pytest.raises(MetadataError):
        parse_date("yesterday")
    with pytest.raises(MetadataError):
        parse_date(42)


def test_pid_for_and_url_path(tmp_path):
    content = tmp_path / "content"
    path = write_post(content, "posts/hello", "Hello", "2024-01-01")
    assert pid_for(path, content) == "/posts/hello"

    document = parse_document(path, content)
    assert document.pid == "/posts/hello"
    assert document.url_path == "/posts/hello.html"
    assert document.title == "Hello"
    assert document.source_path == path


def test_parse_document_wraps_metadata_errors(tmp_path):
    path = tmp_path / "broken.md"
    path.write_text("---\ntitle: Broken\n---\n\nNo date.", encoding="utf-8")
    with pytest.raises(ContentError) as excinfo:
        parse_document(path, tmp_path)
    assert excinfo.value.source_path == path
    assert "date" in excinfo.value.message


def test_loader_skips_hidden_and_non_markdown(tmp_path):
    content = tmp_path / "content"
    write_post(content, "b", "B", "2024-01-01")
    write_post(content, "a/nested", "Nested", "2024-01-01")
    write_post(content, ".drafts/hidden", "Hidden", "2024-01-01")
    (content / "notes.txt").write_text("ignored", encoding="utf-8")

    files = FileContentLoader(content).iter_files()
    assert [f.relative_to(content).as_posix() for f in files] == ["a/nested.md", "b.md"]


def test_processor_loads_all_or_fails(tmp_path):
    content = tmp_path / "content"
    write_post(content, "one", "One", "2024-01-01")
    write_post(content, "two", "Two", "2024-01-02")
    documents = ContentProcessor(content).load()
    assert [d.pid for d in documents] == ["/one", "/two"]

    (content / "three.md").write_text("# no frontmatter", encoding="utf-8")
    with pytest.raises(ContentError) as excinfo:
        ContentProcessor(content).load()
    assert excinfo.value.source_path == content / "three.md"

    with pytest.raises(ContentError):
        ContentProcessor(tmp_path / "missing").load()


def test_render_headings_code_and_images():
    tokens = parse_markdown(
        "# Hello World\n\n## Hello World\n\n![](/img/a.png)\n\n```python\nprint('x')\n```\n"
    )
    html = render_tokens(tokens)
    assert '<h1 id="hello-world">Hello World</h1>' in html
    assert '<h2 id="hello-world-1">Hello World</h2>' in html
    assert 'loading="lazy"' in html
    assert 'src="/img/a.png"' in html
    assert 'class="highlight"' in html


def test_unknown_code_language_is_escaped():
    html = render_tokens(parse_markdown("```nosuchlang\n<b>x</b>\n```\n"))
    assert '<pre><code class="language-nosuchlang">' in html
    assert "&lt;b&gt;x&lt;/b&gt;" in html


def test_iter_images_finds_nested_images():
    tokens = parse_markdown("Text ![alt one](a.png) and ![](b.png)\n\n* ![](c.png)\n")
    images = list(iter_images(tokens))
    assert [img["attrs"]["url"] for img in images] == ["a.png", "b.png", "c.png"]
    assert [token_text(img) for img in images] == ["alt one", "", ""]


def test_with_tokens_keeps_original_untouched(tmp_path):
    path = write_post(tmp_path, "doc", "Doc", "2024-01-01", "![](a.png)")
    document = parse_document(path, tmp_path)
    tokens = parse_markdown("![a red square](a.png)")
    updated = document.with_tokens(tokens)

    assert isinstance(updated, ContentDocument)
    assert 'alt="a red square"' in updated.render()
    assert 'alt=""' in document.render()
    assert updated.title == "Doc"
    assert Path(updated.source_path) == path
