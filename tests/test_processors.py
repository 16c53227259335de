import sys
import threading
import types

import httpx
import pytest

from bar.asset_resolver import AssetResolver, build_static_sources
from bar.cache import ALT_TEXT, REMOTE_IMAGES, ArtifactCache
from bar.content import parse_document
from bar.processors import (
    AltTextGenerator,
    ImageLoadError,
    ModelInferenceError,
    NetworkError,
    NullCaptioner,
    RemoteImageFetcher,
    load_captioner,
    run_transforms,
)
from bar.renderers import iter_images, token_text

from conftest import write_post


class CountingCaptioner:
    model_id = "counting-v1"

    def __init__(self, text="a red square"):
        self.text = text
        self.calls = []
        self._active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def caption(self, image_bytes, prompt, temperature):
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            self.calls.append((image_bytes, prompt, temperature))
            return self.text
        finally:
            with self._lock:
                self._active -= 1


class FailingCaptioner:
    def caption(self, image_bytes, prompt, temperature):
        raise RuntimeError("out of memory")


def image_transport(png_bytes, hits):
    def handler(request):
        hits.append(str(request.url))
        if request.url.path == "/missing.png":
            return httpx.Response(404)
        if request.url.path == "/page.html":
            return httpx.Response(200, content=b"<html></html>")
        return httpx.Response(200, content=png_bytes, headers={"content-type": "image/png"})

    return httpx.MockTransport(handler)


def make_generator(root, captioner, png_bytes, hits, prompt="Describe", temperature=0.1):
    (root / "static").mkdir(parents=True, exist_ok=True)
    (root / "templates").mkdir(parents=True, exist_ok=True)
    resolver = AssetResolver(
        build_static_sources(root / "static", root / "templates"), ["png"]
    )
    client = httpx.Client(transport=image_transport(png_bytes, hits))
    fetcher = RemoteImageFetcher(ArtifactCache.for_project(root, REMOTE_IMAGES), client=client)
    return AltTextGenerator(
        captioner,
        prompt,
        temperature,
        ArtifactCache.for_project(root, ALT_TEXT),
        fetcher,
        resolver,
    )


def alts(document):
    return [token_text(img) for img in iter_images(document.tokens)]


def test_null_captioner_and_load_captioner(monkeypatch):
    assert isinstance(load_captioner(None), NullCaptioner)
    assert NullCaptioner().caption(b"", "p", 0.1) == ""

    module = types.ModuleType("fake_captions")
    created = []

    def create():
        created.append(1)
        return CountingCaptioner()

    module.create = create
    module.broken = lambda: object()
    monkeypatch.setitem(sys.modules, "fake_captions", module)

    captioner = load_captioner("fake_captions:create")
    assert isinstance(captioner, CountingCaptioner)
    assert created == [1]

    with pytest.raises(ModelInferenceError):
        load_captioner("fake_captions:missing")
    with pytest.raises(ModelInferenceError):
        load_captioner("no_such_module_anywhere:create")
    with pytest.raises(ModelInferenceError):
        load_captioner("fake_captions:broken")


def test_remote_fetcher_caches_and_verifies(tmp_path, png_bytes):
    hits = []
    cache = ArtifactCache.for_project(tmp_path, REMOTE_IMAGES)
    client = httpx.Client(transport=image_transport(png_bytes, hits))
    fetcher = RemoteImageFetcher(cache, client=client)

    assert fetcher.fetch("https://img.example.com/a.png") == png_bytes
    assert fetcher.fetch("https://img.example.com/a.png") == png_bytes
    assert hits == ["https://img.example.com/a.png"]

    with pytest.raises(NetworkError):
        fetcher.fetch("https://img.example.com/missing.png")
    with pytest.raises(ImageLoadError):
        fetcher.fetch("https://img.example.com/page.html")

    # a new fetcher over the same directory is served from disk
    restarted = RemoteImageFetcher(
        ArtifactCache.for_project(tmp_path, REMOTE_IMAGES),
        client=httpx.Client(transport=image_transport(png_bytes, hits)),
    )
    assert restarted.fetch("https://img.example.com/a.png") == png_bytes
    assert hits.count("https://img.example.com/a.png") == 1


def test_fetcher_owns_default_client(tmp_path):
    fetcher = RemoteImageFetcher(ArtifactCache(tmp_path, REMOTE_IMAGES))
    assert fetcher.client.headers["User-Agent"].startswith("bar/")
    fetcher.close()
    assert fetcher.client.is_closed


def test_alt_text_fills_only_empty_alts(tmp_path, png_bytes):
    root = tmp_path / "site"
    (root / "content").mkdir(parents=True)
    (root / "content" / "local.png").write_bytes(png_bytes)
    path = write_post(
        root / "content",
        "post",
        "Post",
        "2024-01-01",
        "![](local.png)\n\n![kept](local.png)\n\n![](https://img.example.com/a.png)",
    )
    document = parse_document(path, root / "content")
    captioner = CountingCaptioner()
    hits = []
    generator = make_generator(root, captioner, png_bytes, hits)

    updated = generator(document)
    assert alts(updated) == ["a red square", "kept", "a red square"]
    # the input document is not mutated
    assert alts(document) == ["", "kept", ""]
    assert 'alt="a red square"' in updated.render()
    # identical bytes, prompt and temperature share one caption
    assert len(captioner.calls) == 1
    assert captioner.calls[0][1:] == ("Describe", 0.1)


def test_alt_text_is_reused_across_restarts(tmp_path, png_bytes):
    root = tmp_path / "site"
    (root / "static" / "img").mkdir(parents=True)
    (root / "static" / "img" / "a.png").write_bytes(png_bytes)
    path = write_post(root / "content", "post", "Post", "2024-01-01", "![](/img/a.png)")
    document = parse_document(path, root / "content")

    first = CountingCaptioner()
    assert alts(make_generator(root, first, png_bytes, [])(document)) == ["a red square"]
    assert len(first.calls) == 1

    second = CountingCaptioner(text="something else")
    assert alts(make_generator(root, second, png_bytes, [])(document)) == ["a red square"]
    assert second.calls == []


def test_alt_text_key_includes_prompt_and_temperature(tmp_path, png_bytes):
    root = tmp_path / "site"
    (root / "static").mkdir(parents=True)
    (root / "static" / "a.png").write_bytes(png_bytes)
    path = write_post(root / "content", "post", "Post", "2024-01-01", "![](/a.png)")
    document = parse_document(path, root / "content")

    captioner = CountingCaptioner()
    make_generator(root, captioner, png_bytes, [], prompt="One")(document)
    make_generator(root, captioner, png_bytes, [], prompt="Two")(document)
    make_generator(root, captioner, png_bytes, [], prompt="Two", temperature=0.5)(document)
    make_generator(root, captioner, png_bytes, [], prompt="Two", temperature=0.5)(document)
    assert [(c[1], c[2]) for c in captioner.calls] == [("One", 0.1), ("Two", 0.1), ("Two", 0.5)]


def test_caption_failures_are_skipped(tmp_path, png_bytes, caplog):
    root = tmp_path / "site"
    path = write_post(
        root / "content",
        "post",
        "Post",
        "2024-01-01",
        "![](missing-local.png)\n\n![](https://img.example.com/missing.png)\n\n![](/nope.png)",
    )
    document = parse_document(path, root / "content")
    generator = make_generator(root, CountingCaptioner(), png_bytes, [])
    with caplog.at_level("WARNING", logger="bar.processors"):
        updated = generator(document)
    assert updated is document
    assert caplog.text.count("without alt text") == 3


def test_model_errors_and_empty_captions_are_skipped(tmp_path, png_bytes, caplog):
    root = tmp_path / "site"
    (root / "content").mkdir(parents=True)
    (root / "content" / "a.png").write_bytes(png_bytes)
    path = write_post(root / "content", "post", "Post", "2024-01-01", "![](a.png)")
    document = parse_document(path, root / "content")

    with caplog.at_level("WARNING", logger="bar.processors"):
        assert make_generator(root, FailingCaptioner(), png_bytes, [])(document) is document
        assert make_generator(root, CountingCaptioner(text="  "), png_bytes, [])(document) is document
    assert "out of memory" in caplog.text
    assert "empty caption" in caplog.text
    assert ArtifactCache.for_project(root, ALT_TEXT).directory.exists() is False


def test_null_captioner_leaves_documents_untouched(tmp_path, png_bytes):
    root = tmp_path / "site"
    path = write_post(root / "content", "post", "Post", "2024-01-01", "![](a.png)")
    document = parse_document(path, root / "content")
    generator = make_generator(root, NullCaptioner(), png_bytes, [])
    assert generator(document) is document


def test_run_transforms_keeps_order_and_serialises_model(tmp_path, png_bytes):
    root = tmp_path / "site"
    content = root / "content"
    content.mkdir(parents=True)
    documents = []
    for i in range(12):
        image = content / f"img{i}.png"
        # distinct bytes per image so every caption is a cache miss
        image.write_bytes(png_bytes + bytes([i]))
        path = write_post(content, f"post{i:02d}", f"Post {i}", "2024-01-01", f"![](img{i}.png)")
        documents.append(parse_document(path, content))

    captioner = CountingCaptioner()
    generator = make_generator(root, captioner, png_bytes, [])
    results = run_transforms(documents, [generator], max_workers=4)

    assert [d.pid for d in results] == [d.pid for d in documents]
    assert all(alts(d) == ["a red square"] for d in results)
    assert len(captioner.calls) == 12
    assert captioner.max_active == 1


def test_run_transforms_without_transforms_is_identity(tmp_path):
    path = write_post(tmp_path, "post", "Post", "2024-01-01")
    documents = [parse_document(path, tmp_path)]
    assert run_transforms(documents, []) == documents


@pytest.mark.parametrize("url", ["https://[::1/a.png", "https://a..b/x.png"])
def test_malformed_image_urls_are_network_errors(tmp_path, png_bytes, url):
    hits = []
    client = httpx.Client(transport=image_transport(png_bytes, hits))
    fetcher = RemoteImageFetcher(ArtifactCache.for_project(tmp_path, REMOTE_IMAGES), client=client)
    with pytest.raises(NetworkError):
        fetcher.fetch(url)
    assert hits == []


def test_malformed_image_url_is_left_without_alt_text(tmp_path, png_bytes, caplog):
    root = tmp_path / "site"
    path = write_post(root / "content", "post", "Post", "2024-01-01", "![](https://[::1/a.png)")
    document = parse_document(path, root / "content")
    captioner = CountingCaptioner()
    with caplog.at_level("WARNING", logger="bar.processors"):
        updated = make_generator(root, captioner, png_bytes, [])(document)
    assert updated is document
    assert captioner.calls == []
    assert "without alt text" in caplog.text
