import threading
import time

import pytest

from bar import cache as cache_module
from bar.cache import (
    ALT_TEXT,
    CACHE_DIR_NAME,
    REMOTE_IMAGES,
    ArtifactCache,
    CacheIOError,
    clear_cache,
)
from bar.utils import cache_key


def test_get_put_roundtrip_and_entry(tmp_path):
    cache = ArtifactCache.for_project(tmp_path, ALT_TEXT)
    key = cache_key("alt-text-v1", b"image", "prompt", 0.1)

    assert cache.get(key) is None
    assert cache.entry(key) is None
    assert cache.put(key, b"a red square") is True

    assert cache.get(key) == b"a red square"
    entry = cache.entry(key)
    assert entry.key == key
    assert entry.payload == b"a red square"
    assert entry.persisted_at.tzinfo is not None
    assert (tmp_path / CACHE_DIR_NAME / ALT_TEXT / key).is_file()


def test_entries_survive_a_new_cache_instance(tmp_path):
    key = cache_key("remote-image-v1", "https://example.com/a.png")
    ArtifactCache.for_project(tmp_path, REMOTE_IMAGES).put(key, b"bytes")

    restarted = ArtifactCache.for_project(tmp_path, REMOTE_IMAGES)
    calls = []
    payload = restarted.get_or_compute(key, lambda: calls.append(1) or b"fresh")
    assert payload == b"bytes"
    assert calls == []


def test_namespaces_are_isolated(tmp_path):
    images = ArtifactCache.for_project(tmp_path, REMOTE_IMAGES)
    captions = ArtifactCache.for_project(tmp_path, ALT_TEXT)
    images.put("k", b"image")
    assert captions.get("k") is None


def test_invalid_keys_are_rejected(tmp_path):
    cache = ArtifactCache(tmp_path, ALT_TEXT)
    for key in ("", "../escape", "a/b", "a\\b", ".hidden"):
        with pytest.raises(ValueError):
            cache.get(key)


def test_put_failure_is_logged_not_raised(tmp_path, monkeypatch, caplog):
    cache = ArtifactCache(tmp_path, ALT_TEXT)

    def fail(path, data):
        raise OSError("read-only file system")

    monkeypatch.setattr(cache_module, "atomic_write_bytes", fail)
    with caplog.at_level("WARNING", logger="bar.cache"):
        assert cache.put("k", b"value") is False
    assert "read-only file system" in caplog.text

    with pytest.raises(CacheIOError) as excinfo:
        cache.write("k", b"value")
    assert excinfo.value.key == "k"

    # the computed value is still returned when persisting fails
    assert cache.get_or_compute("k", lambda: b"computed") == b"computed"
    assert cache.get("k") is None


def test_get_or_compute_runs_once_for_concurrent_callers(tmp_path):
    cache = ArtifactCache(tmp_path, ALT_TEXT)
    calls = []

    def compute():
        calls.append(1)
        time.sleep(0.05)
        return b"caption"

    results = []

    def worker():
        results.append(cache.get_or_compute("key", compute))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == [b"caption"] * 8
    assert len(calls) == 1


def test_get_or_compute_propagates_errors_and_allows_retry(tmp_path):
    cache = ArtifactCache(tmp_path, ALT_TEXT)

    def boom():
        raise RuntimeError("model crashed")

    with pytest.raises(RuntimeError):
        cache.get_or_compute("key", boom)
    assert cache.get("key") is None
    assert cache.get_or_compute("key", lambda: b"ok") == b"ok"


def test_clear_namespace_and_clear_cache(tmp_path):
    images = ArtifactCache.for_project(tmp_path, REMOTE_IMAGES)
    captions = ArtifactCache.for_project(tmp_path, ALT_TEXT)
    images.put("a", b"1")
    captions.put("b", b"2")

    images.clear()
    assert images.get("a") is None
    assert captions.get("b") == b"2"

    assert clear_cache(tmp_path) is True
    assert not (tmp_path / CACHE_DIR_NAME).exists()
    assert clear_cache(tmp_path) is False
