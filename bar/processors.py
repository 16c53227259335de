"""Content transforms for BAR.

Transforms rewrite document token trees before rendering. The alt text
transform fills in missing image descriptions with a caption model; its
expensive steps (downloading remote images, running the model) go through
``ArtifactCache`` so each distinct input is computed once across builds.

Caption failures never fail the build: the image is left without alt text
and a warning is logged.

Key classes:
- NullCaptioner: No-op caption model used when no model is configured.
- RemoteImageFetcher: Downloads remote images through the ``remote_images`` cache.
- AltTextGenerator: Fills empty image alt text through the ``alt_text`` cache.

Functions:
    load_captioner: Import and construct the configured caption model once.
    run_transforms: Apply transforms to documents on a bounded thread pool.
"""

from __future__ import annotations

import copy
import importlib
import io
import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import httpx
from PIL import Image

from . import __version__
from .asset_resolver import AssetNotFoundError, AssetResolver
from .cache import ArtifactCache
from .content import ContentDocument
from .protocols import Captioner, ContentTransform
from .renderers import iter_images, token_text
from .utils import cache_key

logger = logging.getLogger(__name__)

USER_AGENT = f"bar/{__version__} (static site generator)"
REMOTE_IMAGE_KEY_VERSION = "remote-image-v1"
ALT_TEXT_KEY_VERSION = "alt-text-v1"


class ImageLoadError(Exception):
    """Error raised when the bytes of an image cannot be obtained.

    Attributes:
        src: Image source as written in the document.
        message: Human-readable error message.
    """

    def __init__(self, src: str, message: str):
        self.src = src
        self.message = message
        super().__init__(f"{src}: {message}")


class NetworkError(ImageLoadError):
    """Error raised when a remote image cannot be downloaded."""


class ModelInferenceError(Exception):
    """Error raised when the caption model fails."""


class NullCaptioner:
    """Caption model that produces nothing; alt text stays untouched."""

    model_id = "null"

    def caption(self, image_bytes: bytes, prompt: str, temperature: float) -> str:
        return ""


def load_captioner(model: str | None) -> Captioner:
    """Construct the caption model named by a ``module:factory`` path.

    Called once per build; the returned object is shared by every caption
    request.

    Args:
        model: Import path such as ``mypackage.captions:create``, or None.

    Returns:
        The captioner, or a ``NullCaptioner`` when no model is configured.

    Raises:
        ModelInferenceError: If the factory cannot be imported or called, or
            returns an object without a ``caption`` method.
    """
    if not model:
        return NullCaptioner()
    module_name, _, factory_name = model.partition(":")
    try:
        factory = getattr(importlib.import_module(module_name), factory_name)
    except (ImportError, AttributeError) as exc:
        raise ModelInferenceError(f"cannot import caption model {model!r}: {exc}") from exc
    logger.info("initializing caption model %s", model)
    try:
        captioner = factory()
    except Exception as exc:
        raise ModelInferenceError(f"cannot initialize caption model {model!r}: {exc}") from exc
    if not isinstance(captioner, Captioner):
        raise ModelInferenceError(f"{model!r} did not return an object with a caption() method")
    return captioner


def verify_image(src: str, data: bytes) -> None:
    """Check that ``data`` decodes as an image.

    Raises:
        ImageLoadError: If Pillow cannot identify the bytes.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (OSError, SyntaxError, ValueError) as exc:
        raise ImageLoadError(src, f"not a valid image: {exc}") from exc


class RemoteImageFetcher:
    """Downloads remote images, caching the bytes by source URL.

    Attributes:
        cache: The ``remote_images`` cache namespace.
        client: HTTP client shared by all downloads of the build.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        self.cache = cache
        self._owns_client = client is None
        self.client = client or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    def fetch(self, url: str) -> bytes:
        """Return the bytes of a remote image.

        Raises:
            NetworkError: If the download fails.
            ImageLoadError: If the response is not an image.
        """
        key = cache_key(REMOTE_IMAGE_KEY_VERSION, url)
        return self.cache.get_or_compute(key, lambda: self._download(url))

    def _download(self, url: str) -> bytes:
        logger.debug("downloading image %s", url)
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            # malformed hosts raise InvalidURL or UnicodeError before any request
            raise NetworkError(url, str(exc)) from exc
        data = response.content
        verify_image(url, data)
        return data

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


class AltTextGenerator:
    """Fills empty image alt text with generated captions.

    Image bytes come from the network for ``http(s)`` sources, from the
    static overlay for site-rooted sources (``/images/a.png``) and from the
    document's directory otherwise. Captions are cached under a key over the
    image bytes, the prompt, the temperature and the model identity.

    The model is not assumed to be thread safe: calls into it are
    serialised.

    Attributes:
        captioner: Caption model shared for the build.
        prompt: Prompt passed to the model.
        temperature: Temperature passed to the model.
    """

    def __init__(
        self,
        captioner: Captioner,
        prompt: str,
        temperature: float,
        cache: ArtifactCache,
        fetcher: RemoteImageFetcher,
        resolver: AssetResolver,
    ):
        self.captioner = captioner
        self.prompt = prompt
        self.temperature = temperature
        self.cache = cache
        self.fetcher = fetcher
        self.resolver = resolver
        self._model_lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return getattr(self.captioner, "model_id", type(self.captioner).__qualname__)

    def __call__(self, document: ContentDocument) -> ContentDocument:
        if isinstance(self.captioner, NullCaptioner):
            return document
        tokens = copy.deepcopy(document.tokens)
        changed = False
        for image in iter_images(tokens):
            if token_text(image).strip():
                continue
            src = image.get("attrs", {}).get("url", "")
            if not src:
                continue
            logger.info("no alt text for image %s in %s", src, document.pid)
            try:
                alt = self.caption_for(src, document.source_path.parent)
            except (ImageLoadError, ModelInferenceError) as exc:
                logger.warning("leaving %s in %s without alt text: %s", src, document.pid, exc)
                continue
            if alt:
                image["children"] = [{"type": "text", "raw": alt}]
                changed = True
        return document.with_tokens(tokens) if changed else document

    def load_image(self, src: str, base_dir: Path) -> bytes:
        """Return the bytes of an image referenced by a document.

        Raises:
            ImageLoadError: If the image cannot be found or downloaded.
        """
        if src.startswith(("http://", "https://")):
            return self.fetcher.fetch(src)
        if src.startswith("/"):
            try:
                return self.resolver.read(src)
            except AssetNotFoundError as exc:
                raise ImageLoadError(src, str(exc)) from exc
        path = base_dir / src
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ImageLoadError(src, f"cannot read {path}: {exc}") from exc

    def caption_for(self, src: str, base_dir: Path) -> str:
        """Return the caption for an image, generating it on a cache miss."""
        image_bytes = self.load_image(src, base_dir)
        key = cache_key(
            ALT_TEXT_KEY_VERSION, self.model_id, image_bytes, self.prompt, self.temperature
        )
        payload = self.cache.get_or_compute(key, lambda: self._generate(image_bytes))
        return payload.decode("utf-8")

    def _generate(self, image_bytes: bytes) -> bytes:
        with self._model_lock:
            try:
                text = self.captioner.caption(image_bytes, self.prompt, self.temperature)
            except Exception as exc:
                raise ModelInferenceError(f"caption model failed: {exc}") from exc
        text = (text or "").strip()
        if not text:
            raise ModelInferenceError("caption model returned an empty caption")
        logger.info("generated alt text: %s", text)
        return text.encode("utf-8")


def run_transforms(
    documents: Sequence[ContentDocument],
    transforms: Sequence[ContentTransform],
    max_workers: int = 8,
) -> list[ContentDocument]:
    """Apply every transform to every document.

    Documents are processed concurrently on a bounded pool; transforms are
    applied in order within a document. The first exception raised by a
    transform propagates.

    Returns:
        Transformed documents, in input order.
    """
    if not transforms or not documents:
        return list(documents)

    def apply(document: ContentDocument) -> ContentDocument:
        for transform in transforms:
            document = transform(document)
        return document

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="bar-transform") as pool:
        return list(pool.map(apply, documents))
