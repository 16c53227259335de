"""Protocol definitions for BAR.

These protocols describe the narrow seams between the build core and its
pluggable collaborators, so tests and alternative implementations can be
swapped in without touching the orchestrator.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .content import ContentDocument


@runtime_checkable
class Captioner(Protocol):
    """Protocol for image caption models.

    Implementations are expensive to create, so the build creates one per
    run and shares it across every caption request.
    """

    @abstractmethod
    def caption(self, image_bytes: bytes, prompt: str, temperature: float) -> str:
        """Describe an image.

        Args:
            image_bytes: Encoded image (PNG, JPEG, ...).
            prompt: Instruction given to the model.
            temperature: Sampling temperature.

        Returns:
            Caption text.
        """
        ...


@runtime_checkable
class ContentTransform(Protocol):
    """Protocol for document transforms run before rendering.

    A transform maps a document to a new document and must not mutate its
    input. Transforms may run on worker threads.
    """

    @abstractmethod
    def __call__(self, document: ContentDocument) -> ContentDocument:
        """Return the transformed document."""
        ...
