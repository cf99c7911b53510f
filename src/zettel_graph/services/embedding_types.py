"""Type protocol for the embedding provider.

Embedding generation happens outside the engine; search only needs a way to
turn a query string into a vector comparable with the stored note vectors.
Implementations don't need to inherit from this Protocol.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import numpy as np


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Contract for embedding text into dense vectors."""

    @property
    def dimension(self) -> int:
        """Dimensionality of produced vectors."""
        ...

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text into a dense vector.

        Args:
            text: Input text to embed.

        Returns:
            1-D numpy array of shape (dimension,), L2-normalized.
        """
        ...
