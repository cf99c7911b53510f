"""Storage contracts consumed by the graph, health and search services.

``NoteStore`` is a structural Protocol: the SQLite store and the test fakes
satisfy it without inheriting from it. Nearest-neighbour queries return a
``SimilarityOutcome`` so callers can tell "this store cannot do similarity"
apart from "the query failed" without inspecting exception types.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import (TYPE_CHECKING, Iterable, List, Optional, Protocol, Sequence,
                    Set, Tuple, runtime_checkable)

from zettel_graph.models.schema import Note, NoteStatus, NoteVersion

if TYPE_CHECKING:
    import numpy as np


@dataclass(frozen=True)
class NeighborHit:
    """One nearest-neighbour result."""

    id: str
    title: str
    similarity: float
    snippet: Optional[str] = None


@dataclass(frozen=True)
class FullTextHit:
    """One full-text result; a higher ``rank`` means more relevant."""

    id: str
    title: str
    snippet: str
    rank: float


class SimilarityStatus(str, Enum):
    OK = "ok"
    UNSUPPORTED = "unsupported"
    ERROR = "error"


@dataclass(frozen=True)
class SimilarityOutcome:
    """Tagged result of a nearest-neighbour query.

    Attributes:
        status: ok, unsupported or error.
        hits: Results ordered by similarity descending (empty unless ok).
        reason: Why the store cannot answer similarity queries.
        error: The exception raised by a failed query.
    """

    status: SimilarityStatus
    hits: Tuple[NeighborHit, ...] = ()
    reason: Optional[str] = None
    error: Optional[Exception] = field(default=None, compare=False)

    @classmethod
    def success(cls, hits: Iterable[NeighborHit]) -> "SimilarityOutcome":
        return cls(status=SimilarityStatus.OK, hits=tuple(hits))

    @classmethod
    def unsupported(cls, reason: str) -> "SimilarityOutcome":
        return cls(status=SimilarityStatus.UNSUPPORTED, reason=reason)

    @classmethod
    def failure(cls, error: Exception) -> "SimilarityOutcome":
        return cls(status=SimilarityStatus.ERROR, error=error)

    @property
    def ok(self) -> bool:
        return self.status == SimilarityStatus.OK

    def describe(self) -> str:
        """Short human-readable reason for a non-ok outcome."""
        if self.status == SimilarityStatus.UNSUPPORTED:
            return f"unsupported ({self.reason})"
        if self.status == SimilarityStatus.ERROR:
            return f"error ({self.error})"
        return "ok"


@runtime_checkable
class NoteStore(Protocol):
    """Persistence and similarity operations the engine needs."""

    def list_notes(
        self,
        status: Optional[NoteStatus] = None,
        with_embeddings: bool = False,
    ) -> List[Note]:
        """Load notes, optionally filtered by status.

        Embedding payloads are only loaded when ``with_embeddings`` is True.
        Raises StorageError when the notes cannot be read.
        """
        ...

    def get_note(self, note_id: str, with_embedding: bool = False) -> Optional[Note]:
        ...

    def get_embedding(self, note_id: str) -> Optional["np.ndarray"]:
        ...

    def nearest_neighbors(
        self,
        vector: Sequence[float],
        limit: int,
        min_similarity: float,
        status: Optional[NoteStatus] = None,
        exclude_ids: Optional[Set[str]] = None,
        inclusive: bool = False,
    ) -> SimilarityOutcome:
        """Most similar notes with completed embeddings.

        Only hits with similarity strictly above ``min_similarity`` (or equal
        to it when ``inclusive``) are returned, ordered by similarity
        descending, at most ``limit``. Never raises; failures are reported
        through the outcome.
        """
        ...

    def full_text_search(self, query: str, limit: int) -> List[FullTextHit]:
        ...

    def add_version(self, version: NoteVersion) -> None:
        ...

    def update_note(self, note: Note) -> Note:
        ...

    def update_note_with_version(self, version: NoteVersion, note: Note) -> Note:
        """Save the snapshot and the note update atomically; neither persists on failure."""
        ...

    def list_recent_embedded(self, limit: int) -> List[Note]:
        """Most recently updated notes with completed embeddings, vectors loaded."""
        ...

    def list_used_seed_ids(self) -> Set[str]:
        ...

