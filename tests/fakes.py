"""Note builders, fake embedding providers and misbehaving note stores.

The embedding providers produce deterministic numpy vectors without any
model. The store subclasses wrap the real SQLite store and break exactly one
operation, so degrade paths can be exercised against real data.

Design principles:
- Never mock SQLite; always use a real temporary database
- Fakes produce real numpy arrays of controlled dimensionality
- Deterministic: same input, same output
"""
import datetime
import hashlib
from typing import Dict, List, Optional, Sequence

import numpy as np

from zettel_graph.exceptions import ErrorCode, StorageError
from zettel_graph.models.schema import EmbedStatus, Note, NoteStatus, utc_now
from zettel_graph.storage.base import FullTextHit, SimilarityOutcome
from zettel_graph.storage.note_store import SqlNoteStore


def make_note(
    title: str,
    content: str = "",
    embedding: Optional[Sequence[float]] = None,
    status: NoteStatus = NoteStatus.PERMANENT,
    embed_status: Optional[EmbedStatus] = None,
    days_old: float = 1,
) -> Note:
    """Build a note; a given embedding marks it completed unless told otherwise."""
    created = utc_now() - datetime.timedelta(days=days_old)
    if embed_status is None:
        embed_status = EmbedStatus.COMPLETED if embedding is not None else EmbedStatus.PENDING
    return Note(
        title=title,
        content=content,
        status=status,
        embed_status=embed_status,
        embedding=[float(x) for x in embedding] if embedding is not None else None,
        created_at=created,
        updated_at=created,
    )


class FakeEmbeddingProvider:
    """Deterministic embedding provider derived from a hash of the text.

    Produces L2-normalized vectors, so identical text always maps to the
    same unit vector.
    """

    def __init__(self, dim: int = 8) -> None:
        self._dim = dim
        self.embed_count = 0

    @property
    def dimension(self) -> int:
        return self._dim

    def embed(self, text: str) -> np.ndarray:
        self.embed_count += 1
        digest = b""
        seed = text.encode("utf-8")
        while len(digest) < self._dim:
            seed = hashlib.sha256(seed).digest()
            digest += seed
        raw = np.frombuffer(digest[: self._dim], dtype=np.uint8).astype(np.float32) - 127.5
        norm = np.linalg.norm(raw)
        return raw / norm if norm > 0 else raw


class FixedEmbeddingProvider:
    """Returns preset vectors for known texts and raises for anything else."""

    def __init__(self, vectors: Dict[str, Sequence[float]]) -> None:
        self._vectors = {text: np.asarray(v, dtype=np.float32) for text, v in vectors.items()}

    @property
    def dimension(self) -> int:
        return len(next(iter(self._vectors.values())))

    def embed(self, text: str) -> np.ndarray:
        if text not in self._vectors:
            raise RuntimeError(f"no vector for {text!r}")
        return self._vectors[text]


class UnsupportedSimilarityStore(SqlNoteStore):
    """A store whose backend cannot answer nearest-neighbour queries."""

    def __init__(self, engine) -> None:
        super().__init__(engine, similarity_enabled=True)
        self.similarity_calls = 0

    def nearest_neighbors(
        self, vector, limit, min_similarity, status=None, exclude_ids=None, inclusive=False
    ):
        self.similarity_calls += 1
        return SimilarityOutcome.unsupported("no vector index")


class FailingSimilarityStore(SqlNoteStore):
    """A store whose similarity queries fail.

    Args:
        fail_after: Number of successful queries before failures start.
        raise_error: Raise instead of returning an error outcome.
    """

    def __init__(self, engine, fail_after: int = 0, raise_error: bool = False) -> None:
        super().__init__(engine, similarity_enabled=True)
        self.fail_after = fail_after
        self.raise_error = raise_error
        self.similarity_calls = 0

    def nearest_neighbors(
        self, vector, limit, min_similarity, status=None, exclude_ids=None, inclusive=False
    ):
        self.similarity_calls += 1
        if self.similarity_calls <= self.fail_after:
            return super().nearest_neighbors(
                vector,
                limit,
                min_similarity,
                status=status,
                exclude_ids=exclude_ids,
                inclusive=inclusive,
            )
        error = RuntimeError("vector index unavailable")
        if self.raise_error:
            raise error
        return SimilarityOutcome.failure(error)


class StaticSimilarityStore(SqlNoteStore):
    """Answers every similarity query with a preset outcome."""

    def __init__(self, engine, outcome: SimilarityOutcome) -> None:
        super().__init__(engine, similarity_enabled=True)
        self.outcome = outcome

    def nearest_neighbors(
        self, vector, limit, min_similarity, status=None, exclude_ids=None, inclusive=False
    ):
        return self.outcome


class StaticFullTextStore(SqlNoteStore):
    """Answers every full-text query with preset hits."""

    def __init__(self, engine, hits: List[FullTextHit]) -> None:
        super().__init__(engine, similarity_enabled=True)
        self.hits = hits

    def full_text_search(self, query: str, limit: int) -> List[FullTextHit]:
        return list(self.hits)


class FailingFullTextStore(SqlNoteStore):
    """A store whose full-text queries raise."""

    def full_text_search(self, query: str, limit: int) -> List[FullTextHit]:
        raise RuntimeError("fts index missing")


class FailingNoteLoadStore(SqlNoteStore):
    """A store that cannot read its notes."""

    def list_notes(self, status=None, with_embeddings: bool = False):
        raise StorageError(
            "Failed to load notes",
            operation="list_notes",
            code=ErrorCode.STORAGE_READ_FAILED,
        )


class FailingSeedStore(SqlNoteStore):
    """A store whose seed-usage markers cannot be read."""

    def list_used_seed_ids(self):
        raise StorageError("Failed to load seed usage markers", operation="list_used_seed_ids")


class RecordingStore(SqlNoteStore):
    """Records write calls so tests can assert on their order.

    ``fail_update`` is raised while the note row is being updated, after any
    version snapshot in the same transaction has already been added.
    """

    def __init__(self, engine, fail_update: Optional[Exception] = None) -> None:
        super().__init__(engine, similarity_enabled=True)
        self.calls: List[str] = []
        self.fail_update = fail_update

    def add_version(self, version):
        self.calls.append("add_version")
        return super().add_version(version)

    def update_note(self, note):
        self.calls.append("update_note")
        return super().update_note(note)

    def update_note_with_version(self, version, note):
        self.calls.append("update_note_with_version")
        return super().update_note_with_version(version, note)

    def _apply_update(self, session, note):
        if self.fail_update is not None:
            raise self.fail_update
        return super()._apply_update(session, note)


class EmbeddingReadCountingStore(SqlNoteStore):
    """Counts single-note embedding reads."""

    def __init__(self, engine) -> None:
        super().__init__(engine, similarity_enabled=True)
        self.embedding_reads = 0

    def get_embedding(self, note_id):
        self.embedding_reads += 1
        return super().get_embedding(note_id)
