"""Full-text, semantic and hybrid search over notes."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np

from zettel_graph.config import config
from zettel_graph.exceptions import (ErrorCode, OperationCancelledError,
                                     SearchError, SimilarityUnsupportedError,
                                     ZettelGraphError)
from zettel_graph.models.schema import SearchResult
from zettel_graph.observability import timed_operation
from zettel_graph.services.embedding_types import EmbeddingProvider
from zettel_graph.storage.base import NoteStore, SimilarityOutcome, SimilarityStatus
from zettel_graph.utils import is_blank, raise_if_cancelled

logger = logging.getLogger(__name__)


def normalize_ranks(results: Sequence[SearchResult]) -> List[SearchResult]:
    """Min-max normalise ranks into [0, 1].

    When every rank is equal, every normalised rank is 1.0.
    """
    if not results:
        return []

    ranks = [r.rank for r in results]
    min_rank = min(ranks)
    spread = max(ranks) - min_rank

    return [
        r.model_copy(update={"rank": 1.0 if spread == 0 else (r.rank - min_rank) / spread})
        for r in results
    ]


def _hits_to_results(outcome: SimilarityOutcome) -> List[SearchResult]:
    return [
        SearchResult(
            note_id=hit.id,
            title=hit.title,
            snippet=hit.snippet or "",
            rank=hit.similarity,
        )
        for hit in outcome.hits
    ]


class SearchService:
    """Searches a NoteStore by keywords, by meaning, or both.

    Args:
        store: The note store.
        embedding_provider: Turns query text into vectors. Without one,
            semantic search raises and hybrid search returns full-text
            results only.
    """

    def __init__(
        self,
        store: NoteStore,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ) -> None:
        self.store = store
        self._embedding_provider = embedding_provider

    @property
    def has_semantic_search(self) -> bool:
        return self._embedding_provider is not None

    def full_text_search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        """Keyword search; ranks are raw relevance scores, higher is better.

        Raises:
            SearchError: if the full-text query fails.
        """
        if is_blank(query):
            return []

        try:
            hits = self.store.full_text_search(query, limit or config.full_text_limit)
        except ZettelGraphError:
            raise
        except Exception as e:
            raise SearchError(
                f"Full-text search failed: {e}", query=query, original_error=e
            ) from e

        return [
            SearchResult(note_id=hit.id, title=hit.title, snippet=hit.snippet, rank=hit.rank)
            for hit in hits
        ]

    def semantic_search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        """Nearest notes to the query's embedding; rank is the cosine similarity.

        Raises:
            SearchError: if no embedding provider is configured or the query fails.
            SimilarityUnsupportedError: if the store cannot answer similarity queries.
        """
        if is_blank(query):
            return []

        if self._embedding_provider is None:
            raise SearchError(
                "No embedding provider configured",
                query=query,
                code=ErrorCode.EMBEDDING_UNAVAILABLE,
            )

        try:
            vector = self._embedding_provider.embed(query)
        except Exception as e:
            raise SearchError(
                f"Embedding the query failed: {e}",
                query=query,
                code=ErrorCode.EMBEDDING_UNAVAILABLE,
                original_error=e,
            ) from e

        outcome = self.store.nearest_neighbors(
            vector,
            limit=limit or config.semantic_limit,
            min_similarity=config.minimum_similarity,
            inclusive=True,
        )
        if outcome.status == SimilarityStatus.UNSUPPORTED:
            raise SimilarityUnsupportedError(
                f"Similarity search is not supported: {outcome.reason}"
            )
        if outcome.status == SimilarityStatus.ERROR:
            raise SearchError(
                "Similarity query failed",
                query=query,
                code=ErrorCode.SIMILARITY_FAILED,
                original_error=outcome.error,
            )
        return _hits_to_results(outcome)

    def hybrid_search(
        self,
        query: str,
        cancel: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """Fuse normalised full-text ranks with semantic similarity.

        ``score = full_text_weight * ft + semantic_weight * sem``, with 0 for a
        channel that did not return the note. Scores below
        ``minimum_hybrid_score`` are dropped and the rest are divided by the
        best score. If semantic search fails for any reason the full-text
        results are returned unchanged.

        Raises:
            SearchError: if the full-text query fails.
        """
        if is_blank(query):
            return []

        with timed_operation("hybrid_search", query=query[:50]) as op:
            raise_if_cancelled(cancel, "hybrid_search")
            full_text_results = self.full_text_search(query)
            raise_if_cancelled(cancel, "hybrid_search")

            try:
                semantic_results = self.semantic_search(query)
            except OperationCancelledError:
                raise
            except Exception as e:
                logger.warning(f"Semantic search failed, falling back to full-text only: {e}")
                op["mode"] = "fulltext"
                op["result_count"] = len(full_text_results)
                return full_text_results
            raise_if_cancelled(cancel, "hybrid_search")

            merged: Dict[str, SearchResult] = {}
            scores: Dict[str, float] = {}

            for result in normalize_ranks(full_text_results):
                merged[result.note_id] = result
                scores[result.note_id] = config.full_text_weight * result.rank

            for result in semantic_results:
                merged.setdefault(result.note_id, result)
                scores[result.note_id] = (
                    scores.get(result.note_id, 0.0) + config.semantic_weight * result.rank
                )

            max_score = max(scores.values(), default=1.0)

            results = [
                merged[note_id].model_copy(
                    update={"rank": min(score / max_score, 1.0) if max_score > 0 else 0.0}
                )
                for note_id, score in scores.items()
                if score >= config.minimum_hybrid_score
            ]
            results.sort(key=lambda r: r.rank, reverse=True)

            op["mode"] = "hybrid"
            op["result_count"] = len(results)
            return results

    def find_related(self, note_id: str, limit: int = 5) -> List[SearchResult]:
        """Notes most similar to an existing note; empty on any failure."""
        try:
            note = self.store.get_note(note_id)
            if note is None or not note.has_completed_embedding:
                return []
            vector = self.store.get_embedding(note_id)
            if vector is None:
                return []
            outcome = self.store.nearest_neighbors(
                vector,
                limit=limit,
                min_similarity=config.minimum_similarity,
                inclusive=True,
                exclude_ids={note_id},
            )
        except Exception as e:
            logger.warning(f"find_related failed for note {note_id}: {e}")
            return []

        if not outcome.ok:
            logger.warning(f"find_related unavailable for note {note_id}: {outcome.describe()}")
            return []
        return _hits_to_results(outcome)[:limit]

    def discover(self, recent_count: int = 3, limit: int = 5) -> List[SearchResult]:
        """Notes close to what was worked on recently.

        Averages the embeddings of the ``recent_count`` most recently updated
        embedded notes and returns their nearest neighbours, excluding those
        notes themselves. Empty on any failure.
        """
        try:
            recent = self.store.list_recent_embedded(recent_count)
            vectors = [np.asarray(n.embedding, dtype=np.float32) for n in recent if n.embedding]
            if not vectors:
                return []

            # Vectors of another dimension cannot be averaged with the first
            vectors = [v for v in vectors if v.shape == vectors[0].shape]
            centroid = np.mean(np.vstack(vectors), axis=0)

            outcome = self.store.nearest_neighbors(
                centroid,
                limit=limit,
                min_similarity=config.minimum_similarity,
                inclusive=True,
                exclude_ids={n.id for n in recent},
            )
        except Exception as e:
            logger.warning(f"discover failed: {e}")
            return []

        if not outcome.ok:
            logger.warning(f"discover unavailable: {outcome.describe()}")
            return []
        return _hits_to_results(outcome)[:limit]
