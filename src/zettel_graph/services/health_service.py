"""Knowledge-base health analysis.

Builds the same merged wikilink and semantic adjacency as the graph view,
restricted to permanent notes, and derives a scorecard, recent orphans, the
richest clusters and notes never used as generation seeds. Everything is
recomputed on each call.
"""
import datetime
import logging
import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Set

from zettel_graph.config import config
from zettel_graph.exceptions import OperationCancelledError, ZettelGraphError
from zettel_graph.models.schema import (ConnectionSuggestion, EmbedStatus,
                                        KbHealthOverview, KbHealthScorecard,
                                        LargeNote, Note, NoteStatus,
                                        UnconnectedNote, UnembeddedNote,
                                        UnusedSeedNote, utc_now)
from zettel_graph.observability import timed_operation
from zettel_graph.services.clustering import build_clusters, summarize_clusters
from zettel_graph.services.graph_mutator import WikilinkInserter
from zettel_graph.services.graph_service import build_adjacency, build_merged_edges
from zettel_graph.storage.base import NoteStore
from zettel_graph.utils import raise_if_cancelled

logger = logging.getLogger(__name__)

# Ordering of the missing-embeddings report
_EMBED_STATUS_ORDER = {
    EmbedStatus.PENDING: 0,
    EmbedStatus.PROCESSING: 1,
    EmbedStatus.COMPLETED: 2,
    EmbedStatus.FAILED: 3,
    EmbedStatus.STALE: 4,
}


def round_half_up(value: float, digits: int = 0) -> Decimal:
    """Round like a person would: 66.5 -> 67, 0.25 -> 0.3 at one digit."""
    exponent = Decimal(1).scaleb(-digits)
    return Decimal(repr(value)).quantize(exponent, rounding=ROUND_HALF_UP)


def _suggestion_count(note: Note) -> int:
    return 5 if note.has_completed_embedding else 0


class KbHealthService:
    """Advisory health reports over the permanent notes of a NoteStore."""

    def __init__(self, store: NoteStore, inserter: Optional[WikilinkInserter] = None) -> None:
        self.store = store
        self.inserter = inserter or WikilinkInserter(store)

    def get_overview(
        self,
        orphan_window_days: Optional[int] = None,
        top_cluster_count: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> KbHealthOverview:
        """Scorecard, recent orphans, richest clusters and unused seeds.

        Raises:
            StorageError: if the permanent notes cannot be loaded.
            OperationCancelledError: if ``cancel`` is set mid-computation.
        """
        window_days = (
            config.orphan_window_days if orphan_window_days is None else orphan_window_days
        )
        top_n = config.top_cluster_count if top_cluster_count is None else top_cluster_count

        with timed_operation("kb_overview") as op:
            raise_if_cancelled(cancel, "kb_overview")
            notes = self.store.list_notes(status=NoteStatus.PERMANENT, with_embeddings=True)
            raise_if_cancelled(cancel, "kb_overview")

            if not notes:
                op["total_notes"] = 0
                return KbHealthOverview.empty()

            edges = build_merged_edges(
                notes,
                self.store,
                config.suggestion_threshold,
                neighbor_count=config.semantic_neighbor_count,
                status=NoteStatus.PERMANENT,
                cancel=cancel,
            )
            note_ids = [note.id for note in notes]
            adjacency = build_adjacency(note_ids, edges)
            edge_counts = {note_id: len(neighbors) for note_id, neighbors in adjacency.items()}
            titles = {note.id: note.title for note in notes}

            total = len(notes)
            completed = sum(1 for note in notes if note.has_completed_embedding)
            embedded_percent = int(round_half_up(completed * 100 / total))
            average_connections = float(round_half_up(sum(edge_counts.values()) / total, 1))

            cutoff = utc_now() - datetime.timedelta(days=window_days)
            orphans = sorted(
                (
                    note
                    for note in notes
                    if note.created_at >= cutoff and edge_counts[note.id] == 0
                ),
                key=lambda note: note.created_at,
                reverse=True,
            )

            clusters = build_clusters(note_ids, adjacency, edge_counts, titles, top_n=top_n)

            raise_if_cancelled(cancel, "kb_overview")
            used_seed_ids = self._load_used_seed_ids()
            raise_if_cancelled(cancel, "kb_overview")

            unused_seeds = sorted(
                (
                    note
                    for note in notes
                    if note.has_completed_embedding and note.id not in used_seed_ids
                ),
                key=lambda note: edge_counts[note.id],
                reverse=True,
            )

            overview = KbHealthOverview(
                scorecard=KbHealthScorecard(
                    total_notes=total,
                    embedded_percent=embedded_percent,
                    orphan_count=len(orphans),
                    average_connections=average_connections,
                ),
                new_and_unconnected=[
                    UnconnectedNote(
                        id=note.id,
                        title=note.title,
                        created_at=note.created_at,
                        suggestion_count=_suggestion_count(note),
                    )
                    for note in orphans
                ],
                richest_clusters=summarize_clusters(clusters),
                never_used_as_seeds=[
                    UnusedSeedNote(
                        id=note.id, title=note.title, connection_count=edge_counts[note.id]
                    )
                    for note in unused_seeds
                ],
            )

            op["total_notes"] = total
            op["orphans"] = len(orphans)
            logger.info(
                f"KB health overview: {total} notes, {len(orphans)} orphans, "
                f"{embedded_percent}% embedded"
            )
            return overview

    def _load_used_seed_ids(self) -> Set[str]:
        try:
            return set(self.store.list_used_seed_ids())
        except Exception as e:
            logger.warning(f"Could not load seed usage markers, treating all as unused: {e}")
            return set()

    def safe_overview(self) -> KbHealthOverview:
        """Overview for automated callers: never raises, empty on failure."""
        try:
            return self.get_overview()
        except ZettelGraphError as e:
            logger.warning(f"KB health overview unavailable: {e}")
            return KbHealthOverview.empty()
        except Exception as e:
            logger.error(f"Unexpected error building KB health overview: {e}", exc_info=True)
            return KbHealthOverview.empty()

    def get_connection_suggestions(
        self,
        note_id: str,
        limit: int = 5,
        cancel: Optional[threading.Event] = None,
    ) -> List[ConnectionSuggestion]:
        """Most similar permanent notes the given note could link to.

        Returns an empty list when the note is missing, has no completed
        embedding, or the similarity query cannot be answered.
        """
        if limit <= 0:
            return []
        try:
            raise_if_cancelled(cancel, "connection_suggestions")
            note = self.store.get_note(note_id)
            raise_if_cancelled(cancel, "connection_suggestions")
            if note is None or not note.has_completed_embedding:
                return []

            vector = self.store.get_embedding(note_id)
            raise_if_cancelled(cancel, "connection_suggestions")
            if vector is None:
                return []

            outcome = self.store.nearest_neighbors(
                vector,
                limit=limit,
                min_similarity=config.suggestion_threshold,
                status=NoteStatus.PERMANENT,
                exclude_ids={note_id},
            )
            raise_if_cancelled(cancel, "connection_suggestions")
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.warning(f"Connection suggestion query failed for note {note_id}: {e}")
            return []

        if not outcome.ok:
            logger.warning(
                f"Connection suggestions unavailable for note {note_id}: {outcome.describe()}"
            )
            return []

        hits = sorted(outcome.hits, key=lambda hit: hit.similarity, reverse=True)
        return [
            ConnectionSuggestion(note_id=hit.id, title=hit.title, similarity=hit.similarity)
            for hit in hits[:limit]
            if hit.id != note_id and hit.similarity > config.suggestion_threshold
        ]

    def insert_wikilink(
        self,
        orphan_id: str,
        target_id: str,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[Note]:
        return self.inserter.insert(orphan_id, target_id, cancel=cancel)

    def get_notes_without_embeddings(self) -> List[UnembeddedNote]:
        """Permanent notes whose embedding is not completed, by status then newest."""
        notes = [
            note
            for note in self.store.list_notes(status=NoteStatus.PERMANENT)
            if not note.has_completed_embedding
        ]
        notes.sort(key=lambda note: note.created_at, reverse=True)
        notes.sort(key=lambda note: _EMBED_STATUS_ORDER[note.embed_status])
        return [
            UnembeddedNote(
                id=note.id,
                title=note.title,
                embed_status=note.embed_status,
                embed_error=note.embed_error,
                created_at=note.created_at,
            )
            for note in notes
        ]

    def requeue_embedding(self, note_id: str) -> int:
        """Reset a note's embedding to pending.

        Returns:
            1 if the note was requeued, 0 if it does not exist.
        """
        note = self.store.get_note(note_id)
        if note is None:
            return 0
        self.store.update_note(
            note.model_copy(update={"embed_status": EmbedStatus.PENDING, "embed_error": None})
        )
        logger.info(f"Embedding requeued for note {note_id}")
        return 1

    def get_large_notes(self, threshold: Optional[int] = None) -> List[LargeNote]:
        """Permanent notes longer than the threshold, longest first."""
        limit = config.large_note_threshold if threshold is None else threshold
        large = [
            LargeNote(
                id=note.id,
                title=note.title,
                character_count=len(note.content),
                updated_at=note.updated_at,
            )
            for note in self.store.list_notes(status=NoteStatus.PERMANENT)
            if len(note.content) > limit
        ]
        large.sort(key=lambda item: item.character_count, reverse=True)
        logger.info(f"Found {len(large)} large notes above {limit} chars")
        return large
