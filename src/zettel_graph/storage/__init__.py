"""Storage layer for the Zettel Graph engine."""

from zettel_graph.storage.base import (FullTextHit, NeighborHit, NoteStore,
                                       SimilarityOutcome, SimilarityStatus)
from zettel_graph.storage.note_store import SqlNoteStore

__all__ = [
    "FullTextHit",
    "NeighborHit",
    "NoteStore",
    "SimilarityOutcome",
    "SimilarityStatus",
    "SqlNoteStore",
]
