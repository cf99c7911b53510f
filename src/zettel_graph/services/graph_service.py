"""Construction of the merged wikilink and semantic note graph."""
import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set

from zettel_graph.config import config
from zettel_graph.exceptions import OperationCancelledError
from zettel_graph.models.schema import (BacklinkResult, EdgeKind, GraphData,
                                        GraphEdge, GraphNode, Note, NoteStatus)
from zettel_graph.observability import timed_operation
from zettel_graph.services.wikilinks import extract_referenced_titles
from zettel_graph.storage.base import NoteStore
from zettel_graph.utils import raise_if_cancelled

logger = logging.getLogger(__name__)


def normalize_title(title: str) -> str:
    return title.strip().casefold()


def build_title_index(notes: Iterable[Note]) -> Dict[str, str]:
    """Map normalized titles to note ids; the first note with a title wins."""
    index: Dict[str, str] = {}
    for note in notes:
        index.setdefault(normalize_title(note.title), note.id)
    return index


def collect_wikilink_edges(notes: Sequence[Note], title_index: Dict[str, str]) -> List[GraphEdge]:
    """One edge per resolved reference; unresolved titles and self-references dropped."""
    edges: List[GraphEdge] = []
    for note in notes:
        for title in extract_referenced_titles(note.content):
            target_id = title_index.get(normalize_title(title))
            if target_id is None or target_id == note.id:
                continue
            edges.append(
                GraphEdge(source=note.id, target=target_id, kind=EdgeKind.WIKILINK, weight=1.0)
            )
    return edges


def collect_semantic_edges(
    notes: Sequence[Note],
    store: NoteStore,
    threshold: float,
    neighbor_count: int = 5,
    status: Optional[NoteStatus] = None,
    cancel: Optional[threading.Event] = None,
) -> Optional[List[GraphEdge]]:
    """Nearest-neighbour edges between notes with completed embeddings.

    Each note keeps its own top ``neighbor_count`` hits strictly above
    ``threshold``, so two notes in each other's top list produce an edge in
    each direction.

    Returns:
        The edges, or None when the similarity backend is unsupported or a
        query failed. Partial results are never returned.
    """
    note_ids = {note.id for note in notes}
    edges: List[GraphEdge] = []

    try:
        for note in notes:
            if not note.has_completed_embedding:
                continue

            vector = note.embedding
            if vector is None:
                raise_if_cancelled(cancel, "semantic_edges")
                vector = store.get_embedding(note.id)
                raise_if_cancelled(cancel, "semantic_edges")
                if vector is None:
                    continue

            raise_if_cancelled(cancel, "semantic_edges")
            outcome = store.nearest_neighbors(
                vector,
                limit=neighbor_count,
                min_similarity=threshold,
                status=status,
                exclude_ids={note.id},
            )
            raise_if_cancelled(cancel, "semantic_edges")

            if not outcome.ok:
                logger.warning(
                    f"Semantic edges skipped, similarity query {outcome.describe()}"
                )
                return None

            for hit in outcome.hits:
                if hit.id == note.id or hit.id not in note_ids or hit.similarity <= threshold:
                    continue
                edges.append(
                    GraphEdge(
                        source=note.id,
                        target=hit.id,
                        kind=EdgeKind.SEMANTIC,
                        weight=hit.similarity,
                    )
                )
    except OperationCancelledError:
        raise
    except Exception as e:
        logger.warning(f"Semantic edge query failed, skipping semantic edges: {e}")
        return None

    return edges


def build_adjacency(note_ids: Iterable[str], edges: Iterable[GraphEdge]) -> Dict[str, Set[str]]:
    """Undirected neighbour sets keyed by note id."""
    adjacency: Dict[str, Set[str]] = {note_id: set() for note_id in note_ids}
    for edge in edges:
        if edge.source == edge.target:
            continue
        if edge.source not in adjacency or edge.target not in adjacency:
            continue
        adjacency[edge.source].add(edge.target)
        adjacency[edge.target].add(edge.source)
    return adjacency


def build_merged_edges(
    notes: Sequence[Note],
    store: NoteStore,
    semantic_threshold: float,
    neighbor_count: int = 5,
    status: Optional[NoteStatus] = None,
    cancel: Optional[threading.Event] = None,
) -> List[GraphEdge]:
    """Wikilink edges plus semantic edges, or wikilinks alone when similarity is unavailable."""
    title_index = build_title_index(notes)
    edges = collect_wikilink_edges(notes, title_index)
    semantic = collect_semantic_edges(
        notes, store, semantic_threshold, neighbor_count, status=status, cancel=cancel
    )
    if semantic:
        edges.extend(semantic)
    return edges


def build_graph(
    notes: Sequence[Note],
    store: NoteStore,
    semantic_threshold: float,
    neighbor_count: int = 5,
    cancel: Optional[threading.Event] = None,
) -> GraphData:
    """Merge wikilink and semantic edges over ``notes`` into one graph.

    Node ``edge_count`` is the number of distinct neighbours across both
    edge kinds.
    """
    raise_if_cancelled(cancel, "build_graph")
    if not notes:
        return GraphData()

    edges = build_merged_edges(notes, store, semantic_threshold, neighbor_count, cancel=cancel)
    adjacency = build_adjacency((note.id for note in notes), edges)

    nodes = [
        GraphNode(id=note.id, title=note.title, edge_count=len(adjacency[note.id]))
        for note in notes
    ]
    return GraphData(nodes=nodes, edges=edges)


class GraphService:
    """Builds the note graph and answers backlink queries from a NoteStore."""

    def __init__(self, store: NoteStore) -> None:
        self.store = store

    def build_graph(
        self,
        semantic_threshold: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> GraphData:
        threshold = (
            config.semantic_threshold if semantic_threshold is None else semantic_threshold
        )
        with timed_operation("build_graph", threshold=threshold) as op:
            raise_if_cancelled(cancel, "build_graph")
            notes = self.store.list_notes(with_embeddings=True)
            raise_if_cancelled(cancel, "build_graph")

            graph = build_graph(
                notes,
                self.store,
                threshold,
                neighbor_count=config.semantic_neighbor_count,
                cancel=cancel,
            )
            op["nodes"] = len(graph.nodes)
            op["edges"] = len(graph.edges)
            return graph

    def get_backlinks(self, note_id: str) -> List[BacklinkResult]:
        """Notes whose content references ``note_id`` by title."""
        note = self.store.get_note(note_id)
        if note is None:
            return []

        notes = self.store.list_notes()
        title_index = build_title_index(notes)

        backlinks: List[BacklinkResult] = []
        for other in notes:
            if other.id == note_id:
                continue
            for title in extract_referenced_titles(other.content):
                if title_index.get(normalize_title(title)) == note_id:
                    backlinks.append(BacklinkResult(id=other.id, title=other.title))
                    break
        return backlinks
