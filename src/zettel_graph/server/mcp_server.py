"""MCP server exposing graph, health and search tools."""

import json
import logging
import uuid
from typing import Optional

from mcp.server.fastmcp import FastMCP

from zettel_graph.config import config
from zettel_graph.exceptions import NoteNotFoundError, ZettelGraphError
from zettel_graph.observability import metrics, timed_operation
from zettel_graph.services.embedding_types import EmbeddingProvider
from zettel_graph.services.graph_service import GraphService
from zettel_graph.services.health_service import KbHealthService
from zettel_graph.services.search_service import SearchService
from zettel_graph.storage.note_store import SqlNoteStore

logger = logging.getLogger(__name__)

SEARCH_TYPES = ("hybrid", "fulltext", "semantic")


class ZettelGraphMcpServer:
    """MCP server for the Zettel Graph engine."""

    def __init__(self, engine=None, embedding_provider: Optional[EmbeddingProvider] = None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine; ``init_db()`` is used when None.
            embedding_provider: Embeds search queries. Without one, semantic
                search is unavailable and hybrid search uses full text only.
        """
        self.mcp = FastMCP(config.server_name)
        self.store = SqlNoteStore(engine)
        self.graph_service = GraphService(self.store)
        self.health_service = KbHealthService(self.store)
        self.search_service = SearchService(self.store, embedding_provider)
        self._register_tools()
        logger.info("Zettel Graph MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Domain errors report their own message; anything else is logged in
        full and answered with a short reference id.
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, ZettelGraphError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="zk_graph")
        def zk_graph(semantic_threshold: Optional[float] = None) -> str:
            """Build the note graph as JSON: nodes with edge counts, wikilink and semantic edges.

            Args:
                semantic_threshold: Minimum similarity for semantic edges (default from config)
            """
            try:
                if semantic_threshold is not None and not 0.0 <= semantic_threshold <= 1.0:
                    raise ValueError("semantic_threshold must be between 0 and 1")
                graph = self.graph_service.build_graph(semantic_threshold=semantic_threshold)
                return graph.model_dump_json()
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_kb_overview")
        def zk_kb_overview() -> str:
            """Knowledge-base health: scorecard, recent orphans, richest clusters, unused seeds."""
            try:
                overview = self.health_service.get_overview()
                card = overview.scorecard

                output = "# Knowledge Base Health\n\n"
                output += f"**Notes:** {card.total_notes}\n"
                output += f"**Embedded:** {card.embedded_percent}%\n"
                output += f"**Recent orphans:** {card.orphan_count}\n"
                output += f"**Average connections:** {card.average_connections}\n\n"

                if overview.new_and_unconnected:
                    output += "## New & Unconnected\n"
                    for note in overview.new_and_unconnected:
                        output += (
                            f"- {note.title} (ID: {note.id}, "
                            f"created {note.created_at.strftime('%Y-%m-%d')})\n"
                        )
                    output += "\n"

                if overview.richest_clusters:
                    output += "## Richest Clusters\n"
                    for cluster in overview.richest_clusters:
                        output += (
                            f"- {cluster.hub_title} (hub ID: {cluster.hub_note_id}, "
                            f"{cluster.note_count} notes)\n"
                        )
                    output += "\n"

                if overview.never_used_as_seeds:
                    output += "## Never Used as Seeds\n"
                    for note in overview.never_used_as_seeds:
                        output += (
                            f"- {note.title} (ID: {note.id}, "
                            f"{note.connection_count} connections)\n"
                        )

                return output
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_connection_suggestions")
        def zk_connection_suggestions(note_id: str, limit: int = 5) -> str:
            """Suggest notes an orphan could link to, by embedding similarity.

            Args:
                note_id: The note to find connections for
                limit: Maximum number of suggestions
            """
            try:
                suggestions = self.health_service.get_connection_suggestions(note_id, limit)
                if not suggestions:
                    return f"No connection suggestions for note {note_id}."

                output = f"Found {len(suggestions)} suggestions for note {note_id}:\n\n"
                for i, suggestion in enumerate(suggestions, 1):
                    output += (
                        f"{i}. {suggestion.title} (ID: {suggestion.note_id}) "
                        f"similarity {suggestion.similarity:.3f}\n"
                    )
                return output
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_insert_wikilink")
        def zk_insert_wikilink(orphan_id: str, target_id: str) -> str:
            """Append a [[Target]] link to an orphan note and save a version of it first.

            Args:
                orphan_id: Note that receives the link
                target_id: Note being linked to
            """
            try:
                updated = self.health_service.insert_wikilink(orphan_id, target_id)
                if updated is None:
                    missing = orphan_id if self.store.get_note(orphan_id) is None else target_id
                    raise NoteNotFoundError(missing)
                return (
                    f"Linked note {orphan_id} to {target_id}. "
                    f"Embedding status is now '{updated.embed_status.value}'."
                )
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_search")
        def zk_search(query: str, search_type: str = "hybrid") -> str:
            """Search notes.

            Args:
                query: Search text
                search_type: "hybrid" (default), "fulltext" or "semantic"
            """
            with timed_operation("zk_search", search_type=search_type) as op:
                try:
                    if not query or not query.strip():
                        return "Error: Search query is required."
                    if search_type not in SEARCH_TYPES:
                        raise ValueError(f"Unknown search type: {search_type}")

                    if search_type == "fulltext":
                        results = self.search_service.full_text_search(query)
                    elif search_type == "semantic":
                        results = self.search_service.semantic_search(query)
                    else:
                        results = self.search_service.hybrid_search(query)

                    op["result_count"] = len(results)
                    if not results:
                        return f"No notes found matching '{query}'."

                    output = f"Found {len(results)} notes matching '{query}':\n\n"
                    for i, result in enumerate(results, 1):
                        output += f"{i}. {result.title} (ID: {result.note_id})\n"
                        output += f"   Relevance: {result.rank:.2f}\n"
                        if result.snippet:
                            output += f"   Match: {result.snippet.replace(chr(10), ' ')}\n"
                        output += "\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="zk_find_related")
        def zk_find_related(note_id: str, limit: int = 5) -> str:
            """Find notes semantically related to a note.

            Args:
                note_id: The seed note
                limit: Maximum number of results
            """
            try:
                results = self.search_service.find_related(note_id, limit)
                if not results:
                    return f"No related notes found for {note_id}."
                output = f"Notes related to {note_id}:\n\n"
                for i, result in enumerate(results, 1):
                    output += f"{i}. {result.title} (ID: {result.note_id}) similarity {result.rank:.3f}\n"
                return output
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_discover")
        def zk_discover(recent_count: int = 3, limit: int = 5) -> str:
            """Surface notes close to what was edited most recently.

            Args:
                recent_count: How many recently updated notes to average
                limit: Maximum number of results
            """
            try:
                results = self.search_service.discover(recent_count, limit)
                if not results:
                    return "Nothing to discover yet."
                output = "You might want to revisit:\n\n"
                for i, result in enumerate(results, 1):
                    output += f"{i}. {result.title} (ID: {result.note_id}) similarity {result.rank:.3f}\n"
                return output
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_backlinks")
        def zk_backlinks(note_id: str) -> str:
            """List notes that reference a note with [[Title]].

            Args:
                note_id: The referenced note
            """
            try:
                backlinks = self.graph_service.get_backlinks(note_id)
                if not backlinks:
                    return f"No backlinks to {note_id}."
                output = f"{len(backlinks)} notes link to {note_id}:\n\n"
                for backlink in backlinks:
                    output += f"- {backlink.title} (ID: {backlink.id})\n"
                return output
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_missing_embeddings")
        def zk_missing_embeddings() -> str:
            """List permanent notes whose embedding is not completed."""
            try:
                notes = self.health_service.get_notes_without_embeddings()
                if not notes:
                    return "All permanent notes are embedded."
                output = f"{len(notes)} notes without a current embedding:\n\n"
                for note in notes:
                    output += f"- {note.title} (ID: {note.id}) [{note.embed_status.value}]"
                    if note.embed_error:
                        output += f" {note.embed_error}"
                    output += "\n"
                return output
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_requeue_embedding")
        def zk_requeue_embedding(note_id: str) -> str:
            """Reset a note's embedding to pending so it is embedded again.

            Args:
                note_id: The note to requeue
            """
            try:
                if self.health_service.requeue_embedding(note_id) == 0:
                    raise NoteNotFoundError(note_id)
                return f"Embedding requeued for note {note_id}."
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_large_notes")
        def zk_large_notes() -> str:
            """List permanent notes too long to embed in one piece, longest first."""
            try:
                notes = self.health_service.get_large_notes()
                if not notes:
                    return f"No notes above {config.large_note_threshold} characters."
                output = f"{len(notes)} notes above {config.large_note_threshold} characters:\n\n"
                for note in notes:
                    output += f"- {note.title} (ID: {note.id}) {note.character_count} chars\n"
                return output
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="zk_status")
        def zk_status() -> str:
            """Note counts, search capabilities and operation metrics."""
            try:
                counts = self.store.count_notes()
                status = {
                    "notes": counts,
                    "similarity_enabled": self.store.similarity_enabled,
                    "semantic_search": self.search_service.has_semantic_search,
                    "metrics": metrics.get_summary(),
                }
                return json.dumps(status, indent=2, default=str)
            except Exception as e:
                return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
