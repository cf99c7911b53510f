"""FTS5 full-text search index over notes.

Encapsulates FTS5 querying, the LIKE fallback used when FTS5 is missing or
broken, and index recovery.
"""
import logging
import re
import sqlite3
from typing import Any, Callable, List

from sqlalchemy import text
from sqlalchemy.exc import DatabaseError as SQLAlchemyDatabaseError
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError

from zettel_graph.exceptions import ErrorCode, SearchError
from zettel_graph.models.db_models import rebuild_fts_index
from zettel_graph.storage.base import FullTextHit
from zettel_graph.utils import escape_like_pattern, make_snippet

logger = logging.getLogger(__name__)

_TERM_PATTERN = re.compile(r"\w+", re.UNICODE)


class FtsIndex:
    """FTS5 full-text search index with graceful degradation.

    Ranks are negated BM25 scores so that, like every other relevance
    signal in the engine, a larger rank means a better match.

    Args:
        engine: SQLAlchemy engine used for database access.
        session_factory: Callable returning a context-manager session.
    """

    def __init__(self, engine: Any, session_factory: Callable) -> None:
        self.engine = engine
        self._session_factory = session_factory
        self.available: bool = True

    def search(self, query: str, limit: int = 50) -> List[FullTextHit]:
        """Search titles and content; every query term must match.

        Raises:
            SearchError: if both FTS5 and the LIKE fallback fail.
        """
        match_query = self._build_match_query(query)
        if not match_query:
            return []

        if not self.available:
            logger.debug("FTS5 unavailable, using fallback search")
            return self._fallback_text_search(query, limit)

        sql = text("""
            SELECT
                notes_fts.id,
                notes_fts.title,
                -bm25(notes_fts) AS rank,
                snippet(notes_fts, 2, '', '', '...', 32) AS snippet
            FROM notes_fts
            WHERE notes_fts MATCH :query
            ORDER BY rank DESC
            LIMIT :limit
        """)

        hits: List[FullTextHit] = []
        with self._session_factory() as session:
            try:
                result = session.execute(sql, {"query": match_query, "limit": limit})
                for row in result.fetchall():
                    hits.append(
                        FullTextHit(
                            id=row[0],
                            title=row[1],
                            rank=float(row[2]),
                            snippet=row[3] or "",
                        )
                    )

            except (sqlite3.OperationalError, SQLAlchemyOperationalError) as e:
                logger.warning(
                    f"FTS5 query failed for '{query}': {e}. Using fallback search."
                )
                return self._fallback_text_search(query, limit)

            except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
                error_msg = str(e).lower()
                if "malformed" in error_msg or "corrupt" in error_msg:
                    logger.error(
                        f"FTS5 corruption detected: {e}. Attempting auto-rebuild..."
                    )
                    if self._attempt_recovery():
                        logger.info("FTS5 rebuilt successfully, retrying search")
                        return self.search(query, limit)
                    logger.error("FTS5 recovery failed. Disabling FTS5 for this session.")
                    self.available = False
                else:
                    logger.error(f"FTS5 database error: {e}. Using fallback search.")
                return self._fallback_text_search(query, limit)

        return hits

    def rebuild(self) -> int:
        """Rebuild the FTS5 index from the notes table."""
        return rebuild_fts_index(self.engine)

    @staticmethod
    def _build_match_query(query: str) -> str:
        """Turn free text into an FTS5 AND of quoted terms.

        Quoting every term keeps user input from being read as FTS5 syntax
        (NEAR, column filters, prefix stars and so on).
        """
        terms = _TERM_PATTERN.findall(query)
        return " AND ".join(f'"{term}"' for term in terms)

    def _fallback_text_search(self, query: str, limit: int = 50) -> List[FullTextHit]:
        """LIKE-based fallback when FTS5 is unavailable.

        Title matches rank 2.0, content-only matches 1.0.
        """
        needle = query.strip()
        search_term = f"%{escape_like_pattern(needle)}%"
        hits: List[FullTextHit] = []

        try:
            with self._session_factory() as session:
                sql = text("""
                    SELECT id, title, content
                    FROM notes
                    WHERE title LIKE :term ESCAPE '\\' OR content LIKE :term ESCAPE '\\'
                    LIMIT :limit
                """)
                result = session.execute(sql, {"term": search_term, "limit": limit})
                for row in result.fetchall():
                    title_match = needle.lower() in (row[1] or "").lower()
                    hits.append(
                        FullTextHit(
                            id=row[0],
                            title=row[1],
                            rank=2.0 if title_match else 1.0,
                            snippet=make_snippet(row[2] or ""),
                        )
                    )
        except Exception as e:
            raise SearchError(
                f"Fallback text search failed: {e}",
                query=query,
                code=ErrorCode.SEARCH_FAILED,
                original_error=e,
            ) from e

        hits.sort(key=lambda h: h.rank, reverse=True)
        logger.debug(f"Fallback search returned {len(hits)} results for query '{query}'")
        return hits

    def _attempt_recovery(self) -> bool:
        """Attempt to recover FTS5 by rebuilding the index."""
        try:
            count = self.rebuild()
            logger.info(f"FTS5 index rebuilt with {count} notes")
            return True
        except Exception as e:
            logger.error(f"FTS5 rebuild failed: {e}")
            return False
