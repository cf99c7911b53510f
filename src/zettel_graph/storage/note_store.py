"""SQLite-backed note store.

Notes, version snapshots and seed-usage markers live in SQLAlchemy tables;
full-text queries go through the FTS5 index and nearest-neighbour queries are
answered by cosine similarity over float32 embedding blobs with numpy.
"""
import datetime
import logging
from typing import Any, Dict, List, Optional, Sequence, Set

import numpy as np
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import defer

from zettel_graph.config import config
from zettel_graph.exceptions import ErrorCode, StorageError
from zettel_graph.models.db_models import (DBNote, DBNoteVersion, DBUsedSeedNote,
                                           get_session_factory, init_db)
from zettel_graph.models.schema import (EmbedStatus, Note, NoteStatus,
                                        NoteVersion, SeedUsageMarker,
                                        ensure_timezone_aware)
from zettel_graph.storage.base import FullTextHit, NeighborHit, SimilarityOutcome
from zettel_graph.storage.fts_index import FtsIndex
from zettel_graph.utils import is_blank, make_snippet

logger = logging.getLogger(__name__)


def _to_db_time(value: datetime.datetime) -> datetime.datetime:
    """Naive UTC, the form the DateTime columns hold."""
    return ensure_timezone_aware(value).astimezone(datetime.timezone.utc).replace(tzinfo=None)


def _vector_to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _blob_to_vector(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).copy()


class SqlNoteStore:
    """NoteStore implementation on SQLite.

    Args:
        engine: SQLAlchemy engine; created with ``init_db()`` when omitted.
        similarity_enabled: Overrides ``config.similarity_enabled``. When
            disabled, nearest-neighbour queries report ``unsupported``.
    """

    def __init__(self, engine: Any = None, similarity_enabled: Optional[bool] = None) -> None:
        self.engine = engine if engine is not None else init_db()
        self.session_factory = get_session_factory(self.engine)
        self._fts = FtsIndex(self.engine, self.session_factory)
        self._similarity_enabled = similarity_enabled

    @property
    def similarity_enabled(self) -> bool:
        if self._similarity_enabled is not None:
            return self._similarity_enabled
        return config.similarity_enabled

    @staticmethod
    def _db_note_to_model(db_note: DBNote, with_embedding: bool = False) -> Note:
        embedding = None
        if with_embedding:
            vector = _blob_to_vector(db_note.embedding)
            embedding = vector.tolist() if vector is not None else None
        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content or "",
            status=NoteStatus(db_note.status),
            embed_status=EmbedStatus(db_note.embed_status),
            embed_error=db_note.embed_error,
            embedding=embedding,
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_notes(
        self,
        status: Optional[NoteStatus] = None,
        with_embeddings: bool = False,
    ) -> List[Note]:
        """Load notes in creation order, optionally filtered by status."""
        query = select(DBNote).order_by(DBNote.created_at, DBNote.id)
        if not with_embeddings:
            query = query.options(defer(DBNote.embedding))
        if status is not None:
            query = query.where(DBNote.status == NoteStatus(status).value)

        try:
            with self.session_factory() as session:
                db_notes = session.execute(query).scalars().all()
                return [self._db_note_to_model(n, with_embeddings) for n in db_notes]
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to load notes",
                operation="list_notes",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def get_note(self, note_id: str, with_embedding: bool = False) -> Optional[Note]:
        query = select(DBNote).where(DBNote.id == note_id)
        if not with_embedding:
            query = query.options(defer(DBNote.embedding))
        try:
            with self.session_factory() as session:
                db_note = session.execute(query).scalar_one_or_none()
                if db_note is None:
                    return None
                return self._db_note_to_model(db_note, with_embedding)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to load note {note_id}",
                operation="get_note",
                original_error=e,
            ) from e

    def get_embedding(self, note_id: str) -> Optional[np.ndarray]:
        """Embedding of a note as a 1-D float32 array, or None."""
        try:
            with self.session_factory() as session:
                blob = session.execute(
                    select(DBNote.embedding).where(DBNote.id == note_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to load embedding for {note_id}",
                operation="get_embedding",
                original_error=e,
            ) from e
        return _blob_to_vector(blob)

    def list_recent_embedded(self, limit: int) -> List[Note]:
        """Most recently updated notes with completed embeddings, vectors included."""
        query = (
            select(DBNote)
            .where(DBNote.embed_status == EmbedStatus.COMPLETED.value)
            .where(DBNote.embedding.is_not(None))
            .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            .limit(limit)
        )
        try:
            with self.session_factory() as session:
                db_notes = session.execute(query).scalars().all()
                return [self._db_note_to_model(n, with_embedding=True) for n in db_notes]
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to load recently embedded notes",
                operation="list_recent_embedded",
                original_error=e,
            ) from e

    def list_used_seed_ids(self) -> Set[str]:
        try:
            with self.session_factory() as session:
                return set(session.execute(select(DBUsedSeedNote.note_id)).scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to load seed usage markers",
                operation="list_used_seed_ids",
                original_error=e,
            ) from e

    def list_versions(self, note_id: str) -> List[NoteVersion]:
        """Version snapshots of a note, oldest first."""
        query = (
            select(DBNoteVersion)
            .where(DBNoteVersion.note_id == note_id)
            .order_by(DBNoteVersion.id)
        )
        with self.session_factory() as session:
            rows = session.execute(query).scalars().all()
            return [
                NoteVersion(
                    note_id=row.note_id,
                    title=row.title,
                    content=row.content,
                    saved_at=ensure_timezone_aware(row.saved_at),
                )
                for row in rows
            ]

    def count_notes(self) -> Dict[str, int]:
        """Note counts keyed by status."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.status, func.count(DBNote.id)).group_by(DBNote.status)
            ).all()
        return {status: count for status, count in rows}

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def nearest_neighbors(
        self,
        vector: Sequence[float],
        limit: int,
        min_similarity: float,
        status: Optional[NoteStatus] = None,
        exclude_ids: Optional[Set[str]] = None,
        inclusive: bool = False,
    ) -> SimilarityOutcome:
        """Cosine nearest neighbours among notes with completed embeddings.

        Hits must score above ``min_similarity``, or at least equal it when
        ``inclusive`` is set. Stored vectors whose dimension differs from the
        query are skipped.

        Every call loads and scores all completed embeddings, so one query per
        note (as graph building does) costs O(n^2) over the note count.
        """
        if not self.similarity_enabled:
            return SimilarityOutcome.unsupported("similarity search disabled")

        try:
            query_vec = np.asarray(vector, dtype=np.float32)
            query_norm = float(np.linalg.norm(query_vec))
            if query_vec.ndim != 1 or query_norm == 0.0:
                return SimilarityOutcome.success([])

            query = (
                select(DBNote.id, DBNote.title, DBNote.content, DBNote.embedding)
                .where(DBNote.embed_status == EmbedStatus.COMPLETED.value)
                .where(DBNote.embedding.is_not(None))
            )
            if status is not None:
                query = query.where(DBNote.status == NoteStatus(status).value)

            with self.session_factory() as session:
                rows = session.execute(query).all()

            excluded = exclude_ids or set()
            candidates = []
            matrix = []
            for note_id, title, content, blob in rows:
                if note_id in excluded:
                    continue
                stored = _blob_to_vector(blob)
                if stored is None or stored.shape != query_vec.shape:
                    continue
                candidates.append((note_id, title, content))
                matrix.append(stored)

            if not candidates:
                return SimilarityOutcome.success([])

            stacked = np.vstack(matrix)
            norms = np.linalg.norm(stacked, axis=1)
            norms[norms == 0.0] = np.inf
            scores = np.clip(stacked @ query_vec / (norms * query_norm), -1.0, 1.0)

            order = np.argsort(-scores, kind="stable")
            hits: List[NeighborHit] = []
            for idx in order:
                score = float(scores[idx])
                if score < min_similarity or (score == min_similarity and not inclusive):
                    break
                note_id, title, content = candidates[idx]
                hits.append(
                    NeighborHit(
                        id=note_id,
                        title=title,
                        similarity=score,
                        snippet=make_snippet(content or ""),
                    )
                )
                if len(hits) >= limit:
                    break
            return SimilarityOutcome.success(hits)
        except Exception as e:
            logger.warning(f"Nearest-neighbour query failed: {e}")
            return SimilarityOutcome.failure(e)

    def full_text_search(self, query: str, limit: int) -> List[FullTextHit]:
        if is_blank(query):
            return []
        return self._fts.search(query, limit)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_note(self, note: Note) -> Note:
        db_note = DBNote(
            id=note.id,
            title=note.title,
            content=note.content,
            status=note.status.value,
            embed_status=note.embed_status.value,
            embed_error=note.embed_error,
            embedding=_vector_to_blob(note.embedding) if note.embedding is not None else None,
            created_at=_to_db_time(note.created_at),
            updated_at=_to_db_time(note.updated_at),
        )
        try:
            with self.session_factory() as session:
                session.add(db_note)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to add note {note.id}",
                operation="add_note",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        return note

    def _apply_update(self, session: Any, note: Note) -> None:
        """Copy the mutable fields of ``note`` onto its row in ``session``."""
        db_note = session.get(DBNote, note.id)
        if db_note is None:
            raise StorageError(
                f"Cannot update missing note {note.id}",
                operation="update_note",
                code=ErrorCode.STORAGE_WRITE_FAILED,
            )
        db_note.title = note.title
        db_note.content = note.content
        db_note.status = note.status.value
        db_note.embed_status = note.embed_status.value
        db_note.embed_error = note.embed_error
        db_note.updated_at = _to_db_time(note.updated_at)

    def update_note(self, note: Note) -> Note:
        """Persist title, content, status and embedding state of an existing note."""
        try:
            with self.session_factory() as session:
                self._apply_update(session, note)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to update note {note.id}",
                operation="update_note",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        return note

    @staticmethod
    def _version_row(version: NoteVersion) -> DBNoteVersion:
        return DBNoteVersion(
            note_id=version.note_id,
            title=version.title,
            content=version.content,
            saved_at=_to_db_time(version.saved_at),
        )

    def add_version(self, version: NoteVersion) -> None:
        try:
            with self.session_factory() as session:
                session.add(self._version_row(version))
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to save version of note {version.note_id}",
                operation="add_version",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def update_note_with_version(self, version: NoteVersion, note: Note) -> Note:
        """Save ``version`` and the updated ``note`` in one transaction.

        If the note update fails the snapshot is rolled back with it.
        """
        try:
            with self.session_factory() as session:
                session.add(self._version_row(version))
                self._apply_update(session, note)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to update note {note.id} with version",
                operation="update_note_with_version",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        return note

    def set_embedding(self, note_id: str, vector: Sequence[float]) -> bool:
        """Store a vector and mark the note's embedding completed.

        Returns:
            False if the note does not exist.
        """
        with self.session_factory() as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                return False
            db_note.embedding = _vector_to_blob(vector)
            db_note.embed_status = EmbedStatus.COMPLETED.value
            db_note.embed_error = None
            session.commit()
        return True

    def mark_seed_used(self, note_id: str) -> SeedUsageMarker:
        marker = SeedUsageMarker(note_id=note_id)
        with self.session_factory() as session:
            session.add(DBUsedSeedNote(note_id=marker.note_id, used_at=_to_db_time(marker.used_at)))
            session.commit()
        return marker
