"""SQLAlchemy database models for the Zettel Graph engine."""
import datetime
from typing import Optional

from sqlalchemy import (Column, DateTime, ForeignKey, Integer, LargeBinary,
                        String, Text, create_engine, event, text)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from zettel_graph.config import config
from zettel_graph.models.schema import EmbedStatus, NoteStatus


def _utc_naive() -> datetime.datetime:
    # SQLite has no timezone type; store naive UTC
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(255), primary_key=True, index=True)
    title = Column(String(255), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    status = Column(String(20), default=NoteStatus.PERMANENT.value, nullable=False, index=True)
    embed_status = Column(
        String(20), default=EmbedStatus.PENDING.value, nullable=False, index=True
    )
    embed_error = Column(Text, nullable=True)
    # float32 vector bytes; only read when a caller asks for it
    embedding = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime, default=_utc_naive, nullable=False)
    updated_at = Column(DateTime, default=_utc_naive, nullable=False, index=True)

    versions = relationship(
        "DBNoteVersion", back_populates="note", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBNoteVersion(Base):
    """Audit snapshot of a note's title and content."""
    __tablename__ = "note_versions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(String(255), ForeignKey("notes.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    saved_at = Column(DateTime, default=_utc_naive, nullable=False)

    note = relationship("DBNote", back_populates="versions")

    def __repr__(self) -> str:
        return f"<NoteVersion(note_id='{self.note_id}', saved_at='{self.saved_at}')>"


class DBUsedSeedNote(Base):
    """Marks a note as already consumed as a generation seed."""
    __tablename__ = "used_seed_notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(String(255), nullable=False, index=True)
    used_at = Column(DateTime, default=_utc_naive, nullable=False)


def init_db(db_url: Optional[str] = None):
    """Initialize the database and return its engine.

    Applies SQLite settings for crash resilience:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    - QueuePool with pre-ping so stale connections are replaced
    """
    engine = create_engine(
        db_url or config.get_db_url(),
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    init_fts5(engine)

    return engine


def init_fts5(engine) -> None:
    """Create the FTS5 external-content table over notes and its sync triggers.

    Only title and content are indexed; the id column rides along unindexed
    so search results can be mapped back without a join.
    """
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
                id UNINDEXED,
                title,
                content,
                content='notes',
                content_rowid='rowid'
            )
        """))

        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS notes_ai AFTER INSERT ON notes BEGIN
                INSERT INTO notes_fts(rowid, id, title, content)
                VALUES (NEW.rowid, NEW.id, NEW.title, NEW.content);
            END
        """))

        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS notes_ad AFTER DELETE ON notes BEGIN
                INSERT INTO notes_fts(notes_fts, rowid, id, title, content)
                VALUES ('delete', OLD.rowid, OLD.id, OLD.title, OLD.content);
            END
        """))

        # Embedding and status writes leave the indexed text alone
        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS notes_au AFTER UPDATE OF title, content ON notes BEGIN
                INSERT INTO notes_fts(notes_fts, rowid, id, title, content)
                VALUES ('delete', OLD.rowid, OLD.id, OLD.title, OLD.content);
                INSERT INTO notes_fts(rowid, id, title, content)
                VALUES (NEW.rowid, NEW.id, NEW.title, NEW.content);
            END
        """))

        conn.commit()


def rebuild_fts_index(engine) -> int:
    """Rebuild the FTS5 index from the notes table.

    Returns:
        Number of notes indexed.
    """
    with engine.connect() as conn:
        conn.execute(text("INSERT INTO notes_fts(notes_fts) VALUES('rebuild')"))
        conn.commit()
        count = conn.execute(text("SELECT COUNT(*) FROM notes")).scalar()

    return count or 0


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
