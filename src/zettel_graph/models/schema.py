"""Data models for the Zettel Graph engine."""

import datetime
import os
import threading
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes; everything the store writes is UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a time-ordered note id.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc": the UTC date and
        time, six microsecond digits, then a six digit counter that keeps ids
        unique within one microsecond and across processes.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)

        if current_timestamp == _last_timestamp:
            _counter += 1
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000

        _counter %= 1_000_000

        return f"{now.strftime('%Y%m%dT%H%M%S')}{now.microsecond:06d}{_counter:06d}"


class NoteStatus(str, Enum):
    """Lifecycle status of a note."""

    PERMANENT = "permanent"  # Curated notes; the only ones health analysis looks at
    FLEETING = "fleeting"  # Quick captures not yet worked into the knowledge base


class EmbedStatus(str, Enum):
    """State of a note's embedding vector."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"  # Vector present and current
    FAILED = "failed"
    STALE = "stale"  # Content changed since the vector was computed


class EdgeKind(str, Enum):
    """Source of a graph edge."""

    WIKILINK = "wikilink"
    SEMANTIC = "semantic"


class Note(BaseModel):
    """A knowledge-base note as read by the engine."""

    id: str = Field(default_factory=generate_id, description="Unique time-ordered ID")
    title: str = Field(..., description="Title of the note")
    content: str = Field(default="", description="Body, may contain [[Title]] references")
    status: NoteStatus = Field(default=NoteStatus.PERMANENT, description="Lifecycle status")
    embed_status: EmbedStatus = Field(
        default=EmbedStatus.PENDING, description="State of the embedding vector"
    )
    embed_error: Optional[str] = Field(
        default=None, description="Last embedding failure message"
    )
    # Only populated when explicitly requested from the store
    embedding: Optional[List[float]] = Field(default=None, exclude=True, repr=False)
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @property
    def has_completed_embedding(self) -> bool:
        return self.embed_status == EmbedStatus.COMPLETED


class NoteVersion(BaseModel):
    """Snapshot of a note's title and content taken before a mutation."""

    note_id: str
    title: str
    content: str
    saved_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class SeedUsageMarker(BaseModel):
    """Records that a note was consumed as a generation seed elsewhere."""

    note_id: str
    used_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class GraphNode(BaseModel):
    id: str
    title: str
    edge_count: int = 0


class GraphEdge(BaseModel):
    """An edge derived per request; never persisted."""

    source: str
    target: str
    kind: EdgeKind
    weight: float = 1.0

    model_config = {"frozen": True}


class GraphData(BaseModel):
    """Node/edge payload consumed by graph-rendering front ends."""

    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


@dataclass(frozen=True)
class Cluster:
    """A connected component of the note graph.

    Attributes:
        members: Ids of every note in the component.
        hub: The member with the most distinct neighbours.
        hub_title: Title of the hub note.
    """

    members: FrozenSet[str]
    hub: str
    hub_title: str = ""

    @property
    def size(self) -> int:
        return len(self.members)


class ClusterSummary(BaseModel):
    hub_note_id: str
    hub_title: str
    note_count: int


class KbHealthScorecard(BaseModel):
    """Aggregate knowledge-base counts computed per request."""

    total_notes: int = 0
    embedded_percent: int = 0
    orphan_count: int = 0
    average_connections: float = 0.0


class UnconnectedNote(BaseModel):
    id: str
    title: str
    created_at: datetime.datetime
    # Upper bound on suggestions on offer; 0 until the note is embedded
    suggestion_count: int = 0


class UnusedSeedNote(BaseModel):
    id: str
    title: str
    connection_count: int


class KbHealthOverview(BaseModel):
    """Dashboard payload: scorecard plus the three advisory lists."""

    scorecard: KbHealthScorecard = Field(default_factory=KbHealthScorecard)
    new_and_unconnected: List[UnconnectedNote] = Field(default_factory=list)
    richest_clusters: List[ClusterSummary] = Field(default_factory=list)
    never_used_as_seeds: List[UnusedSeedNote] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "KbHealthOverview":
        return cls()


class ConnectionSuggestion(BaseModel):
    note_id: str
    title: str
    similarity: float


class SearchResult(BaseModel):
    """A ranked search hit; ``rank`` is in [0, 1] for hybrid and semantic results."""

    note_id: str
    title: str
    snippet: str = ""
    rank: float


class BacklinkResult(BaseModel):
    id: str
    title: str


class UnembeddedNote(BaseModel):
    id: str
    title: str
    embed_status: EmbedStatus
    embed_error: Optional[str] = None
    created_at: datetime.datetime


class LargeNote(BaseModel):
    id: str
    title: str
    character_count: int
    updated_at: datetime.datetime
