"""Configuration module for the Zettel Graph engine."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from zettel_graph import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: survives reinstalls, lives alongside the database
_USER_ENV = Path.home() / ".zettel-graph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_ENV_PREFIX = "ZETTEL_GRAPH_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{_ENV_PREFIX}{name}", default)


def _env_flag(name: str, default: str) -> bool:
    return _env(name, default).lower() in ("true", "1", "yes")


class GraphConfig(BaseModel):
    """Configuration for graph building, health analysis and search."""

    # Base directory for the project
    base_dir: Path = Field(default_factory=lambda: Path(_env("BASE_DIR", ".")))
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(_env("DATABASE_PATH", "data/db/zettel_graph.db"))
    )
    # Server configuration
    server_name: str = Field(default_factory=lambda: _env("SERVER_NAME", "zettel-graph"))
    server_version: str = Field(default=__version__)

    # Similarity backend: when False the store reports nearest-neighbour
    # queries as unsupported and every caller takes its degrade path.
    similarity_enabled: bool = Field(
        default_factory=lambda: _env_flag("SIMILARITY_ENABLED", "true")
    )
    embedding_dim: int = Field(
        default_factory=lambda: int(_env("EMBEDDING_DIM", "768"))
    )

    # Graph building
    semantic_threshold: float = Field(
        default_factory=lambda: float(_env("SEMANTIC_THRESHOLD", "0.8"))
    )
    semantic_neighbor_count: int = Field(
        default_factory=lambda: int(_env("SEMANTIC_NEIGHBOR_COUNT", "5"))
    )

    # Health analysis
    # 0.3 works across embedding models with compressed score distributions;
    # raise toward 0.6 for models that spread similarities wider.
    suggestion_threshold: float = Field(
        default_factory=lambda: float(_env("SUGGESTION_THRESHOLD", "0.3"))
    )
    orphan_window_days: int = Field(
        default_factory=lambda: int(_env("ORPHAN_WINDOW_DAYS", "30"))
    )
    top_cluster_count: int = Field(
        default_factory=lambda: int(_env("TOP_CLUSTER_COUNT", "5"))
    )
    large_note_threshold: int = Field(
        default_factory=lambda: int(_env("LARGE_NOTE_THRESHOLD", "4000"))
    )

    # Hybrid search weighting
    full_text_weight: float = Field(
        default_factory=lambda: float(_env("FULL_TEXT_WEIGHT", "0.3"))
    )
    semantic_weight: float = Field(
        default_factory=lambda: float(_env("SEMANTIC_WEIGHT", "0.7"))
    )
    minimum_similarity: float = Field(
        default_factory=lambda: float(_env("MINIMUM_SIMILARITY", "0.5"))
    )
    minimum_hybrid_score: float = Field(
        default_factory=lambda: float(_env("MINIMUM_HYBRID_SCORE", "0.1"))
    )
    full_text_limit: int = Field(
        default_factory=lambda: int(_env("FULL_TEXT_LIMIT", "50"))
    )
    semantic_limit: int = Field(
        default_factory=lambda: int(_env("SEMANTIC_LIMIT", "20"))
    )

    @model_validator(mode="after")
    def _validate_ranges(self) -> "GraphConfig":
        """Reject out-of-range weights, thresholds and counts."""
        for name in (
            "semantic_threshold",
            "suggestion_threshold",
            "full_text_weight",
            "semantic_weight",
            "minimum_similarity",
            "minimum_hybrid_score",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")

        if self.orphan_window_days < 0:
            raise ValueError("orphan_window_days must be >= 0")
        if self.top_cluster_count < 1:
            raise ValueError("top_cluster_count must be >= 1")
        if self.semantic_neighbor_count < 1:
            raise ValueError("semantic_neighbor_count must be >= 1")
        if self.full_text_limit < 1 or self.semantic_limit < 1:
            raise ValueError("search limits must be >= 1")

        if self.full_text_weight == 0 and self.semantic_weight == 0:
            logger.warning(
                "Both hybrid search weights are 0; every hybrid result will "
                "score 0 and be filtered out."
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = GraphConfig()
