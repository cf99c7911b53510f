"""Common test fixtures for the Zettel Graph engine."""

import tempfile
from pathlib import Path

import pytest

from tests.fakes import FakeEmbeddingProvider, make_note
from zettel_graph.config import config
from zettel_graph.models.db_models import init_db
from zettel_graph.models.schema import Note
from zettel_graph.storage.note_store import SqlNoteStore


@pytest.fixture
def temp_db_dir():
    """Create a temporary directory for the database."""
    with tempfile.TemporaryDirectory() as db_dir:
        yield Path(db_dir)


@pytest.fixture
def test_config(temp_db_dir, monkeypatch):
    """Point the global config at a temp database with default tuning (auto-restored)."""
    monkeypatch.setattr(config, "database_path", temp_db_dir / "test_zettel_graph.db")
    monkeypatch.setattr(config, "similarity_enabled", True)
    monkeypatch.setattr(config, "semantic_threshold", 0.8)
    monkeypatch.setattr(config, "semantic_neighbor_count", 5)
    monkeypatch.setattr(config, "suggestion_threshold", 0.3)
    monkeypatch.setattr(config, "orphan_window_days", 30)
    monkeypatch.setattr(config, "top_cluster_count", 5)
    monkeypatch.setattr(config, "large_note_threshold", 4000)
    monkeypatch.setattr(config, "full_text_weight", 0.3)
    monkeypatch.setattr(config, "semantic_weight", 0.7)
    monkeypatch.setattr(config, "minimum_similarity", 0.5)
    monkeypatch.setattr(config, "minimum_hybrid_score", 0.1)
    monkeypatch.setattr(config, "full_text_limit", 50)
    monkeypatch.setattr(config, "semantic_limit", 20)
    yield config


@pytest.fixture
def engine(test_config):
    """A freshly initialised database engine."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    """A real SQLite note store with similarity enabled."""
    return SqlNoteStore(engine, similarity_enabled=True)


@pytest.fixture
def add_note(store):
    """Factory fixture: persist a note built by ``make_note`` and return it."""

    def _add(title: str, content: str = "", **kwargs) -> Note:
        return store.add_note(make_note(title, content, **kwargs))

    return _add


@pytest.fixture
def fake_embedder():
    """Create a small deterministic embedding provider."""
    return FakeEmbeddingProvider(dim=8)
