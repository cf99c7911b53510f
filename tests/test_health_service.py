"""Tests for knowledge-base health analysis."""
import threading
from decimal import Decimal

import pytest

from tests.fakes import (EmbeddingReadCountingStore, FailingNoteLoadStore,
                         FailingSeedStore, FailingSimilarityStore,
                         UnsupportedSimilarityStore, make_note)
from zettel_graph.exceptions import OperationCancelledError, StorageError
from zettel_graph.models.schema import EmbedStatus, NoteStatus
from zettel_graph.services.health_service import KbHealthService, round_half_up

VEC_X = [1.0, 0.0, 0.0]
VEC_Y = [0.0, 1.0, 0.0]


class TestRoundHalfUp:
    def test_half_rounds_up(self):
        assert round_half_up(66.5) == 67
        assert round_half_up(12.5) == 13

    def test_one_decimal(self):
        assert round_half_up(0.25, 1) == Decimal("0.3")
        assert round_half_up(2 / 3, 1) == Decimal("0.7")

    def test_below_half_rounds_down(self):
        assert round_half_up(66.49) == 66


class TestOverview:
    def test_end_to_end_scorecard(self, store, add_note):
        a = add_note("A", "See [[B]]", embedding=VEC_X, days_old=3)
        b = add_note("B", embedding=VEC_Y, days_old=2)
        c = add_note("C", days_old=1)

        overview = KbHealthService(store).get_overview()
        card = overview.scorecard

        assert card.total_notes == 3
        assert card.embedded_percent == 67
        assert card.orphan_count == 1
        assert card.average_connections == 0.7

        assert [n.id for n in overview.new_and_unconnected] == [c.id]
        assert overview.new_and_unconnected[0].suggestion_count == 0

        [cluster] = overview.richest_clusters
        assert cluster.note_count == 2
        assert cluster.hub_note_id == min(a.id, b.id)
        assert cluster.hub_title == ("A" if cluster.hub_note_id == a.id else "B")

        assert [n.id for n in overview.never_used_as_seeds] == [a.id, b.id]
        assert all(n.connection_count == 1 for n in overview.never_used_as_seeds)

    def test_overview_reuses_listed_embeddings(self, engine):
        store = EmbeddingReadCountingStore(engine)
        store.add_note(make_note("A", embedding=VEC_X, days_old=2))
        store.add_note(make_note("B", embedding=[0.9, 0.1, 0.0], days_old=1))

        overview = KbHealthService(store).get_overview()

        assert overview.scorecard.average_connections == 1.0
        assert store.embedding_reads == 0

    def test_empty_knowledge_base(self, store):
        overview = KbHealthService(store).get_overview()
        assert overview.scorecard.total_notes == 0
        assert overview.scorecard.embedded_percent == 0
        assert overview.scorecard.average_connections == 0.0
        assert overview.new_and_unconnected == []
        assert overview.richest_clusters == []
        assert overview.never_used_as_seeds == []

    def test_fleeting_notes_ignored(self, store, add_note):
        add_note("Permanent", days_old=2)
        add_note("Fleeting", "[[Permanent]]", status=NoteStatus.FLEETING, days_old=1)

        overview = KbHealthService(store).get_overview()

        assert overview.scorecard.total_notes == 1
        assert overview.scorecard.orphan_count == 1
        assert overview.richest_clusters == []

    def test_old_unconnected_notes_are_not_orphans(self, store, add_note):
        add_note("Old", days_old=45)
        recent = add_note("Recent", days_old=2)

        overview = KbHealthService(store).get_overview()

        assert overview.scorecard.total_notes == 2
        assert [n.id for n in overview.new_and_unconnected] == [recent.id]

    def test_orphan_window_override(self, store, add_note):
        add_note("Old", days_old=45)

        overview = KbHealthService(store).get_overview(orphan_window_days=60)

        assert overview.scorecard.orphan_count == 1

    def test_orphans_sorted_newest_first(self, store, add_note):
        oldest = add_note("One", days_old=10)
        newest = add_note("Two", days_old=1)
        middle = add_note("Three", days_old=5)

        overview = KbHealthService(store).get_overview()

        assert [n.id for n in overview.new_and_unconnected] == [newest.id, middle.id, oldest.id]

    def test_embedded_orphan_advertises_suggestions(self, store, add_note):
        add_note("Lonely", embedding=VEC_X, days_old=1)

        overview = KbHealthService(store).get_overview()

        assert overview.new_and_unconnected[0].suggestion_count == 5

    def test_semantic_edges_use_suggestion_threshold(self, store, add_note):
        # cosine about 0.45: above the suggestion threshold, below the graph one
        a = add_note("A", embedding=[1.0, 0.0], days_old=2)
        b = add_note("B", embedding=[0.45, 0.89], days_old=1)

        overview = KbHealthService(store).get_overview()

        assert overview.scorecard.orphan_count == 0
        assert overview.scorecard.average_connections == 1.0
        assert overview.richest_clusters[0].hub_note_id == min(a.id, b.id)

    def test_top_cluster_count(self, store, add_note):
        add_note("A", "[[B]]", days_old=4)
        add_note("B", days_old=3)
        add_note("C", "[[D]]", days_old=2)
        add_note("D", days_old=1)

        overview = KbHealthService(store).get_overview(top_cluster_count=1)

        assert len(overview.richest_clusters) == 1

    def test_used_seeds_excluded(self, store, add_note):
        a = add_note("A", embedding=VEC_X, days_old=2)
        b = add_note("B", embedding=VEC_Y, days_old=1)
        store.mark_seed_used(a.id)

        overview = KbHealthService(store).get_overview()

        assert [n.id for n in overview.never_used_as_seeds] == [b.id]

    def test_unused_seeds_sorted_by_connections(self, store, add_note):
        lonely = add_note("Lonely", embedding=VEC_X, days_old=3)
        hub = add_note("Hub", "[[Leaf1]] [[Leaf2]]", embedding=VEC_Y, days_old=2)
        add_note("Leaf1", days_old=1)
        add_note("Leaf2", days_old=1)

        overview = KbHealthService(store).get_overview()

        assert [n.id for n in overview.never_used_as_seeds] == [hub.id, lonely.id]
        assert overview.never_used_as_seeds[0].connection_count == 2


class TestOverviewDegradePaths:
    def test_unsupported_similarity_uses_wikilinks_only(self, engine):
        store = UnsupportedSimilarityStore(engine)
        store.add_note(make_note("A", "[[B]]", embedding=VEC_X, days_old=3))
        store.add_note(make_note("B", embedding=[0.9, 0.1, 0.0], days_old=2))
        store.add_note(make_note("C", embedding=[0.9, 0.0, 0.1], days_old=1))

        overview = KbHealthService(store).get_overview()

        assert overview.scorecard.orphan_count == 1
        assert overview.richest_clusters[0].note_count == 2

    def test_failing_similarity_uses_wikilinks_only(self, engine):
        store = FailingSimilarityStore(engine, raise_error=True)
        store.add_note(make_note("A", "[[B]]", embedding=VEC_X, days_old=2))
        store.add_note(make_note("B", embedding=VEC_X, days_old=1))

        overview = KbHealthService(store).get_overview()

        assert overview.scorecard.average_connections == 1.0

    def test_note_load_failure_propagates(self, engine):
        service = KbHealthService(FailingNoteLoadStore(engine))
        with pytest.raises(StorageError):
            service.get_overview()

    def test_safe_overview_never_raises(self, engine):
        overview = KbHealthService(FailingNoteLoadStore(engine)).safe_overview()
        assert overview.scorecard.total_notes == 0
        assert overview.new_and_unconnected == []

    def test_seed_marker_failure_treated_as_empty(self, engine):
        store = FailingSeedStore(engine, similarity_enabled=True)
        a = store.add_note(make_note("A", embedding=VEC_X, days_old=1))

        overview = KbHealthService(store).get_overview()

        assert [n.id for n in overview.never_used_as_seeds] == [a.id]

    def test_cancelled(self, store, add_note):
        add_note("A")
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            KbHealthService(store).get_overview(cancel=cancel)


class TestConnectionSuggestions:
    def test_ordered_by_similarity(self, store, add_note):
        note = add_note("Note", embedding=[1.0, 0.0, 0.0], days_old=4)
        close = add_note("Close", embedding=[1.0, 0.2, 0.0], days_old=3)
        closer = add_note("Closer", embedding=[1.0, 0.1, 0.0], days_old=2)
        add_note("Far", embedding=[0.0, 1.0, 0.0], days_old=1)

        suggestions = KbHealthService(store).get_connection_suggestions(note.id)

        assert [s.note_id for s in suggestions] == [closer.id, close.id]
        assert suggestions[0].similarity > suggestions[1].similarity > 0.3

    def test_limit(self, store, add_note):
        note = add_note("Note", embedding=VEC_X, days_old=3)
        add_note("One", embedding=[1.0, 0.1, 0.0], days_old=2)
        add_note("Two", embedding=[1.0, 0.2, 0.0], days_old=1)

        assert len(KbHealthService(store).get_connection_suggestions(note.id, limit=1)) == 1

    def test_fleeting_and_unembedded_targets_excluded(self, store, add_note):
        note = add_note("Note", embedding=VEC_X, days_old=3)
        add_note("Fleeting", embedding=VEC_X, status=NoteStatus.FLEETING, days_old=2)
        add_note("Pending", days_old=1)

        assert KbHealthService(store).get_connection_suggestions(note.id) == []

    def test_missing_note(self, store):
        assert KbHealthService(store).get_connection_suggestions("missing") == []

    def test_note_without_completed_embedding(self, store, add_note):
        note = add_note("Stale", embedding=VEC_X, embed_status=EmbedStatus.STALE)
        add_note("Other", embedding=VEC_X)

        assert KbHealthService(store).get_connection_suggestions(note.id) == []

    def test_unsupported_similarity(self, engine):
        store = UnsupportedSimilarityStore(engine)
        note = store.add_note(make_note("Note", embedding=VEC_X))
        assert KbHealthService(store).get_connection_suggestions(note.id) == []

    def test_failing_similarity(self, engine):
        store = FailingSimilarityStore(engine, raise_error=True)
        note = store.add_note(make_note("Note", embedding=VEC_X))
        assert KbHealthService(store).get_connection_suggestions(note.id) == []


class TestEmbeddingReports:
    def test_notes_without_embeddings_ordered(self, store, add_note):
        add_note("Done", embedding=VEC_X, days_old=1)
        failed = add_note("Failed", embed_status=EmbedStatus.FAILED, days_old=1)
        old_pending = add_note("Old pending", days_old=5)
        new_pending = add_note("New pending", days_old=2)
        add_note("Fleeting", status=NoteStatus.FLEETING)

        report = KbHealthService(store).get_notes_without_embeddings()

        assert [n.id for n in report] == [new_pending.id, old_pending.id, failed.id]
        assert report[2].embed_status == EmbedStatus.FAILED

    def test_requeue_embedding(self, store, add_note):
        note = add_note("Failed", embed_status=EmbedStatus.FAILED)
        store.update_note(note.model_copy(update={"embed_error": "timeout"}))

        assert KbHealthService(store).requeue_embedding(note.id) == 1

        reloaded = store.get_note(note.id)
        assert reloaded.embed_status == EmbedStatus.PENDING
        assert reloaded.embed_error is None

    def test_requeue_missing_note(self, store):
        assert KbHealthService(store).requeue_embedding("missing") == 0

    def test_large_notes(self, store, add_note):
        add_note("Small", "x" * 10)
        big = add_note("Big", "x" * 50)
        bigger = add_note("Bigger", "x" * 80)

        large = KbHealthService(store).get_large_notes(threshold=20)

        assert [(n.id, n.character_count) for n in large] == [(bigger.id, 80), (big.id, 50)]

    def test_large_notes_default_threshold(self, store, add_note):
        add_note("Medium", "x" * 4000)
        huge = add_note("Huge", "x" * 4001)

        assert [n.id for n in KbHealthService(store).get_large_notes()] == [huge.id]
