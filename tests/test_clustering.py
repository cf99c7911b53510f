"""Tests for union-find clustering of the note graph."""
from zettel_graph.services.clustering import (UnionFind, build_clusters,
                                              summarize_clusters)


def _adjacency(ids, pairs):
    adjacency = {node_id: set() for node_id in ids}
    for left, right in pairs:
        adjacency[left].add(right)
        adjacency[right].add(left)
    return adjacency


def _counts(adjacency):
    return {node_id: len(neighbors) for node_id, neighbors in adjacency.items()}


class TestUnionFind:
    def test_singletons_are_their_own_roots(self):
        forest = UnionFind(["a", "b"])
        assert forest.find("a") == "a"
        assert forest.find("b") == "b"

    def test_union_merges_sets(self):
        forest = UnionFind(["a", "b", "c", "d"])
        forest.union("a", "b")
        forest.union("c", "d")
        forest.union("b", "d")
        roots = {forest.find(node_id) for node_id in "abcd"}
        assert len(roots) == 1

    def test_find_compresses_paths(self):
        forest = UnionFind(["a", "b", "c", "d"])
        forest.union("a", "b")
        forest.union("b", "c")
        forest.union("c", "d")
        root = forest.find("a")
        assert all(forest.parent[node_id] == root for node_id in "abcd")

    def test_union_of_same_set_is_noop(self):
        forest = UnionFind(["a", "b"])
        forest.union("a", "b")
        before = dict(forest.parent)
        forest.union("b", "a")
        assert forest.parent == before


class TestBuildClusters:
    def test_singletons_dropped(self):
        ids = ["a", "b", "c"]
        adjacency = _adjacency(ids, [("a", "b")])
        clusters = build_clusters(ids, adjacency, _counts(adjacency), {})
        assert [c.members for c in clusters] == [frozenset({"a", "b"})]

    def test_no_edges_no_clusters(self):
        ids = ["a", "b"]
        adjacency = _adjacency(ids, [])
        assert build_clusters(ids, adjacency, _counts(adjacency), {}) == []

    def test_empty_input(self):
        assert build_clusters([], {}, {}, {}) == []

    def test_ordered_by_size_then_first_member(self):
        ids = ["p", "q", "x", "y", "z", "m", "n"]
        adjacency = _adjacency(ids, [("p", "q"), ("x", "y"), ("y", "z"), ("m", "n")])
        clusters = build_clusters(ids, adjacency, _counts(adjacency), {})
        assert [c.members for c in clusters] == [
            frozenset({"x", "y", "z"}),
            frozenset({"p", "q"}),
            frozenset({"m", "n"}),
        ]

    def test_top_n_limits_result(self):
        ids = ["a", "b", "c", "d", "e", "f"]
        adjacency = _adjacency(ids, [("a", "b"), ("c", "d"), ("e", "f")])
        clusters = build_clusters(ids, adjacency, _counts(adjacency), {}, top_n=2)
        assert len(clusters) == 2
        assert clusters[0].members == frozenset({"a", "b"})

    def test_hub_has_most_neighbours(self):
        ids = ["leaf1", "center", "leaf2", "leaf3"]
        adjacency = _adjacency(
            ids, [("center", "leaf1"), ("center", "leaf2"), ("center", "leaf3")]
        )
        titles = {"center": "Center Note"}
        [cluster] = build_clusters(ids, adjacency, _counts(adjacency), titles)
        assert cluster.hub == "center"
        assert cluster.hub_title == "Center Note"
        assert cluster.size == 4

    def test_hub_tie_goes_to_smallest_id(self):
        ids = ["b2", "a1"]
        adjacency = _adjacency(ids, [("b2", "a1")])
        [cluster] = build_clusters(ids, adjacency, _counts(adjacency), {})
        assert cluster.hub == "a1"

    def test_neighbours_outside_note_set_ignored(self):
        ids = ["a", "b"]
        adjacency = {"a": {"ghost"}, "b": set(), "ghost": {"a"}}
        assert build_clusters(ids, adjacency, {"a": 1}, {}) == []

    def test_every_member_appears_in_exactly_one_cluster(self):
        ids = [f"n{i}" for i in range(10)]
        pairs = [("n0", "n1"), ("n1", "n2"), ("n3", "n4"), ("n5", "n6"), ("n6", "n7")]
        adjacency = _adjacency(ids, pairs)
        clusters = build_clusters(ids, adjacency, _counts(adjacency), {}, top_n=10)
        members = [m for c in clusters for m in c.members]
        assert len(members) == len(set(members)) == 8


def test_summarize_clusters():
    ids = ["a", "b", "c"]
    adjacency = _adjacency(ids, [("a", "b"), ("b", "c")])
    clusters = build_clusters(ids, adjacency, _counts(adjacency), {"b": "Bee"})

    [summary] = summarize_clusters(clusters)

    assert summary.hub_note_id == "b"
    assert summary.hub_title == "Bee"
    assert summary.note_count == 3
