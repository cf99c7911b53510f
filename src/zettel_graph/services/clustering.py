"""Connected components of the note graph via union-find."""
from typing import Dict, Iterable, List, Mapping, Sequence, Set

from zettel_graph.models.schema import Cluster, ClusterSummary


class UnionFind:
    """Disjoint sets over note ids with path compression.

    Built fresh for every clustering call and discarded afterwards.
    """

    def __init__(self, ids: Iterable[str]) -> None:
        self.parent: Dict[str, str] = {node_id: node_id for node_id in ids}

    def find(self, node_id: str) -> str:
        root = node_id
        while self.parent[root] != root:
            root = self.parent[root]
        # Point every node on the path straight at the root
        while self.parent[node_id] != root:
            self.parent[node_id], node_id = root, self.parent[node_id]
        return root

    def union(self, left: str, right: str) -> None:
        root_left = self.find(left)
        root_right = self.find(right)
        if root_left != root_right:
            self.parent[root_left] = root_right


def _select_hub(members: Sequence[str], edge_counts: Mapping[str, int]) -> str:
    """Highest edge count wins; ties go to the smallest id."""
    return min(members, key=lambda member: (-edge_counts.get(member, 0), member))


def _make_cluster(
    members: Sequence[str],
    edge_counts: Mapping[str, int],
    titles: Mapping[str, str],
) -> Cluster:
    hub = _select_hub(members, edge_counts)
    return Cluster(members=frozenset(members), hub=hub, hub_title=titles.get(hub, ""))


def build_clusters(
    note_ids: Sequence[str],
    adjacency: Mapping[str, Set[str]],
    edge_counts: Mapping[str, int],
    titles: Mapping[str, str],
    top_n: int = 5,
) -> List[Cluster]:
    """Group notes into connected components and return the largest.

    Singletons are dropped. Components are ordered by size descending, ties
    keeping the order in which their first member appears in ``note_ids``.

    Args:
        note_ids: Every note under consideration.
        adjacency: Undirected neighbour sets keyed by note id.
        edge_counts: Distinct neighbour count per note, used to pick hubs.
        titles: Note titles keyed by id, carried onto each hub.
        top_n: How many clusters to return.
    """
    if not note_ids or top_n <= 0:
        return []

    known = set(note_ids)
    forest = UnionFind(note_ids)
    for node_id, neighbors in adjacency.items():
        if node_id not in known:
            continue
        for neighbor in neighbors:
            if neighbor in known:
                forest.union(node_id, neighbor)

    groups: Dict[str, List[str]] = {}
    for node_id in note_ids:
        groups.setdefault(forest.find(node_id), []).append(node_id)

    components = [members for members in groups.values() if len(members) > 1]
    components.sort(key=len, reverse=True)

    return [
        _make_cluster(members, edge_counts, titles)
        for members in components[:top_n]
    ]


def summarize_clusters(clusters: Iterable[Cluster]) -> List[ClusterSummary]:
    return [
        ClusterSummary(
            hub_note_id=cluster.hub,
            hub_title=cluster.hub_title,
            note_count=cluster.size,
        )
        for cluster in clusters
    ]
