"""
Zettel Graph - note-graph construction, clustering and hybrid retrieval for a
personal knowledge base.

Notes are connected by explicit [[wiki-links]] and by nearest-neighbour
similarity of their embeddings. This package builds the merged graph, clusters
it, reports knowledge-base health and ranks search results by fusing full-text
and vector relevance.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("zettel-graph")
except PackageNotFoundError:
    __version__ = "0.3.0"
