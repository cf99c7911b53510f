"""Graph, health and search services."""
