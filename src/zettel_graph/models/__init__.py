"""Data models for the Zettel Graph engine."""
