"""MCP server exposing the Zettel Graph engine."""
