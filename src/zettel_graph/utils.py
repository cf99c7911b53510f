"""Utility functions for the Zettel Graph engine."""
import threading
from typing import Optional

from zettel_graph.exceptions import OperationCancelledError

SNIPPET_LENGTH = 200


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def make_snippet(content: str, length: int = SNIPPET_LENGTH) -> str:
    """First ``length`` characters of the content, with an ellipsis if cut."""
    if len(content) <= length:
        return content
    return content[:length] + "..."


def is_blank(query: Optional[str]) -> bool:
    return query is None or not query.strip()


def raise_if_cancelled(cancel: Optional[threading.Event], operation: str) -> None:
    """Raise OperationCancelledError when the caller has set ``cancel``."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError(operation)
