"""Extraction of [[Title]] references from note content."""
import re
from typing import Iterator

WIKILINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")


def extract_referenced_titles(content: str) -> Iterator[str]:
    """Yield every title referenced as ``[[Title]]``, in order, duplicates kept.

    Each call returns a fresh generator; text outside the brackets is ignored.
    """
    if not content:
        return
    for match in WIKILINK_PATTERN.finditer(content):
        yield match.group(1)


def format_wikilink(title: str) -> str:
    return f"[[{title}]]"
