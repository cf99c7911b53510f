"""Tests for [[Title]] reference extraction."""
from zettel_graph.services.wikilinks import extract_referenced_titles, format_wikilink


class TestExtractReferencedTitles:
    def test_single_reference(self):
        assert list(extract_referenced_titles("See [[Alpha]] for details")) == ["Alpha"]

    def test_references_in_order_with_duplicates(self):
        content = "[[B]] then [[A]] and again [[B]]"
        assert list(extract_referenced_titles(content)) == ["B", "A", "B"]

    def test_no_references(self):
        assert list(extract_referenced_titles("plain text, [single] brackets")) == []

    def test_empty_content(self):
        assert list(extract_referenced_titles("")) == []

    def test_empty_brackets_ignored(self):
        assert list(extract_referenced_titles("[[]] and [[Real]]")) == ["Real"]

    def test_title_keeps_inner_whitespace(self):
        assert list(extract_referenced_titles("[[ Spaced Title ]]")) == [" Spaced Title "]

    def test_unclosed_reference_ignored(self):
        assert list(extract_referenced_titles("[[Open and [[Closed]]")) == ["Open and [[Closed"]

    def test_multiline_content(self):
        content = "line one [[One]]\nline two [[Two]]"
        assert list(extract_referenced_titles(content)) == ["One", "Two"]

    def test_each_call_is_a_fresh_sequence(self):
        content = "[[X]] [[Y]]"
        first = extract_referenced_titles(content)
        assert list(first) == ["X", "Y"]
        assert list(first) == []
        assert list(extract_referenced_titles(content)) == ["X", "Y"]


def test_format_wikilink():
    assert format_wikilink("Target Note") == "[[Target Note]]"
