"""
Tests for manuscript parsing and preprocessing.
"""

import pytest

from glyphscroll.ingestion.normalizer import preprocess_text
from glyphscroll.ingestion.parsers import parse_manuscript


def test_preprocess_normalizes_whitespace():
    """Test preprocessing normalizes line endings and whitespace."""
    raw = "  Line one\r\nLine   two\t\there  \r\n\r\n\r\n\r\nLine three  "
    assert preprocess_text(raw) == "Line one\nLine two here\n\nLine three"


def test_preprocess_spaces_dialog_after_sentence_end():
    """Test dialog after a sentence end gets a space."""
    raw = '"Go home."She did.'
    assert preprocess_text(raw) == '"Go home." She did.'


def test_preprocess_rejects_non_string():
    """Test preprocessing rejects non-string input."""
    with pytest.raises(TypeError):
        preprocess_text(b"bytes")


def test_parse_text_uses_file_name(tmp_path):
    """Test a plain text file is titled by its file name."""
    path = tmp_path / "night_watch.txt"
    path.write_text("It was late.", encoding="utf-8")

    manuscript = parse_manuscript(path)
    assert manuscript.title == "night_watch"
    assert manuscript.text == "It was late."
    assert manuscript.source_path == str(path)


def test_parse_markdown_heading_is_title(tmp_path):
    """Test a markdown heading becomes the title."""
    path = tmp_path / "draft.md"
    path.write_text("# The Night Watch\n\nIt was late.", encoding="utf-8")

    manuscript = parse_manuscript(path)
    assert manuscript.title == "The Night Watch"
    assert manuscript.text.startswith("# The Night Watch")


def test_parse_unicode_text(tmp_path):
    """Test unicode text is read intact."""
    path = tmp_path / "poem.txt"
    path.write_text("Über die Brücke, naïve café 🌙", encoding="utf-8")
    assert parse_manuscript(path).text == "Über die Brücke, naïve café 🌙"


def test_unsupported_type(tmp_path):
    """Test unsupported file types are rejected."""
    path = tmp_path / "story.docx"
    path.write_bytes(b"PK")
    with pytest.raises(ValueError):
        parse_manuscript(path)
