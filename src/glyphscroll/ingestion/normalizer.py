"""
Text preprocessing for glyph-scroll.

Optional cleanup of manuscripts before publication. Publishing is lossless
either way; preprocessing only decides which text gets published.
"""

import re


def clean_dialog_breaks(text: str) -> str:
    """Join dialog lines that were hard-wrapped mid-sentence."""
    # Closing quote, newline, lowercase continuation
    text = re.sub(r'"\s*\n\s*([a-z])', r" \1", text)
    text = re.sub(r'"\s+"', '" "', text)
    # Sentence end, quote, next sentence
    text = re.sub(r'([.!?])\s*"\s*([A-Z])', r'\1" \2', text)
    return text


def preprocess_text(text: str) -> str:
    """
    Normalize a manuscript for publication.

    - Dialog line-break cleanup
    - CRLF/CR to LF
    - Runs of spaces/tabs collapsed, line-edge whitespace stripped
    - At most one blank line between paragraphs
    - Leading/trailing whitespace trimmed

    Args:
        text: Raw manuscript text

    Returns:
        Normalized text
    """
    if not isinstance(text, str):
        raise TypeError("Text must be a string")

    text = clean_dialog_breaks(text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n[ \t]+", "\n", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
