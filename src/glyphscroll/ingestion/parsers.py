"""
Manuscript parsers for glyph-scroll.

TXT/Markdown and PDF only.
"""

import logging
from pathlib import Path

try:
    import fitz  # PyMuPDF
except ImportError:
    fitz = None

from glyphscroll.core.contracts import Manuscript

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = (".txt", ".text", ".md", ".markdown")


def parse_manuscript(file_path: Path) -> Manuscript:
    """
    Parse a manuscript based on file extension.

    Args:
        file_path: Path to the manuscript

    Returns:
        Manuscript object

    Raises:
        ValueError: If the file type is not supported
    """
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()

    if suffix == ".pdf":
        return parse_pdf(file_path)
    elif suffix in TEXT_SUFFIXES:
        return parse_text(file_path)
    raise ValueError(f"Unsupported manuscript type: {suffix or file_path.name}")


def parse_pdf(file_path: Path) -> Manuscript:
    """
    Parse a PDF manuscript using PyMuPDF.

    Pages are joined with a single newline; the PDF title metadata wins
    over the file name when present.
    """
    if fitz is None:
        raise ImportError("PyMuPDF (pymupdf) is required for PDF parsing")

    doc = fitz.open(file_path)
    try:
        pages = [page.get_text() for page in doc]
        title = (doc.metadata or {}).get("title") or file_path.stem
    finally:
        doc.close()

    logger.info(f"Parsed {len(pages)} pages from {file_path}")
    return Manuscript(
        title=title,
        text="\n".join(pages),
        source_path=str(file_path),
        metadata={"pages": len(pages)},
    )


def parse_text(file_path: Path) -> Manuscript:
    """
    Parse a UTF-8 text or Markdown manuscript.

    A Markdown file whose first line is a ``# `` heading takes its title
    from that heading; otherwise the file name is the title.
    """
    text = file_path.read_text(encoding="utf-8")
    title = file_path.stem

    if file_path.suffix.lower() in (".md", ".markdown"):
        first_line = text.lstrip().split("\n", 1)[0]
        if first_line.startswith("# "):
            title = first_line[2:].strip() or title

    return Manuscript(title=title, text=text, source_path=str(file_path), metadata={})
