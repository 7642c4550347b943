"""
Manuscript intake and the write-path chunking stages: parsing,
preprocessing, fixed-size chunking and hash-list construction.
"""

from glyphscroll.ingestion.chunker import FixedSizeChunker
from glyphscroll.ingestion.hash_list import HashList, HashListBuilder
from glyphscroll.ingestion.normalizer import preprocess_text
from glyphscroll.ingestion.parsers import parse_manuscript, parse_pdf, parse_text

__all__ = [
    "parse_manuscript",
    "parse_pdf",
    "parse_text",
    "preprocess_text",
    "FixedSizeChunker",
    "HashList",
    "HashListBuilder",
]
