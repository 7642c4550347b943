"""
glyph-scroll - Chunked publication and progressive, verified retrieval of
long-form text on an append-only ledger.
"""

from glyphscroll.core import Config
from glyphscroll.ledger import DirectoryLedger, InMemoryLedger, Ledger, LocalSigner
from glyphscroll.publishing import ManifestBuilder, ScrollPublisher, estimate_publication
from glyphscroll.retrieval import ScrollRetriever
from glyphscroll.storage import DirectoryStoryCache, MemoryStoryCache

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ManifestBuilder",
    "ScrollPublisher",
    "ScrollRetriever",
    "estimate_publication",
    "Ledger",
    "InMemoryLedger",
    "DirectoryLedger",
    "LocalSigner",
    "MemoryStoryCache",
    "DirectoryStoryCache",
]
