"""
Read path: verified, progressive story retrieval.
"""

from glyphscroll.retrieval.reassembly import ReassemblyState
from glyphscroll.retrieval.retriever import RetrievalSession, ScrollRetriever

__all__ = [
    "ReassemblyState",
    "RetrievalSession",
    "ScrollRetriever",
]
