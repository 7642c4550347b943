"""
Ledger collaborators: the abstract interface plus in-memory and
directory-backed implementations.
"""

from glyphscroll.ledger.base import Ledger, LocalSigner, Signer, TransactionRef
from glyphscroll.ledger.directory import DirectoryLedger
from glyphscroll.ledger.memory import InMemoryLedger

__all__ = [
    "Ledger",
    "Signer",
    "LocalSigner",
    "TransactionRef",
    "InMemoryLedger",
    "DirectoryLedger",
]
