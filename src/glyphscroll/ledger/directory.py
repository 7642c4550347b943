"""
Directory-backed ledger for local publishing and reading.

Each transaction is one file, ``<ref>.tx``, holding the raw payload.
Transactions are never rewritten, so several processes can share a
directory as long as they only append.
"""

from pathlib import Path
from typing import Optional

from glyphscroll.core.errors import NotFoundError
from glyphscroll.ledger.base import TransactionRef
from glyphscroll.ledger.memory import InMemoryLedger


class DirectoryLedger(InMemoryLedger):
    """A ledger persisted as one file per transaction."""

    def __init__(self, ledger_dir: Path, max_payload_size: int = 1200):
        super().__init__(max_payload_size=max_payload_size)
        self.ledger_dir = Path(ledger_dir)
        self.ledger_dir.mkdir(parents=True, exist_ok=True)
        self._sequence = len(list(self.ledger_dir.glob("*.tx")))

    def _path(self, ref: TransactionRef) -> Path:
        # Refs come from users on the read path; keep them inside the directory
        if not ref or "/" in ref or "\\" in ref or ref.startswith("."):
            raise NotFoundError(f"Invalid transaction reference: {ref!r}", context={"ref": ref})
        return self.ledger_dir / f"{ref}.tx"

    def _store(self, ref: TransactionRef, payload: bytes):
        path = self._path(ref)
        temp_path = path.with_suffix(".tmp")
        temp_path.write_bytes(payload)
        temp_path.replace(path)

    def _load(self, ref: TransactionRef) -> Optional[bytes]:
        path = self._path(ref)
        if not path.exists():
            return None
        return path.read_bytes()
