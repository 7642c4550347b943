"""
Hash list construction and verification.

The hash list is the ordered list of per-glyph digests. Its raw bytes are
chunked like content so each piece fits one transaction, and the manifest
root commits to the digests of those pieces.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from glyphscroll.core.contracts import ContentChunk, HashListChunk
from glyphscroll.core.envelope import DIGEST_SIZE
from glyphscroll.core.errors import IncompleteDataError, IntegrityError
from glyphscroll.core.hashing import Hasher
from glyphscroll.ingestion.chunker import FixedSizeChunker

logger = logging.getLogger(__name__)


@dataclass
class HashList:
    """Digests for one story plus their chunked form."""

    digests: List[str]  # one per content chunk, in order
    chunks: List[HashListChunk]
    chunk_digests: List[str]  # one per hash-list chunk, in order
    root_hash: str


class HashListBuilder:
    """Build and check hash lists."""

    def __init__(self, digests_per_chunk: int, hasher: Optional[Hasher] = None):
        if digests_per_chunk <= 0:
            raise ValueError(f"digests_per_chunk must be positive, got {digests_per_chunk}")
        self.digests_per_chunk = digests_per_chunk
        self.hasher = hasher or Hasher()
        self._chunker = FixedSizeChunker(digests_per_chunk * DIGEST_SIZE)

    def build(self, content_chunks: Sequence[ContentChunk]) -> HashList:
        """
        Hash every content chunk and pack the digests.

        Args:
            content_chunks: Post-cipher chunks in index order

        Returns:
            HashList with the manifest root hash
        """
        digests = [self.hasher.hash(chunk.payload) for chunk in content_chunks]
        stream = b"".join(bytes.fromhex(d) for d in digests)

        chunks = []
        for piece in self._chunker.split(stream):
            piece_digests = tuple(
                piece.payload[i:i + DIGEST_SIZE].hex()
                for i in range(0, piece.size, DIGEST_SIZE)
            )
            chunks.append(HashListChunk(index=piece.index, digests=piece_digests))

        chunk_digests = [self.hasher.hash(chunk.payload) for chunk in chunks]
        root_hash = self.hasher.hash_many(chunk_digests)
        logger.debug(
            f"Hash list: {len(digests)} digests in {len(chunks)} chunks, root {root_hash[:16]}..."
        )
        return HashList(
            digests=digests, chunks=chunks, chunk_digests=chunk_digests, root_hash=root_hash
        )

    def root_hash(self, chunk_digests: Sequence[str]) -> str:
        return self.hasher.hash_many(chunk_digests)

    def verify_payload(self, index: int, payload: bytes, expected: str):
        """
        Check bytes against a committed digest.

        Raises:
            IntegrityError: On mismatch, carrying the chunk index
        """
        actual = self.hasher.hash(payload)
        if actual != expected:
            raise IntegrityError(
                f"Digest mismatch for chunk {index}: expected {expected[:16]}..., "
                f"got {actual[:16]}...",
                index=index,
            )

    def verify_chunk(self, chunk: ContentChunk, expected: str):
        self.verify_payload(chunk.index, chunk.payload, expected)

    @staticmethod
    def digests_from_payloads(payloads: Sequence[bytes], expected_count: int) -> List[str]:
        """
        Rebuild the ordered digest list from hash-list chunk payloads.

        Args:
            payloads: Raw hash-list chunk bytes in index order
            expected_count: Number of content chunks the manifest declares

        Raises:
            IncompleteDataError: If the digest count does not match
        """
        stream = b"".join(payloads)
        if len(stream) % DIGEST_SIZE != 0:
            raise IncompleteDataError(
                f"Hash list length {len(stream)} is not a multiple of {DIGEST_SIZE}"
            )
        digests = [
            stream[i:i + DIGEST_SIZE].hex() for i in range(0, len(stream), DIGEST_SIZE)
        ]
        if len(digests) != expected_count:
            raise IncompleteDataError(
                f"Hash list holds {len(digests)} digests, manifest declares {expected_count}",
                context={"have": len(digests), "expected": expected_count},
            )
        return digests
