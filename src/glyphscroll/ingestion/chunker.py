"""
Fixed-size chunking for glyph-scroll.

Chunks are byte slices, not text: the chunker runs after compression and
the cipher, so boundaries never need to respect words or characters.
"""

import logging
from typing import List, Optional, Sequence

from glyphscroll.core.contracts import ContentChunk
from glyphscroll.core.errors import IncompleteDataError

logger = logging.getLogger(__name__)


def count_chunks(length: int, chunk_size: int) -> int:
    """ceil(length / chunk_size) without floats."""
    return -(-length // chunk_size)


class FixedSizeChunker:
    """Fixed-size, lossless, deterministic byte chunking."""

    def __init__(self, chunk_size: int, max_chunk_size: Optional[int] = None):
        """
        Initialize chunker.

        Args:
            chunk_size: Bytes per chunk
            max_chunk_size: Upper bound derived from the ledger payload limit
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if max_chunk_size is not None and chunk_size > max_chunk_size:
            raise ValueError(
                f"chunk_size {chunk_size} exceeds the per-transaction limit {max_chunk_size}"
            )
        self.chunk_size = chunk_size

    def split(self, data: bytes) -> List[ContentChunk]:
        """
        Split bytes into ordered chunks.

        Args:
            data: Bytes to split

        Returns:
            ceil(len(data) / chunk_size) chunks; the last may be shorter
        """
        data = bytes(data)
        chunks = [
            ContentChunk.of(chunk_index, data[start:start + self.chunk_size])
            for chunk_index, start in enumerate(range(0, len(data), self.chunk_size))
        ]
        logger.debug(f"Split {len(data)} bytes into {len(chunks)} chunks of {self.chunk_size}")
        return chunks

    @staticmethod
    def join(chunks: Sequence[ContentChunk], expected_total: Optional[int] = None) -> bytes:
        """
        Reassemble chunks supplied in index order.

        Args:
            chunks: Chunks with indices exactly 0..n-1, in that order
            expected_total: If given, n must equal it

        Returns:
            The original bytes

        Raises:
            IncompleteDataError: On a missing, duplicated or out-of-order chunk
        """
        for position, chunk in enumerate(chunks):
            if chunk.index != position:
                raise IncompleteDataError(
                    f"Expected chunk {position} at position {position}, found chunk {chunk.index}",
                    context={"position": position, "index": chunk.index},
                )
        if expected_total is not None and len(chunks) != expected_total:
            raise IncompleteDataError(
                f"Have {len(chunks)} of {expected_total} chunks",
                context={"have": len(chunks), "expected": expected_total},
            )
        return b"".join(chunk.payload for chunk in chunks)
