"""
Publication package builder.

Runs the whole write path locally, before anything touches a ledger:

    text -> UTF-8 -> compress -> cipher -> fixed-size chunks
         -> per-chunk digests -> hash-list chunks -> manifest root
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from glyphscroll.core.contracts import (
    Config,
    ManifestRoot,
    PublicationPackage,
    PublicationSummary,
)
from glyphscroll.core.envelope import ENVELOPE_OVERHEAD
from glyphscroll.core.hashing import Hasher
from glyphscroll.core.ids import generate_story_id, normalize_timestamp
from glyphscroll.ingestion.chunker import FixedSizeChunker, count_chunks
from glyphscroll.ingestion.hash_list import HashListBuilder
from glyphscroll.ingestion.normalizer import preprocess_text
from glyphscroll.publishing.progress import suggest_display
from glyphscroll.storage.cipher import GlyphCipher
from glyphscroll.storage.compression import compress_data, compression_stats

logger = logging.getLogger(__name__)


def _base64_length(size: int) -> int:
    return 4 * count_chunks(size, 3)


class ManifestBuilder:
    """Builds a PublicationPackage from story text."""

    def __init__(
        self,
        config: Optional[Config] = None,
        hasher: Optional[Hasher] = None,
        cipher: Optional[GlyphCipher] = None,
    ):
        """
        Initialize builder.

        Args:
            config: Publishing configuration (validated here)
            hasher: Content hasher (SHA-256 by default)
            cipher: Byte cipher (keyed from config by default)
        """
        self.config = config or Config()
        self.config.validate()
        self.hasher = hasher or Hasher()
        self.cipher = cipher or GlyphCipher(self.config.cipher_key)
        capacity = self.config.resolved_chunk_size()
        self.chunker = FixedSizeChunker(capacity)
        self.hash_list_builder = HashListBuilder(
            self.config.resolved_digests_per_chunk(), hasher=self.hasher
        )

    def build(
        self,
        text: str,
        title: str,
        author: str,
        author_public_key: str,
        timestamp: Optional[datetime] = None,
    ) -> PublicationPackage:
        """
        Build everything a publish needs.

        Args:
            text: Story text
            title: Story title
            author: Display name
            author_public_key: Signer's public key, part of the story id
            timestamp: Creation time (now, UTC, if omitted)

        Returns:
            PublicationPackage

        Raises:
            ValueError: If the text or title is empty
        """
        if not isinstance(text, str):
            raise TypeError(f"Expected str, got {type(text).__name__}")
        if self.config.normalize_text:
            text = preprocess_text(text)
        if not text:
            raise ValueError("Cannot publish an empty story")
        if not title or not title.strip():
            raise ValueError("Title is required")
        if not author_public_key:
            raise ValueError("Author public key is required")

        timestamp = normalize_timestamp(timestamp or datetime.now(timezone.utc))
        story_id = generate_story_id(title, author_public_key, timestamp)

        raw = text.encode("utf-8")
        compressed = compress_data(raw, self.config.compression, self.config.compression_level)
        stats = compression_stats(raw, compressed)
        obfuscated = self.cipher.encrypt(compressed)

        content_chunks = self.chunker.split(obfuscated)
        hash_list = self.hash_list_builder.build(content_chunks)

        root = ManifestRoot(
            story_id=story_id,
            title=title,
            author=author,
            author_public_key=author_public_key,
            total_chunks=len(content_chunks),
            total_hash_list_chunks=len(hash_list.chunks),
            timestamp=timestamp,
            manifest_root_hash=hash_list.root_hash,
            hash_list_digests=tuple(hash_list.chunk_digests),
            compression=self.config.compression,
            chunk_size=self.chunker.chunk_size,
            content_length=len(raw),
        )

        summary = self._summarize(stats, content_chunks, hash_list.chunks)
        logger.info(
            f"Built {story_id}: {len(raw)} bytes -> {stats.compressed_size} compressed, "
            f"{root.total_chunks} glyphs, {root.total_hash_list_chunks} hash list chunks"
        )
        return PublicationPackage(
            manifest_root=root,
            hash_list_chunks=hash_list.chunks,
            content_chunks=content_chunks,
            summary=summary,
            text=text,
        )

    def _summarize(self, stats, content_chunks, hash_list_chunks) -> PublicationSummary:
        total_chunks = len(content_chunks)
        content_bytes = sum(
            ENVELOPE_OVERHEAD + _base64_length(chunk.size) for chunk in content_chunks
        )
        hash_list_bytes = sum(
            ENVELOPE_OVERHEAD + _base64_length(len(chunk.payload)) for chunk in hash_list_chunks
        )
        return PublicationSummary(
            compression=stats,
            chunk_size=self.chunker.chunk_size,
            digests_per_hash_list_chunk=self.hash_list_builder.digests_per_chunk,
            total_chunks=total_chunks,
            total_hash_list_chunks=len(hash_list_chunks),
            estimated_transactions=total_chunks + len(hash_list_chunks) + 1,
            estimated_ledger_bytes=content_bytes + hash_list_bytes + self.config.max_payload_size,
            display=suggest_display(total_chunks),
        )


def estimate_publication(text: str, config: Optional[Config] = None) -> PublicationSummary:
    """
    Cost of publishing ``text`` without touching a ledger.

    The root transaction is counted at the full payload limit.
    """
    builder = ManifestBuilder(config)
    package = builder.build(text, title="estimate", author="", author_public_key="estimate")
    return package.summary
