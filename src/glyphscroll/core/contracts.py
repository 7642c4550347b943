"""
Core data structures (dataclasses) for glyph-scroll.

All core data structures are defined as explicit dataclasses.
"""

import json
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

from glyphscroll.core.envelope import DIGEST_SIZE, max_chunk_payload
from glyphscroll.core.retry import RetryConfig

DEFAULT_CIPHER_KEY = b"GLYFFITI"


@dataclass
class Config:
    """Configuration for publishing and retrieval."""

    # Ledger
    max_payload_size: int = 1200  # bytes per transaction (Solana memo limit)

    # Chunking (None = largest size that fits one transaction)
    chunk_size: Optional[int] = None
    digests_per_hash_list_chunk: Optional[int] = None

    # Compression
    compression: Literal["deflate", "zstd", "none"] = "deflate"
    compression_level: int = 6

    # Obfuscation (shared, not secret)
    cipher_key: bytes = DEFAULT_CIPHER_KEY

    # Text intake
    normalize_text: bool = False

    # Retry policy
    max_attempts: int = 3
    initial_backoff_s: float = 1.0
    backoff_factor: float = 2.0
    max_backoff_s: float = 10.0
    rate_limit_factor: float = 3.0
    integrity_attempts: int = 3
    fetch_timeout_s: float = 30.0

    # Retrieval fan-out
    hash_list_fetch_concurrency: int = 4
    content_fetch_concurrency: int = 4

    # Schema & versioning
    schema_version: str = "1.0"

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """
        Load config from a JSON file.

        Unknown keys are rejected. ``cipher_key`` is read as a UTF-8 string.
        """
        with open(path, "r") as f:
            raw = json.load(f)
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        if isinstance(raw.get("cipher_key"), str):
            raw["cipher_key"] = raw["cipher_key"].encode("utf-8")
        config = cls(**raw)
        config.validate()
        return config

    def resolved_chunk_size(self) -> int:
        """Content chunk size in bytes."""
        if self.chunk_size is not None:
            return self.chunk_size
        return max_chunk_payload(self.max_payload_size)

    def resolved_digests_per_chunk(self) -> int:
        """How many raw digests pack into one hash-list chunk."""
        if self.digests_per_hash_list_chunk is not None:
            return self.digests_per_hash_list_chunk
        return max_chunk_payload(self.max_payload_size) // DIGEST_SIZE

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_attempts,
            initial_backoff_s=self.initial_backoff_s,
            backoff_factor=self.backoff_factor,
            max_backoff_s=self.max_backoff_s,
            rate_limit_factor=self.rate_limit_factor,
        )

    def validate(self):
        """Raise ValueError if the configuration cannot produce valid transactions."""
        capacity = max_chunk_payload(self.max_payload_size)
        if capacity <= 0:
            raise ValueError(
                f"max_payload_size {self.max_payload_size} leaves no room for chunk data"
            )
        chunk_size = self.resolved_chunk_size()
        if chunk_size <= 0 or chunk_size > capacity:
            raise ValueError(
                f"chunk_size {chunk_size} must be in 1..{capacity} "
                f"for max_payload_size {self.max_payload_size}"
            )
        digests = self.resolved_digests_per_chunk()
        if digests <= 0 or digests * DIGEST_SIZE > capacity:
            raise ValueError(
                f"digests_per_hash_list_chunk {digests} must be in "
                f"1..{capacity // DIGEST_SIZE} for max_payload_size {self.max_payload_size}"
            )
        if self.compression not in ("deflate", "zstd", "none"):
            raise ValueError(f"Unknown compression method: {self.compression}")
        if not self.cipher_key:
            raise ValueError("cipher_key must not be empty")
        if self.integrity_attempts < 1 or self.max_attempts < 1:
            raise ValueError("attempt counts must be at least 1")
        if self.hash_list_fetch_concurrency < 1 or self.content_fetch_concurrency < 1:
            raise ValueError("fetch concurrency must be at least 1")


class PublishStage(str, Enum):
    """Publish state machine stages."""

    PREPARING = "preparing"
    PROCESSING = "processing"
    PUBLISHING_HASHLIST = "publishing_hashlist"
    PUBLISHING_CONTENT = "publishing_content"
    CREATING_ROOT = "creating_root"
    COMPLETED = "completed"
    FAILED = "failed"


class RetrievalStage(str, Enum):
    """Retrieval state machine stages."""

    IDLE = "idle"
    FETCHING_MANIFEST = "fetching_manifest"
    FETCHING_HASHLIST = "fetching_hashlist"
    FETCHING_CONTENT = "fetching_content"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class PublishStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class ContentChunk:
    """
    One glyph: a fixed-size slice of the post-cipher byte stream.

    ``size`` always equals ``len(payload)``; the last chunk of a stream
    may be shorter than the configured chunk size.
    """

    index: int
    payload: bytes
    size: int

    @classmethod
    def of(cls, index: int, payload: bytes) -> "ContentChunk":
        return cls(index=index, payload=payload, size=len(payload))


@dataclass(frozen=True)
class HashListChunk:
    """An ordered run of chunk digests (hex), small enough for one transaction."""

    index: int
    digests: Tuple[str, ...]

    @property
    def payload(self) -> bytes:
        """Raw digest bytes as they appear on the ledger."""
        return b"".join(bytes.fromhex(d) for d in self.digests)


@dataclass(frozen=True)
class ManifestRoot:
    """
    Top-level commitment binding a story's identity to its hash list.

    manifest_root_hash = sha256(concat(hash_list_digests)), where
    hash_list_digests[i] is the digest of hash-list chunk i's raw bytes.
    """

    story_id: str
    title: str
    author: str
    author_public_key: str
    total_chunks: int
    total_hash_list_chunks: int
    timestamp: datetime
    manifest_root_hash: str
    hash_list_digests: Tuple[str, ...]
    compression: str = "deflate"
    chunk_size: int = 0
    content_length: int = 0  # bytes of the original UTF-8 text


@dataclass
class StoryManifest:
    """A manifest root plus the ledger references of every published chunk."""

    root: ManifestRoot
    hash_list_refs: List[str]
    chunk_refs: List[str]
    manifest_ref: Optional[str] = None

    @property
    def story_id(self) -> str:
        return self.root.story_id


@dataclass(frozen=True)
class CompressionStats:
    """Compression outcome; drives the ledger cost shown to the writer."""

    original_size: int
    compressed_size: int
    compression_ratio: float  # compressed / original
    space_saved: int
    percent_saved: float


@dataclass(frozen=True)
class PublicationSummary:
    """What a publication will cost before anything is submitted."""

    compression: CompressionStats
    chunk_size: int
    digests_per_hash_list_chunk: int
    total_chunks: int
    total_hash_list_chunks: int
    estimated_transactions: int  # hash list + content + root (index spill excluded)
    estimated_ledger_bytes: int
    display: Literal["grid", "bar"]


@dataclass
class PublicationPackage:
    """
    Everything a publish needs, built before the first ledger write.

    ``text`` is the (possibly preprocessed) source; it never goes on the ledger.
    """

    manifest_root: ManifestRoot
    hash_list_chunks: List[HashListChunk]
    content_chunks: List[ContentChunk]
    summary: PublicationSummary
    text: str

    @property
    def story_id(self) -> str:
        return self.manifest_root.story_id


@dataclass(frozen=True)
class ProgressSnapshot:
    """One progress report: which stage, how far."""

    stage: str
    current: int
    total: int
    percent: float
    message: str = ""


@dataclass
class PublishCheckpoint:
    """
    Ledger references confirmed so far for one story.

    ``manifest_root_hash`` and ``total_chunks`` pin the checkpoint to the
    package it was made for; the story id alone survives edits to the text.
    """

    story_id: str
    hash_list_refs: Dict[int, str] = field(default_factory=dict)
    content_refs: Dict[int, str] = field(default_factory=dict)
    index_refs: Dict[int, str] = field(default_factory=dict)
    manifest_ref: Optional[str] = None
    manifest_root_hash: Optional[str] = None
    total_chunks: Optional[int] = None

    @property
    def confirmed_glyphs(self) -> int:
        return len(self.content_refs)

    @property
    def is_empty(self) -> bool:
        return not (self.hash_list_refs or self.content_refs or self.index_refs
                    or self.manifest_ref)

    def matches(self, root: ManifestRoot) -> bool:
        """True if this checkpoint was recorded for ``root``."""
        return (
            self.story_id == root.story_id
            and self.manifest_root_hash == root.manifest_root_hash
            and self.total_chunks == root.total_chunks
        )

    def first_unconfirmed_glyph(self, total: int) -> Optional[int]:
        for index in range(total):
            if index not in self.content_refs:
                return index
        return None


@dataclass
class PublishResult:
    """Outcome of one publish call."""

    status: PublishStatus
    story_id: str
    successful_glyphs: int
    total_glyphs: int
    checkpoint: PublishCheckpoint
    manifest: Optional[StoryManifest] = None
    reason: Optional[str] = None

    @property
    def manifest_ref(self) -> Optional[str]:
        return self.checkpoint.manifest_ref


@dataclass(frozen=True)
class ChunkGap:
    """A content chunk that could not be verified; never rendered as text."""

    index: int
    reason: str


@dataclass(frozen=True)
class ReadSnapshot:
    """Read-only view of a retrieval in progress."""

    text_so_far: str
    is_complete: bool
    progress: ProgressSnapshot
    stage: RetrievalStage
    gaps: Tuple[ChunkGap, ...] = ()


@dataclass
class RetrievalResult:
    """Outcome of one retrieval."""

    story_id: str
    stage: RetrievalStage
    text: str
    is_complete: bool
    manifest: Optional[StoryManifest] = None
    from_cache: bool = False
    gaps: List[ChunkGap] = field(default_factory=list)
    error: Optional[Exception] = None


@dataclass
class Manuscript:
    """A parsed source document ready for publication."""

    title: str
    text: str
    source_path: str
    metadata: Dict[str, Any] = field(default_factory=dict)
