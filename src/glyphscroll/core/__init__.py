"""
Core contracts, errors, hashing and ID generation for glyph-scroll.
"""

from glyphscroll.core.contracts import (
    ChunkGap,
    CompressionStats,
    Config,
    ContentChunk,
    HashListChunk,
    ManifestRoot,
    Manuscript,
    ProgressSnapshot,
    PublicationPackage,
    PublicationSummary,
    PublishCheckpoint,
    PublishResult,
    PublishStage,
    PublishStatus,
    ReadSnapshot,
    RetrievalResult,
    RetrievalStage,
    StoryManifest,
)
from glyphscroll.core.errors import (
    CipherError,
    CodecError,
    ConcurrentPublishError,
    GlyphScrollError,
    IncompleteDataError,
    IntegrityError,
    InvalidTransitionError,
    LedgerError,
    ManifestError,
    NetworkError,
    NotFoundError,
    PayloadTooLargeError,
    RateLimitError,
    SubmissionRejectedError,
)
from glyphscroll.core.hashing import Hasher
from glyphscroll.core.ids import generate_story_id

__all__ = [
    "Config",
    "ContentChunk",
    "HashListChunk",
    "ManifestRoot",
    "StoryManifest",
    "CompressionStats",
    "PublicationSummary",
    "PublicationPackage",
    "ProgressSnapshot",
    "PublishCheckpoint",
    "PublishResult",
    "PublishStage",
    "PublishStatus",
    "ChunkGap",
    "ReadSnapshot",
    "RetrievalResult",
    "RetrievalStage",
    "Manuscript",
    "GlyphScrollError",
    "LedgerError",
    "NetworkError",
    "RateLimitError",
    "NotFoundError",
    "SubmissionRejectedError",
    "IntegrityError",
    "CodecError",
    "CipherError",
    "IncompleteDataError",
    "PayloadTooLargeError",
    "ManifestError",
    "ConcurrentPublishError",
    "InvalidTransitionError",
    "Hasher",
    "generate_story_id",
]
