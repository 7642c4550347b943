"""
Storage layer: compression, cipher, manifest management and story caches.
"""

from glyphscroll.storage.cache import (
    CachedStory,
    CacheStats,
    DirectoryStoryCache,
    MemoryStoryCache,
    StoryCache,
)
from glyphscroll.storage.cipher import GlyphCipher
from glyphscroll.storage.compression import (
    IncrementalDecompressor,
    compress_data,
    compression_stats,
    decompress_data,
)
from glyphscroll.storage.manifest import ManifestManager

__all__ = [
    "compress_data",
    "decompress_data",
    "compression_stats",
    "IncrementalDecompressor",
    "GlyphCipher",
    "ManifestManager",
    "StoryCache",
    "MemoryStoryCache",
    "DirectoryStoryCache",
    "CachedStory",
    "CacheStats",
]
