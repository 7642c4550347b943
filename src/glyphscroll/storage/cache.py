"""
Story cache for glyph-scroll.

Only fully retrieved (or fully published) stories are cached; partial
state never reaches a cache. Caches are explicit handles with an
open/close lifecycle, passed into publishers and retrievers.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import xxhash

from glyphscroll.core.contracts import StoryManifest
from glyphscroll.core.errors import CodecError, ManifestError
from glyphscroll.storage.compression import compress_data, decompress_data
from glyphscroll.storage.manifest import ManifestManager

logger = logging.getLogger(__name__)

MAX_STORIES = 100
MAX_SIZE_BYTES = 50 * 1024 * 1024
CACHE_VERSION = "1.0"


@dataclass
class CachedStory:
    manifest: StoryManifest
    content: str
    cached_at: float
    last_accessed: float
    access_count: int = 0


@dataclass(frozen=True)
class CacheStats:
    total_stories: int
    total_size_bytes: int
    max_stories: int
    max_size_bytes: int

    @property
    def utilization_percent(self) -> int:
        if self.max_size_bytes <= 0:
            return 0
        return round(self.total_size_bytes / self.max_size_bytes * 100)


class StoryCache(ABC):
    """Cache interface keyed by story id."""

    def __init__(self, max_stories: int = MAX_STORIES, max_size_bytes: int = MAX_SIZE_BYTES):
        self.max_stories = max_stories
        self.max_size_bytes = max_size_bytes
        self.is_open = False

    def open(self) -> "StoryCache":
        self.is_open = True
        return self

    def close(self):
        self.is_open = False

    def __enter__(self) -> "StoryCache":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _require_open(self):
        if not self.is_open:
            raise RuntimeError(f"{type(self).__name__} is closed")

    def get_manifest(self, story_id: str) -> Optional[StoryManifest]:
        story = self.get_story(story_id)
        return story.manifest if story else None

    def is_cached(self, story_id: str) -> bool:
        return self.get_story(story_id) is not None

    @abstractmethod
    def get_story(self, story_id: str) -> Optional[CachedStory]:
        """Return the cached manifest and content, or None on a miss."""

    @abstractmethod
    def put_manifest(self, story_id: str, manifest: StoryManifest, content: str):
        """Cache a complete story, evicting least recently used entries if needed."""

    @abstractmethod
    def list_manifests(self) -> List[StoryManifest]:
        """Manifests of every cached story, oldest cached first. Access times are untouched."""

    @abstractmethod
    def remove(self, story_id: str):
        ...

    @abstractmethod
    def clear(self):
        ...

    @abstractmethod
    def stats(self) -> CacheStats:
        ...


class MemoryStoryCache(StoryCache):
    """In-process cache; sizes count UTF-8 content bytes."""

    def __init__(self, max_stories: int = MAX_STORIES, max_size_bytes: int = MAX_SIZE_BYTES):
        super().__init__(max_stories, max_size_bytes)
        self._entries: "OrderedDict[str, CachedStory]" = OrderedDict()

    def get_story(self, story_id: str) -> Optional[CachedStory]:
        self._require_open()
        story = self._entries.get(story_id)
        if story is None:
            return None
        self._entries.move_to_end(story_id)
        story.last_accessed = time.time()
        story.access_count += 1
        return story

    def put_manifest(self, story_id: str, manifest: StoryManifest, content: str):
        self._require_open()
        if manifest.story_id != story_id:
            raise ValueError(f"Manifest is for {manifest.story_id}, not {story_id}")
        size = len(content.encode("utf-8"))
        self._entries.pop(story_id, None)
        self._evict_for(size)
        now = time.time()
        self._entries[story_id] = CachedStory(
            manifest=manifest, content=content, cached_at=now, last_accessed=now
        )
        logger.debug(f"Cached story {story_id} ({size} bytes) in memory")

    def list_manifests(self) -> List[StoryManifest]:
        self._require_open()
        stories = sorted(self._entries.values(), key=lambda s: s.cached_at)
        return [story.manifest for story in stories]

    def _size_of(self, story: CachedStory) -> int:
        return len(story.content.encode("utf-8"))

    def _evict_for(self, incoming_size: int):
        total = sum(self._size_of(s) for s in self._entries.values())
        while self._entries and (
            len(self._entries) >= self.max_stories or total + incoming_size > self.max_size_bytes
        ):
            evicted_id, evicted = self._entries.popitem(last=False)
            total -= self._size_of(evicted)
            logger.info(f"Evicted story {evicted_id} from memory cache")

    def remove(self, story_id: str):
        self._require_open()
        self._entries.pop(story_id, None)

    def clear(self):
        self._require_open()
        self._entries.clear()

    def stats(self) -> CacheStats:
        self._require_open()
        return CacheStats(
            total_stories=len(self._entries),
            total_size_bytes=sum(self._size_of(s) for s in self._entries.values()),
            max_stories=self.max_stories,
            max_size_bytes=self.max_size_bytes,
        )


class DirectoryStoryCache(StoryCache):
    """
    On-disk cache.

    Format:
    - <story_id>.zst: zstd-compressed UTF-8 content
    - cache.meta: JSON index {story_id: {manifest, checksum, size, ...}}

    checksum is xxhash32 of the uncompressed content; a mismatch drops the
    entry and reports a miss. Sizes count compressed bytes on disk.
    """

    def __init__(
        self,
        cache_dir: Path,
        max_stories: int = MAX_STORIES,
        max_size_bytes: int = MAX_SIZE_BYTES,
        zstd_level: int = 3,
    ):
        """
        Initialize directory cache.

        Args:
            cache_dir: Directory holding cache.meta and content files
            max_stories: Entry count limit
            max_size_bytes: Total compressed size limit
            zstd_level: Compression level for content files
        """
        super().__init__(max_stories, max_size_bytes)
        self.cache_dir = Path(cache_dir)
        self.meta_path = self.cache_dir / "cache.meta"
        self.zstd_level = zstd_level
        self.index: Dict[str, dict] = {}

    def open(self) -> "DirectoryStoryCache":
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.index = self._load_meta()
        self._drop_orphans()
        return super().open()

    def close(self):
        if self.is_open:
            self._save_meta()
        super().close()

    def _content_path(self, story_id: str) -> Path:
        return self.cache_dir / f"{story_id}.zst"

    def _load_meta(self) -> Dict[str, dict]:
        if not self.meta_path.exists():
            return {}
        with open(self.meta_path, "r") as f:
            meta = json.load(f)
        if meta.get("version") != CACHE_VERSION:
            logger.warning(f"Ignoring cache index with version {meta.get('version')!r}")
            return {}
        return meta.get("entries", {})

    def _save_meta(self):
        # Write to a temp file then rename so a crash never leaves half an index
        temp_path = self.meta_path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump({"version": CACHE_VERSION, "entries": self.index}, f, indent=2)
        temp_path.replace(self.meta_path)

    def _drop_orphans(self):
        missing = [sid for sid in self.index if not self._content_path(sid).exists()]
        for story_id in missing:
            logger.warning(f"Cache entry {story_id} has no content file; dropping")
            del self.index[story_id]

    def get_story(self, story_id: str) -> Optional[CachedStory]:
        self._require_open()
        record = self.index.get(story_id)
        if record is None:
            return None

        try:
            compressed = self._content_path(story_id).read_bytes()
            content_bytes = decompress_data(compressed, "zstd")
            if xxhash.xxh32(content_bytes).intdigest() != record["checksum"]:
                raise CodecError(f"Checksum mismatch for cached story {story_id}")
            manifest = ManifestManager.from_dict(record["manifest"])
            content = content_bytes.decode("utf-8")
        except (OSError, CodecError, ManifestError, UnicodeDecodeError) as e:
            logger.warning(f"Dropping unreadable cache entry {story_id}: {e}")
            self.remove(story_id)
            return None

        record["last_accessed"] = time.time()
        record["access_count"] = record.get("access_count", 0) + 1
        self._save_meta()
        return CachedStory(
            manifest=manifest,
            content=content,
            cached_at=record["cached_at"],
            last_accessed=record["last_accessed"],
            access_count=record["access_count"],
        )

    def put_manifest(self, story_id: str, manifest: StoryManifest, content: str):
        self._require_open()
        if manifest.story_id != story_id:
            raise ValueError(f"Manifest is for {manifest.story_id}, not {story_id}")
        content_bytes = content.encode("utf-8")
        compressed = compress_data(content_bytes, "zstd", self.zstd_level)

        self._evict_for(story_id, len(compressed))
        content_path = self._content_path(story_id)
        temp_path = content_path.with_suffix(".tmp")
        temp_path.write_bytes(compressed)
        temp_path.replace(content_path)
        now = time.time()
        self.index[story_id] = {
            "manifest": ManifestManager.to_dict(manifest),
            "checksum": xxhash.xxh32(content_bytes).intdigest(),
            "original_size": len(content_bytes),
            "size": len(compressed),
            "cached_at": now,
            "last_accessed": now,
            "access_count": 0,
        }
        self._save_meta()
        logger.debug(f"Cached story {story_id} ({len(compressed)} bytes) in {self.cache_dir}")

    def list_manifests(self) -> List[StoryManifest]:
        self._require_open()
        manifests = []
        unreadable = []
        for story_id, record in sorted(self.index.items(), key=lambda item: item[1]["cached_at"]):
            try:
                manifests.append(ManifestManager.from_dict(record["manifest"]))
            except (KeyError, ManifestError) as e:
                logger.warning(f"Dropping cache entry {story_id} with unreadable manifest: {e}")
                unreadable.append(story_id)
        for story_id in unreadable:
            self.remove(story_id)
        return manifests

    def _evict_for(self, story_id: str, incoming_size: int):
        others = {sid: rec for sid, rec in self.index.items() if sid != story_id}
        total = sum(rec["size"] for rec in others.values())
        by_age = sorted(others, key=lambda sid: others[sid]["last_accessed"])
        while by_age and (
            len(by_age) >= self.max_stories or total + incoming_size > self.max_size_bytes
        ):
            oldest = by_age.pop(0)
            total -= others[oldest]["size"]
            logger.info(f"Evicted story {oldest} from {self.cache_dir}")
            self.remove(oldest)

    def remove(self, story_id: str):
        self._require_open()
        if story_id not in self.index:
            return
        del self.index[story_id]
        content_path = self._content_path(story_id)
        if content_path.exists():
            content_path.unlink()
        self._save_meta()

    def clear(self):
        self._require_open()
        for story_id in list(self.index):
            self.remove(story_id)

    def stats(self) -> CacheStats:
        self._require_open()
        return CacheStats(
            total_stories=len(self.index),
            total_size_bytes=sum(rec["size"] for rec in self.index.values()),
            max_stories=self.max_stories,
            max_size_bytes=self.max_size_bytes,
        )
