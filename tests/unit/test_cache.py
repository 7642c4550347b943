"""
Tests for the memory and directory story caches.
"""

import json
from datetime import datetime, timezone

import pytest

from glyphscroll.core.contracts import ManifestRoot, StoryManifest
from glyphscroll.core.hashing import Hasher
from glyphscroll.core.ids import generate_story_id
from glyphscroll.storage.cache import DirectoryStoryCache, MemoryStoryCache


def _manifest(title: str) -> StoryManifest:
    timestamp = datetime(2024, 3, 1, tzinfo=timezone.utc)
    digest = Hasher().hash(title.encode("utf-8"))
    root = ManifestRoot(
        story_id=generate_story_id(title, "pk", timestamp),
        title=title,
        author="Anon",
        author_public_key="pk",
        total_chunks=1,
        total_hash_list_chunks=1,
        timestamp=timestamp,
        manifest_root_hash=Hasher().hash_many([digest]),
        hash_list_digests=(digest,),
    )
    return StoryManifest(root=root, hash_list_refs=["tx_h"], chunk_refs=["tx_c"], manifest_ref="tx_r")


def test_memory_cache_put_get():
    """Test a cached story comes back with its manifest and access count."""
    manifest = _manifest("one")
    with MemoryStoryCache() as cache:
        assert cache.get_story(manifest.story_id) is None
        cache.put_manifest(manifest.story_id, manifest, "Once upon a time")

        story = cache.get_story(manifest.story_id)
        assert story.content == "Once upon a time"
        assert story.manifest == manifest
        assert story.access_count == 1
        assert cache.get_manifest(manifest.story_id) == manifest
        assert cache.is_cached(manifest.story_id)


def test_memory_cache_evicts_least_recently_used():
    """Test the least recently read story is evicted first."""
    first, second, third = _manifest("a"), _manifest("b"), _manifest("c")
    with MemoryStoryCache(max_stories=2) as cache:
        cache.put_manifest(first.story_id, first, "a")
        cache.put_manifest(second.story_id, second, "b")
        cache.get_story(first.story_id)  # second is now least recently used
        cache.put_manifest(third.story_id, third, "c")

        assert cache.is_cached(first.story_id)
        assert not cache.is_cached(second.story_id)
        assert cache.is_cached(third.story_id)
        assert cache.stats().total_stories == 2


def test_memory_cache_size_limit():
    """Test the byte limit evicts older stories."""
    first, second = _manifest("a"), _manifest("b")
    with MemoryStoryCache(max_size_bytes=10) as cache:
        cache.put_manifest(first.story_id, first, "123456")
        cache.put_manifest(second.story_id, second, "789012")

        assert not cache.is_cached(first.story_id)
        assert cache.stats().total_size_bytes == 6


def test_put_rejects_mismatched_story_id():
    """Test a manifest cannot be cached under another story id."""
    manifest = _manifest("one")
    with MemoryStoryCache() as cache:
        with pytest.raises(ValueError):
            cache.put_manifest("glyph_ffffffffffffffff", manifest, "text")


def test_closed_cache_raises():
    """Test a cache must be opened before use."""
    cache = MemoryStoryCache()
    with pytest.raises(RuntimeError):
        cache.get_story("glyph_0123456789abcdef")


def test_directory_cache_persists(tmp_path):
    """Test stories survive closing and reopening the directory cache."""
    manifest = _manifest("persisted")
    with DirectoryStoryCache(tmp_path) as cache:
        cache.put_manifest(manifest.story_id, manifest, "A story worth keeping. " * 100)

    assert (tmp_path / "cache.meta").exists()
    assert (tmp_path / f"{manifest.story_id}.zst").exists()

    with DirectoryStoryCache(tmp_path) as cache:
        story = cache.get_story(manifest.story_id)
        assert story.content == "A story worth keeping. " * 100
        assert story.manifest == manifest
        stats = cache.stats()
        assert stats.total_stories == 1
        # Compressed on disk
        assert stats.total_size_bytes < len(story.content)


def test_directory_cache_drops_corrupted_entry(tmp_path):
    """Test a checksum mismatch drops the entry and reports a miss."""
    manifest = _manifest("corrupt")
    with DirectoryStoryCache(tmp_path) as cache:
        cache.put_manifest(manifest.story_id, manifest, "original text")

    meta_path = tmp_path / "cache.meta"
    meta = json.loads(meta_path.read_text())
    meta["entries"][manifest.story_id]["checksum"] += 1
    meta_path.write_text(json.dumps(meta))

    with DirectoryStoryCache(tmp_path) as cache:
        assert cache.get_story(manifest.story_id) is None
        assert cache.stats().total_stories == 0
    assert not (tmp_path / f"{manifest.story_id}.zst").exists()


def test_directory_cache_drops_orphaned_entries(tmp_path):
    """Test index entries without a content file are dropped on open."""
    manifest = _manifest("orphan")
    with DirectoryStoryCache(tmp_path) as cache:
        cache.put_manifest(manifest.story_id, manifest, "text")
    (tmp_path / f"{manifest.story_id}.zst").unlink()

    with DirectoryStoryCache(tmp_path) as cache:
        assert cache.stats().total_stories == 0


def test_directory_cache_evicts_and_clears(tmp_path):
    """Test eviction and clear remove content files."""
    manifests = [_manifest(title) for title in ("a", "b", "c")]
    with DirectoryStoryCache(tmp_path, max_stories=2) as cache:
        for manifest in manifests:
            cache.put_manifest(manifest.story_id, manifest, f"text {manifest.root.title}")

        assert not cache.is_cached(manifests[0].story_id)
        assert cache.stats().total_stories == 2

        cache.clear()
        assert cache.stats().total_stories == 0
        assert list(tmp_path.glob("*.zst")) == []


def test_utilization_percent():
    """Test utilization is reported against the byte limit."""
    with MemoryStoryCache(max_size_bytes=100) as cache:
        manifest = _manifest("u")
        cache.put_manifest(manifest.story_id, manifest, "x" * 25)
        assert cache.stats().utilization_percent == 25


def test_directory_cache_leaves_no_temp_files(tmp_path):
    """Test content files are written whole, replacing any earlier copy."""
    manifest = _manifest("atomic")
    with DirectoryStoryCache(tmp_path) as cache:
        cache.put_manifest(manifest.story_id, manifest, "first draft")
        cache.put_manifest(manifest.story_id, manifest, "second draft")

        assert list(tmp_path.glob("*.tmp")) == []
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "cache.meta", f"{manifest.story_id}.zst"
        ]
        assert cache.get_story(manifest.story_id).content == "second draft"


def test_memory_cache_lists_manifests():
    """Test every cached manifest is listed without counting as an access."""
    first, second = _manifest("a"), _manifest("b")
    with MemoryStoryCache() as cache:
        assert cache.list_manifests() == []
        cache.put_manifest(first.story_id, first, "a")
        cache.put_manifest(second.story_id, second, "b")

        assert cache.list_manifests() == [first, second]
        assert cache.get_story(first.story_id).access_count == 1


def test_directory_cache_lists_manifests_after_reopen(tmp_path):
    """Test manifests are listed from the persisted index."""
    manifests = [_manifest(title) for title in ("a", "b")]
    with DirectoryStoryCache(tmp_path) as cache:
        for manifest in manifests:
            cache.put_manifest(manifest.story_id, manifest, f"text {manifest.root.title}")

    with DirectoryStoryCache(tmp_path) as cache:
        assert cache.list_manifests() == manifests


def test_directory_cache_list_drops_unreadable_manifest(tmp_path):
    """Test an index entry whose manifest no longer parses is dropped when listing."""
    good, bad = _manifest("good"), _manifest("bad")
    with DirectoryStoryCache(tmp_path) as cache:
        cache.put_manifest(good.story_id, good, "good")
        cache.put_manifest(bad.story_id, bad, "bad")

    meta_path = tmp_path / "cache.meta"
    meta = json.loads(meta_path.read_text())
    del meta["entries"][bad.story_id]["manifest"]["chunks"]
    meta_path.write_text(json.dumps(meta))

    with DirectoryStoryCache(tmp_path) as cache:
        assert cache.list_manifests() == [good]
        assert not cache.is_cached(bad.story_id)
    assert not (tmp_path / f"{bad.story_id}.zst").exists()


def test_list_manifests_requires_open_cache(tmp_path):
    """Test listing a closed cache raises."""
    with pytest.raises(RuntimeError):
        DirectoryStoryCache(tmp_path).list_manifests()
