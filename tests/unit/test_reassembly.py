"""
Tests for in-order progressive reassembly.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from glyphscroll.core.contracts import ChunkGap, RetrievalStage, StoryManifest
from glyphscroll.core.errors import IncompleteDataError
from glyphscroll.publishing.builder import ManifestBuilder
from glyphscroll.retrieval.reassembly import ReassemblyState

from conftest import FIXED_TIME, PUBLIC_KEY, fast_config, story_text

TEXT = story_text(6000)
SHORT_TEXT = story_text(2600)


def _package(compression: str = "deflate", text: str = TEXT):
    config = fast_config(chunk_size=200, compression=compression)
    return ManifestBuilder(config).build(text, "Title", "Anon", PUBLIC_KEY, timestamp=FIXED_TIME)


def _state(package) -> ReassemblyState:
    manifest = StoryManifest(root=package.manifest_root, hash_list_refs=[], chunk_refs=[])
    state = ReassemblyState(package.story_id)
    state.set_manifest(manifest)
    return state


@pytest.mark.parametrize("compression", ["deflate", "zstd", "none"])
def test_in_order_arrival_reconstructs_text(compression):
    """Test in-order chunks reconstruct the full text."""
    package = _package(compression)
    state = _state(package)

    for chunk in package.content_chunks:
        assert state.accept(chunk.index, chunk.payload) == 1

    assert state.loaded_count == package.manifest_root.total_chunks
    assert state.finish() == TEXT
    assert state.is_complete
    assert state.snapshot().text_so_far == TEXT


@given(order=st.permutations(list(range(13))))
def test_scrambled_arrival_reveals_monotonic_prefix(order):
    """Test any arrival order only ever grows the revealed prefix."""
    package = _package("none", SHORT_TEXT)
    assert package.manifest_root.total_chunks == 13
    state = _state(package)

    previous_text = ""
    previous_loaded = 0
    for index in order:
        state.accept(index, package.content_chunks[index].payload)
        snapshot = state.snapshot()

        assert snapshot.progress.current >= previous_loaded
        assert snapshot.text_so_far.startswith(previous_text)
        assert SHORT_TEXT.startswith(snapshot.text_so_far)
        # Nothing past the contiguous prefix is ever shown
        assert len(snapshot.text_so_far) <= snapshot.progress.current * 200
        previous_text = snapshot.text_so_far
        previous_loaded = snapshot.progress.current

    assert state.finish() == SHORT_TEXT


def test_out_of_order_chunk_waits_for_lower_index():
    """Test a chunk is not revealed until every lower chunk arrives."""
    package = _package()
    state = _state(package)

    assert state.accept(2, package.content_chunks[2].payload) == 0
    assert state.accept(1, package.content_chunks[1].payload) == 0
    assert state.loaded_count == 0
    assert state.snapshot().text_so_far == ""

    assert state.accept(0, package.content_chunks[0].payload) == 3
    assert state.loaded_count == 3


def test_duplicate_chunk_is_ignored():
    """Test a duplicate chunk does not change the state."""
    package = _package()
    state = _state(package)
    chunk = package.content_chunks[0]

    assert state.accept(0, chunk.payload) == 1
    assert state.accept(0, chunk.payload) == 0
    assert state.loaded_count == 1


def test_finish_before_all_chunks():
    """Test finishing with chunks missing raises."""
    package = _package()
    state = _state(package)
    state.accept(0, package.content_chunks[0].payload)

    with pytest.raises(IncompleteDataError):
        state.finish()
    assert not state.is_complete


def test_chunk_before_manifest_rejected():
    """Test chunks are refused before the manifest is set."""
    with pytest.raises(IncompleteDataError):
        ReassemblyState("glyph_0123456789abcdef").accept(0, b"x")


def test_gaps_are_reported_in_order():
    """Test gaps are reported in index order."""
    package = _package()
    state = _state(package)
    state.add_gap(ChunkGap(index=5, reason="digest mismatch"))
    state.add_gap(ChunkGap(index=2, reason="not found"))

    snapshot = state.snapshot()
    assert [gap.index for gap in snapshot.gaps] == [2, 5]
    assert snapshot.stage == RetrievalStage.IDLE
