"""
Tests for the codec: deflate (zlib container), zstd and passthrough.
"""

import zlib

import pytest
from hypothesis import given
from hypothesis import strategies as st

from glyphscroll.core.errors import CodecError
from glyphscroll.storage.compression import (
    IncrementalDecompressor,
    compress_data,
    compression_stats,
    decompress_data,
)


@given(data=st.binary(max_size=4096), method=st.sampled_from(["deflate", "zstd", "none"]))
def test_round_trip(data, method):
    """Test every method decompresses to the original bytes."""
    assert decompress_data(compress_data(data, method), method) == data


def test_deflate_is_zlib_format():
    """Any zlib inflater must read what we write."""
    data = b"hello hello hello hello"
    compressed = compress_data(data)
    assert compressed[0] == 0x78
    assert zlib.decompress(compressed) == data


def test_deflate_default_level_is_six():
    """Test deflate uses level 6 when none is given."""
    data = b"abcabcabc" * 100
    assert compress_data(data) == zlib.compress(data, 6)


def test_empty_input_round_trips():
    """Test empty input compresses and decompresses."""
    for method in ("deflate", "zstd", "none"):
        assert decompress_data(compress_data(b"", method), method) == b""


def test_malformed_input_raises_codec_error():
    """Test garbage input raises CodecError."""
    with pytest.raises(CodecError):
        decompress_data(b"definitely not deflate", "deflate")
    with pytest.raises(CodecError):
        decompress_data(b"definitely not zstd", "zstd")


def test_truncated_input_raises_codec_error():
    """Test a truncated stream raises CodecError."""
    compressed = compress_data(b"some text that compresses " * 50)
    with pytest.raises(CodecError):
        decompress_data(compressed[: len(compressed) // 2], "deflate")


def test_unknown_method_raises():
    """Test an unknown method name is rejected."""
    with pytest.raises(CodecError):
        compress_data(b"x", "brotli")


def test_non_bytes_input_raises():
    """Test text input is rejected."""
    with pytest.raises(CodecError):
        compress_data("text", "deflate")


def test_compression_stats_rounding():
    """Test compression stats round the ratio and percent saved."""
    stats = compression_stats(b"x" * 3000, b"y" * 1000)
    assert stats.original_size == 3000
    assert stats.compressed_size == 1000
    assert stats.compression_ratio == 0.33
    assert stats.space_saved == 2000
    assert stats.percent_saved == 66.67


def test_compression_stats_empty_original():
    """Test stats for empty input do not divide by zero."""
    stats = compression_stats(b"", b"")
    assert stats.compression_ratio == 1.0
    assert stats.percent_saved == 0.0


@pytest.mark.parametrize("method", ["deflate", "zstd", "none"])
def test_incremental_decompressor_matches_one_shot(method):
    """Test feeding a stream piece by piece matches one-shot decompression."""
    data = ("Chapter one. " * 400).encode("utf-8")
    compressed = compress_data(data, method)

    decompressor = IncrementalDecompressor(method)
    output = b""
    prefixes = []
    for start in range(0, len(compressed), 37):
        output += decompressor.feed(compressed[start:start + 37])
        prefixes.append(output)
    output += decompressor.flush()

    assert output == data
    # Every intermediate output is a prefix of the final text
    assert all(data.startswith(prefix) for prefix in prefixes)
