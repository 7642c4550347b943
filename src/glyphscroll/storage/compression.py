"""
Compression utilities for glyph-scroll.

deflate (zlib container) is the default because every platform a reader
might use can inflate it. zstd is kept for the local cache and for writers
who only target Python readers. "none" passes bytes through unchanged.
"""

import zlib

import zstandard as zstd

from glyphscroll.core.contracts import CompressionStats
from glyphscroll.core.errors import CodecError

METHODS = ("deflate", "zstd", "none")


def _check_method(method: str):
    if method not in METHODS:
        raise CodecError(f"Unknown compression method: {method}")


def compress_data(data: bytes, method: str = "deflate", level: int = 6) -> bytes:
    """
    Compress data.

    Args:
        data: Data to compress
        method: "deflate", "zstd" or "none"
        level: Compression level (deflate 0-9, zstd 1-22)

    Returns:
        Compressed data
    """
    _check_method(method)
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise CodecError(f"Expected bytes, got {type(data).__name__}")
    if method == "deflate":
        return zlib.compress(bytes(data), level)
    if method == "zstd":
        cctx = zstd.ZstdCompressor(level=level)
        return cctx.compress(bytes(data))
    return bytes(data)


def decompress_data(compressed_data: bytes, method: str = "deflate") -> bytes:
    """
    Decompress data.

    Args:
        compressed_data: Compressed data
        method: Method the data was compressed with

    Returns:
        Decompressed data

    Raises:
        CodecError: If the data is malformed or truncated
    """
    _check_method(method)
    try:
        if method == "deflate":
            return zlib.decompress(bytes(compressed_data))
        if method == "zstd":
            dctx = zstd.ZstdDecompressor()
            # Frames written by ZstdCompressor.compress carry their content size
            return dctx.decompress(bytes(compressed_data))
    except (zlib.error, zstd.ZstdError) as e:
        raise CodecError(f"Failed to decompress {method} data: {e}") from e
    return bytes(compressed_data)


def compression_stats(original: bytes, compressed: bytes) -> CompressionStats:
    """
    Compute compression statistics.

    Ratio and percent are rounded to two decimal places.
    """
    original_size = len(original)
    compressed_size = len(compressed)
    ratio = compressed_size / original_size if original_size > 0 else 1.0
    space_saved = original_size - compressed_size
    percent_saved = (space_saved / original_size) * 100 if original_size > 0 else 0.0
    return CompressionStats(
        original_size=original_size,
        compressed_size=compressed_size,
        compression_ratio=round(ratio, 2),
        space_saved=space_saved,
        percent_saved=round(percent_saved, 2),
    )


class IncrementalDecompressor:
    """
    Decompress a stream that arrives as a growing prefix.

    Each ``feed`` returns whatever output the new bytes make available;
    ``flush`` returns the tail once the whole stream has been fed.
    """

    def __init__(self, method: str = "deflate"):
        _check_method(method)
        self.method = method
        if method == "deflate":
            self._obj = zlib.decompressobj()
        elif method == "zstd":
            self._obj = zstd.ZstdDecompressor().decompressobj()
        else:
            self._obj = None

    def feed(self, data: bytes) -> bytes:
        if self._obj is None:
            return bytes(data)
        try:
            return self._obj.decompress(bytes(data))
        except (zlib.error, zstd.ZstdError) as e:
            raise CodecError(f"Failed to decompress {self.method} stream: {e}") from e

    def flush(self) -> bytes:
        if self.method == "deflate":
            try:
                return self._obj.flush()
            except zlib.error as e:
                raise CodecError(f"Failed to finish deflate stream: {e}") from e
        if self.method == "zstd":
            return self._obj.flush()
        return b""
