"""
Position-keyed byte obfuscation for glyph-scroll.

This is obfuscation, not confidentiality: the key is shared by every
publisher and reader and the ledger is public.

For the byte b at absolute position i:

    encrypt: e = swap(b ^ key[i % len(key)] ^ (i & 0xFF)) ^ 0xAA
    decrypt: b = swap(e ^ 0xAA) ^ key[i % len(key)] ^ (i & 0xFF)

swap exchanges the high and low nibbles and is its own inverse, so
decrypt undoes the three encrypt steps in reverse order.
"""

from glyphscroll.core.contracts import DEFAULT_CIPHER_KEY
from glyphscroll.core.errors import CipherError

MASK = 0xAA

# swap(x) for every byte value
_SWAP = bytes(((x & 0x0F) << 4) | ((x & 0xF0) >> 4) for x in range(256))


class GlyphCipher:
    """Reversible keyed byte transform applied after compression."""

    def __init__(self, key: bytes = DEFAULT_CIPHER_KEY):
        if not isinstance(key, (bytes, bytearray)) or not key:
            raise CipherError("Cipher key must be non-empty bytes")
        self.key = bytes(key)

    def _keystream(self, offset: int, length: int) -> bytes:
        key = self.key
        key_len = len(key)
        return bytes(
            key[i % key_len] ^ (i & 0xFF) for i in range(offset, offset + length)
        )

    def _check(self, data, offset: int) -> bytes:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise CipherError(f"Expected bytes, got {type(data).__name__}")
        if offset < 0:
            raise CipherError(f"Offset must be non-negative, got {offset}")
        return bytes(data)

    def encrypt(self, data: bytes, offset: int = 0) -> bytes:
        """
        Obfuscate bytes.

        Args:
            data: Plain bytes
            offset: Absolute stream position of data[0]

        Returns:
            Obfuscated bytes of the same length
        """
        data = self._check(data, offset)
        stream = self._keystream(offset, len(data))
        return bytes(_SWAP[b ^ k] ^ MASK for b, k in zip(data, stream))

    def decrypt(self, data: bytes, offset: int = 0) -> bytes:
        """
        Reverse ``encrypt``.

        Any slice of an encrypted stream decrypts on its own as long as
        ``offset`` is the slice's absolute position.
        """
        data = self._check(data, offset)
        stream = self._keystream(offset, len(data))
        return bytes(_SWAP[e ^ MASK] ^ k for e, k in zip(data, stream))
