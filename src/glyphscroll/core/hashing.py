"""
Content addressing for glyph-scroll.

The Hasher is a collaborator: anything with ``hash(bytes) -> hex str`` works.
The default is SHA-256.
"""

import hashlib
from typing import Iterable


class Hasher:
    """SHA-256 content hasher."""

    digest_size = 32

    def hash(self, data: bytes) -> str:
        """
        Hash bytes.

        Args:
            data: Bytes to hash

        Returns:
            Lowercase hex digest
        """
        return hashlib.sha256(data).hexdigest()

    def hash_many(self, hex_digests: Iterable[str]) -> str:
        """
        Combine digests into one commitment.

        The combined value is the hash of the raw digest bytes concatenated
        in order, so reordering any two digests changes the result.
        """
        return self.hash(b"".join(bytes.fromhex(d) for d in hex_digests))


def is_hex_digest(value: str, length: int = 64) -> bool:
    """True if value is a lowercase hex string of the given length."""
    if not isinstance(value, str) or len(value) != length:
        return False
    return all(c in "0123456789abcdef" for c in value)
