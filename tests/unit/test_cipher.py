"""
Tests for the positional byte cipher.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from glyphscroll.core.errors import CipherError
from glyphscroll.storage.cipher import GlyphCipher


@given(data=st.binary(max_size=2048), key=st.binary(min_size=1, max_size=32))
def test_round_trip(data, key):
    """Test decrypting the encrypted stream gives the original bytes."""
    cipher = GlyphCipher(key)
    assert cipher.decrypt(cipher.encrypt(data)) == data


def test_known_vector():
    """0x00 at position 0: 0x00 ^ 'G' ^ 0 = 0x47, swapped 0x74, masked 0xDE."""
    cipher = GlyphCipher()
    assert cipher.encrypt(b"\x00") == b"\xde"
    assert cipher.decrypt(b"\xde") == b"\x00"


def test_position_changes_output():
    """Test the same byte encrypts differently at different positions."""
    cipher = GlyphCipher()
    encrypted = cipher.encrypt(b"\x00" * 16)
    # Same input byte, different positions
    assert len(set(encrypted)) > 1


def test_preserves_length():
    """Test the cipher never changes the length."""
    cipher = GlyphCipher()
    assert len(cipher.encrypt(b"abc" * 100)) == 300


@given(
    data=st.binary(min_size=1, max_size=1024),
    cut=st.integers(min_value=0, max_value=1024),
)
def test_slices_decrypt_independently(data, cut):
    """Test each slice decrypts on its own given its offset."""
    cipher = GlyphCipher()
    cut = min(cut, len(data))
    encrypted = cipher.encrypt(data)
    head = cipher.decrypt(encrypted[:cut], offset=0)
    tail = cipher.decrypt(encrypted[cut:], offset=cut)
    assert head + tail == data


def test_offset_encrypt_matches_stream_slice():
    """Test encrypting at an offset matches the same slice of the whole stream."""
    cipher = GlyphCipher(b"k3y")
    data = bytes(range(256)) * 2
    assert cipher.encrypt(data[300:], offset=300) == cipher.encrypt(data)[300:]


def test_empty_key_rejected():
    """Test an empty key is rejected."""
    with pytest.raises(CipherError):
        GlyphCipher(b"")


def test_non_bytes_rejected():
    """Test text input is rejected."""
    with pytest.raises(CipherError):
        GlyphCipher().encrypt("text")


def test_negative_offset_rejected():
    """Test a negative offset is rejected."""
    with pytest.raises(CipherError):
        GlyphCipher().decrypt(b"x", offset=-1)
