"""
On-ledger payload format.

Every transaction carries one compact JSON envelope:

    {"p": kind, "s": story_id, "i": index, "d": base64(data)}

Kinds:
- g-h-v1: hash-list chunk (raw 32-byte digests)
- g-c-v1: content chunk (post-cipher bytes)
- g-x-v1: reference-index chunk (spilled manifest references)
- g-r-v1: manifest root (deflated manifest JSON)
"""

import base64
import binascii
import json
from dataclasses import dataclass

from glyphscroll.core.errors import CodecError, IntegrityError

KIND_HASH_LIST = "g-h-v1"
KIND_CONTENT = "g-c-v1"
KIND_REF_INDEX = "g-x-v1"
KIND_ROOT = "g-r-v1"
KINDS = (KIND_HASH_LIST, KIND_CONTENT, KIND_REF_INDEX, KIND_ROOT)

DIGEST_SIZE = 32  # sha256
STORY_ID_LENGTH = 22  # "glyph_" + 16 hex chars
MAX_INDEX = 0xFFFFFFFF

# Envelope with empty story id and data, widest index
_SKELETON = json.dumps(
    {"p": KIND_HASH_LIST, "s": "", "i": MAX_INDEX, "d": ""}, separators=(",", ":")
)
ENVELOPE_OVERHEAD = len(_SKELETON) + STORY_ID_LENGTH


@dataclass(frozen=True)
class Envelope:
    kind: str
    story_id: str
    index: int
    data: bytes


def max_chunk_payload(max_payload_size: int) -> int:
    """
    Largest raw chunk that still fits one transaction once enveloped.

    Args:
        max_payload_size: Ledger limit in bytes

    Returns:
        Raw byte capacity (base64 expands every 3 bytes to 4)
    """
    available = max_payload_size - ENVELOPE_OVERHEAD
    if available <= 0:
        return 0
    return (available // 4) * 3


def encode_envelope(kind: str, story_id: str, index: int, data: bytes) -> bytes:
    """Serialize one envelope to ledger bytes."""
    if kind not in KINDS:
        raise ValueError(f"Unknown envelope kind: {kind}")
    if not 0 <= index <= MAX_INDEX:
        raise ValueError(f"Envelope index out of range: {index}")
    body = {
        "p": kind,
        "s": story_id,
        "i": index,
        "d": base64.b64encode(data).decode("ascii"),
    }
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


def decode_envelope(raw: bytes) -> Envelope:
    """
    Parse ledger bytes into an Envelope.

    Raises:
        CodecError: If the bytes are not a well-formed envelope
    """
    try:
        body = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CodecError(f"Envelope is not valid JSON: {e}") from e

    if not isinstance(body, dict) or body.get("p") not in KINDS:
        raise CodecError("Envelope has no recognized kind")
    story_id = body.get("s")
    index = body.get("i")
    data = body.get("d")
    if not isinstance(story_id, str) or not isinstance(index, int) or not isinstance(data, str):
        raise CodecError("Envelope fields have wrong types")

    try:
        payload = base64.b64decode(data.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise CodecError(f"Envelope data is not base64: {e}") from e

    return Envelope(kind=body["p"], story_id=story_id, index=index, data=payload)


def expect_envelope(raw: bytes, kind: str, story_id: str, index: int) -> bytes:
    """
    Decode and check that an envelope is the one we asked for.

    A well-formed envelope for a different kind, story or position means
    the reference points at the wrong transaction, which is an integrity
    failure rather than a codec failure.

    Returns:
        The envelope's data bytes
    """
    envelope = decode_envelope(raw)
    if envelope.kind != kind or envelope.story_id != story_id or envelope.index != index:
        raise IntegrityError(
            f"Expected {kind} #{index} of {story_id}, got "
            f"{envelope.kind} #{envelope.index} of {envelope.story_id}",
            index=index,
        )
    return envelope.data
