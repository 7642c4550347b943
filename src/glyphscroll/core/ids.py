"""
Deterministic ID generation for glyph-scroll.

ID Policy (Deterministic Hashes):
- story_id: "glyph_" + sha256(title + "_" + author_public_key + "_" + timestamp)[:16]
  (the same title, author key and timestamp always give the same id, so a
  rebuilt package for an interrupted publish resumes under the same id)
- timestamps are rendered as ISO 8601 in UTC before hashing
"""

import hashlib
from datetime import datetime, timezone

STORY_ID_PREFIX = "glyph_"


def normalize_timestamp(timestamp: datetime) -> datetime:
    """Return an aware UTC datetime with microseconds dropped."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).replace(microsecond=0)


def format_timestamp(timestamp: datetime) -> str:
    return normalize_timestamp(timestamp).isoformat()


def generate_story_id(title: str, author_public_key: str, timestamp: datetime) -> str:
    """
    Generate a story ID.

    Args:
        title: Story title
        author_public_key: Author's public key
        timestamp: Creation time

    Returns:
        "glyph_" followed by 16 hex chars
    """
    combined = f"{title}_{author_public_key}_{format_timestamp(timestamp)}"
    hash_obj = hashlib.sha256(combined.encode("utf-8"))
    return f"{STORY_ID_PREFIX}{hash_obj.hexdigest()[:16]}"


def is_story_id(value: str) -> bool:
    if not isinstance(value, str) or not value.startswith(STORY_ID_PREFIX):
        return False
    suffix = value[len(STORY_ID_PREFIX):]
    return len(suffix) == 16 and all(c in "0123456789abcdef" for c in suffix)
