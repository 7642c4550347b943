"""
Write path: package building, progress reporting and ledger publishing.
"""

from glyphscroll.publishing.builder import ManifestBuilder, estimate_publication
from glyphscroll.publishing.progress import (
    ProgressChannel,
    PublishStateMachine,
    suggest_display,
)
from glyphscroll.publishing.publisher import ScrollPublisher

__all__ = [
    "ManifestBuilder",
    "estimate_publication",
    "ProgressChannel",
    "PublishStateMachine",
    "suggest_display",
    "ScrollPublisher",
]
