"""
Error taxonomy for glyph-scroll.

Ledger errors split by retry policy:
- NetworkError: connection/timeout, retried with backoff
- RateLimitError: retried with a longer backoff
- NotFoundError: referenced transaction missing, terminal for that item
- SubmissionRejectedError: ledger refused the payload, terminal for that item

Content errors:
- IntegrityError: digest mismatch, retried a bounded number of times
- CodecError / CipherError: malformed payload, never retried
- IncompleteDataError: join attempted on missing chunks
"""

from typing import Optional


class GlyphScrollError(Exception):
    """Base exception for glyph-scroll."""

    def __init__(self, message: str, context: Optional[dict] = None):
        """
        Initialize exception with context.

        Args:
            message: Error message
            context: Additional context (story_id, index, ref, ...)
        """
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        result = f"[{self.__class__.__name__}] {self.message}"
        if self.context:
            result += f" (context: {self.context})"
        return result


class LedgerError(GlyphScrollError):
    """Raised by ledger collaborators."""

    retryable = False


class NetworkError(LedgerError):
    """Connection failure or timeout talking to the ledger."""

    retryable = True


class RateLimitError(LedgerError):
    """The ledger asked us to slow down."""

    retryable = True


class NotFoundError(LedgerError):
    """Referenced transaction does not exist."""


class SubmissionRejectedError(LedgerError):
    """The ledger refused a payload (too large, bad signer, ...)."""


class IntegrityError(GlyphScrollError):
    """Received bytes do not match the committed digest."""

    def __init__(self, message: str, index: Optional[int] = None, context: Optional[dict] = None):
        context = dict(context or {})
        if index is not None:
            context.setdefault("index", index)
        super().__init__(message, context)
        self.index = index


class CodecError(GlyphScrollError):
    """Compressed or enveloped payload is malformed."""


class CipherError(GlyphScrollError):
    """Cipher input or key is invalid."""


class IncompleteDataError(GlyphScrollError):
    """Chunks are missing or out of order."""


class PayloadTooLargeError(GlyphScrollError):
    """A payload cannot fit within one ledger transaction."""


class ManifestError(GlyphScrollError):
    """Manifest is structurally invalid."""


class ConcurrentPublishError(GlyphScrollError):
    """A publish for this story is already in flight."""


class InvalidTransitionError(GlyphScrollError):
    """State machine was asked for a transition it does not allow."""
