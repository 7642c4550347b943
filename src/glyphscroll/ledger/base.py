"""
Ledger collaborator interface.

The ledger is an append-only transaction log: ``submit`` stores a payload
and returns a reference, ``read`` returns the payload for a reference.
Both may suspend; neither is expected to retry on its own.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol

TransactionRef = str


class Signer(Protocol):
    """Whatever signs submissions; only the public key is visible here."""

    public_key: str


@dataclass(frozen=True)
class LocalSigner:
    """A signer identified by its public key alone."""

    public_key: str


class Ledger(ABC):
    """Abstract ledger."""

    max_payload_size: int = 1200

    @abstractmethod
    async def submit(self, payload: bytes, signer: Signer) -> TransactionRef:
        """
        Submit one transaction.

        Raises:
            NetworkError, RateLimitError: Transient, safe to retry
            SubmissionRejectedError: The ledger refused the payload
        """

    @abstractmethod
    async def read(self, ref: TransactionRef) -> bytes:
        """
        Read one transaction's payload.

        Raises:
            NotFoundError: No such transaction
            NetworkError, RateLimitError: Transient, safe to retry
        """
