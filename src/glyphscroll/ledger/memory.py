"""
In-process ledger with fault injection.

Used by the test suite and for dry runs. Faults are queued per predicate
(submit) or per reference (read) so a test can say "the second read of
chunk 5 is rate limited" without timing tricks.
"""

import asyncio
import hashlib
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from glyphscroll.core.errors import NotFoundError, SubmissionRejectedError
from glyphscroll.ledger.base import Ledger, Signer, TransactionRef

logger = logging.getLogger(__name__)


@dataclass
class _SubmitFault:
    predicate: Callable[[bytes], bool]
    error: Exception
    remaining: Optional[int]  # None = forever


class InMemoryLedger(Ledger):
    """Dict-backed ledger."""

    def __init__(self, max_payload_size: int = 1200, latency_s: float = 0.0):
        """
        Initialize ledger.

        Args:
            max_payload_size: Submissions larger than this are rejected
            latency_s: Simulated delay per call
        """
        self.max_payload_size = max_payload_size
        self.latency_s = latency_s
        self._transactions: Dict[str, bytes] = {}
        self._sequence = 0
        self.submissions: List[TransactionRef] = []
        self.signers: Dict[TransactionRef, str] = {}
        self.read_counts: Counter = Counter()
        self._submit_faults: List[_SubmitFault] = []
        self._read_faults: Dict[TransactionRef, List[Exception]] = {}
        self.on_read: Optional[Callable[[TransactionRef], None]] = None

    # Storage hooks (overridden by DirectoryLedger)

    def _store(self, ref: TransactionRef, payload: bytes):
        self._transactions[ref] = payload

    def _load(self, ref: TransactionRef) -> Optional[bytes]:
        return self._transactions.get(ref)

    def _next_ref(self, payload: bytes) -> TransactionRef:
        self._sequence += 1
        digest = hashlib.sha256(self._sequence.to_bytes(8, "big") + payload).hexdigest()
        return f"tx_{digest[:24]}"

    # Fault injection

    def inject_submit_fault(
        self,
        predicate: Callable[[bytes], bool],
        error: Exception,
        times: Optional[int] = 1,
    ):
        """Fail the next ``times`` submissions whose payload matches ``predicate``."""
        self._submit_faults.append(_SubmitFault(predicate, error, times))

    def inject_read_fault(self, ref: TransactionRef, error: Exception, times: int = 1):
        """Fail the next ``times`` reads of ``ref``."""
        self._read_faults.setdefault(ref, []).extend([error] * times)

    def clear_faults(self):
        self._submit_faults.clear()
        self._read_faults.clear()

    def tamper(self, ref: TransactionRef, payload: bytes):
        """Replace a stored payload, as a malicious or broken node might."""
        if self._load(ref) is None:
            raise NotFoundError(f"Transaction not found: {ref}")
        self._store(ref, payload)

    def _pop_submit_fault(self, payload: bytes) -> Optional[Exception]:
        for fault in self._submit_faults:
            if fault.predicate(payload):
                if fault.remaining is not None:
                    fault.remaining -= 1
                    if fault.remaining <= 0:
                        self._submit_faults.remove(fault)
                return fault.error
        return None

    # Ledger API

    async def submit(self, payload: bytes, signer: Signer) -> TransactionRef:
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        if len(payload) > self.max_payload_size:
            raise SubmissionRejectedError(
                f"Payload of {len(payload)} bytes exceeds limit {self.max_payload_size}"
            )
        fault = self._pop_submit_fault(payload)
        if fault is not None:
            raise fault

        ref = self._next_ref(payload)
        self._store(ref, bytes(payload))
        self.submissions.append(ref)
        self.signers[ref] = signer.public_key
        logger.debug(f"Submitted {len(payload)} bytes as {ref}")
        return ref

    async def read(self, ref: TransactionRef) -> bytes:
        self.read_counts[ref] += 1
        if self.on_read is not None:
            self.on_read(ref)
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        faults = self._read_faults.get(ref)
        if faults:
            raise faults.pop(0)

        payload = self._load(ref)
        if payload is None:
            raise NotFoundError(f"Transaction not found: {ref}", context={"ref": ref})
        return payload

    @property
    def submission_count(self) -> int:
        return len(self.submissions)
