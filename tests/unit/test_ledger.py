"""
Tests for the in-memory and directory ledgers.
"""

import asyncio

import pytest

from glyphscroll.core.errors import NotFoundError, RateLimitError, SubmissionRejectedError
from glyphscroll.ledger import DirectoryLedger, InMemoryLedger, LocalSigner

SIGNER = LocalSigner("pk_test")


def test_submit_and_read():
    """Test a submitted payload reads back by its ref."""
    ledger = InMemoryLedger()

    async def scenario():
        ref = await ledger.submit(b"hello", SIGNER)
        return ref, await ledger.read(ref)

    ref, payload = asyncio.run(scenario())
    assert ref.startswith("tx_")
    assert payload == b"hello"
    assert ledger.submissions == [ref]
    assert ledger.signers[ref] == "pk_test"


def test_identical_payloads_get_distinct_refs():
    """Test identical payloads get distinct refs."""
    ledger = InMemoryLedger()

    async def scenario():
        return await ledger.submit(b"same", SIGNER), await ledger.submit(b"same", SIGNER)

    first, second = asyncio.run(scenario())
    assert first != second


def test_oversize_payload_rejected():
    """Test payloads over the limit are rejected."""
    ledger = InMemoryLedger(max_payload_size=10)
    with pytest.raises(SubmissionRejectedError):
        asyncio.run(ledger.submit(b"x" * 11, SIGNER))
    assert ledger.submission_count == 0


def test_unknown_ref_not_found():
    """Test reading an unknown ref raises NotFoundError."""
    with pytest.raises(NotFoundError):
        asyncio.run(InMemoryLedger().read("tx_missing"))


def test_injected_read_fault_fires_once():
    """Test an injected read fault fires once then clears."""
    ledger = InMemoryLedger()

    async def scenario():
        ref = await ledger.submit(b"data", SIGNER)
        ledger.inject_read_fault(ref, RateLimitError("slow down"))
        with pytest.raises(RateLimitError):
            await ledger.read(ref)
        return await ledger.read(ref), ledger.read_counts[ref]

    assert asyncio.run(scenario()) == (b"data", 2)


def test_injected_submit_fault_matches_predicate():
    """Test submit faults only hit matching payloads."""
    ledger = InMemoryLedger()
    ledger.inject_submit_fault(lambda payload: payload == b"bad", RateLimitError("no"), times=2)

    async def scenario():
        await ledger.submit(b"good", SIGNER)
        for _ in range(2):
            with pytest.raises(RateLimitError):
                await ledger.submit(b"bad", SIGNER)
        await ledger.submit(b"bad", SIGNER)

    asyncio.run(scenario())
    assert ledger.submission_count == 2


def test_tamper_replaces_payload():
    """Test tampering replaces the stored payload."""
    ledger = InMemoryLedger()

    async def scenario():
        ref = await ledger.submit(b"original", SIGNER)
        ledger.tamper(ref, b"forged")
        return await ledger.read(ref)

    assert asyncio.run(scenario()) == b"forged"


def test_directory_ledger_persists(tmp_path):
    """Test directory ledger transactions survive a new instance."""
    async def write():
        return await DirectoryLedger(tmp_path).submit(b"persisted", SIGNER)

    ref = asyncio.run(write())
    assert (tmp_path / f"{ref}.tx").read_bytes() == b"persisted"

    reopened = DirectoryLedger(tmp_path)
    assert asyncio.run(reopened.read(ref)) == b"persisted"
    # Sequence resumes, so the same payload gets a new ref
    assert asyncio.run(reopened.submit(b"persisted", SIGNER)) != ref


def test_directory_ledger_rejects_path_refs(tmp_path):
    """Test refs that would leave the ledger directory are reported as not found."""
    ledger = DirectoryLedger(tmp_path / "ledger")
    for ref in ("../etc/passwd", "a\\b", ".hidden", ""):
        with pytest.raises(NotFoundError) as excinfo:
            asyncio.run(ledger.read(ref))
        assert excinfo.value.context == {"ref": ref}
    assert not (tmp_path / "etc").exists()
