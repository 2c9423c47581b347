"""
VeriID Test Configuration
=========================

[FIXTURES]
- store / ledger: fresh in-memory ledger per test, with a simulated chain
- holder_a / holder_b: well-formed holder addresses (checksummed)
- builder: commitment builder with pinned blinding bytes
- issuer: code issuer with pinned clock and code

Usage:
    pytest tests/unit/          # Fast unit tests
    pytest tests/integration/   # SQL store + HTTP API
"""

from datetime import datetime, timedelta, timezone

import pytest
from web3 import Web3

from core.blockchain import SimulatedChain
from core.codes import VerificationCodeIssuer
from core.commitment import DecodedIdentity, IdentityCommitmentBuilder
from core.hashing import document_fingerprint
from core.ledger import IdentityLedger
from db.store import InMemoryLedgerStore


FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        path = str(item.fspath)
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def holder_a() -> str:
    return Web3.to_checksum_address("0x" + "aa" * 20)


@pytest.fixture
def holder_b() -> str:
    return Web3.to_checksum_address("0x" + "bb" * 20)


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def chain():
    return SimulatedChain()


@pytest.fixture
def ledger(store, chain):
    return IdentityLedger(store, chain=chain, clock=lambda: FIXED_NOW)


@pytest.fixture
def doc_fp():
    return document_fingerprint("DOC123")


@pytest.fixture
def builder():
    return IdentityCommitmentBuilder(clock=lambda: FIXED_NOW, token_bytes=lambda n: b"\x07" * n)


@pytest.fixture
def adult_card():
    return DecodedIdentity(reference_id="123456789012", name="Asha Rao", age=34)


@pytest.fixture
def minor_card():
    return DecodedIdentity(reference_id="987654321098", name="Ravi Rao", age=15)


@pytest.fixture
def issuer():
    return VerificationCodeIssuer(
        ttl=timedelta(minutes=5),
        clock=lambda: FIXED_NOW,
        randbelow=lambda n: 123456,
    )


@pytest.fixture
def stored(ledger, holder_a, doc_fp):
    """Coroutine factory storing the reference identity for holder_a."""
    async def _store(proof_id="proof1", holder=None, fingerprint=None, payload="{}"):
        return await ledger.store_proof(
            holder or holder_a, proof_id, "commit1", True, False, payload, fingerprint or doc_fp,
        )
    return _store
