"""
Identity Ledger Unit Tests
==========================

[UNIT] core/ledger.py against the in-memory store.
"""

import asyncio
import json

import pytest

from core.errors import (
    AlreadyDeleted, DocumentReused, DuplicateIdentity, DuplicateProofId, EmptyProofId,
    InvalidInput, MalformedPayload, NotFound, UnknownFingerprint,
)
from core.hashing import document_fingerprint, hash_address, hash_verification_code, strip_prefix
from core.ledger import IdentityLedger, merge_liveness
from core.records import IDENTITY_DELETED, LIVENESS_UPDATED, PROOF_STORED, PROOF_VERIFIED
from db.store import InMemoryLedgerStore


class TestStoreProof:

    async def test_create_scenario(self, ledger, stored, holder_a, doc_fp):
        await stored()
        assert await ledger.is_document_used(document_fingerprint("DOC123"))
        record = await ledger.get_identity(holder_a)
        assert record.proof_id == "proof1"
        assert record.commitment == "commit1"
        assert record.is_adult is True
        assert record.liveness_verified is False
        assert record.deleted is False
        assert record.created_at is not None

    async def test_holder_is_canonicalized(self, ledger, stored, holder_a):
        await stored(holder=holder_a.lower())
        assert (await ledger.get_identity(holder_a)).proof_id == "proof1"

    async def test_one_active_identity_per_holder(self, ledger, stored, holder_a):
        await stored()
        with pytest.raises(DuplicateIdentity):
            await stored(proof_id="proof2", fingerprint=document_fingerprint("DOC999"))

        await ledger.delete_identity(holder_a)
        record = await stored(proof_id="proof2", fingerprint=document_fingerprint("DOC999"))
        assert record.proof_id == "proof2"
        assert (await ledger.get_identity(holder_a)).deleted is False

    async def test_document_reuse_blocked_for_other_holders(self, stored, holder_b):
        await stored()
        with pytest.raises(DocumentReused):
            await stored(proof_id="proof2", holder=holder_b)

    async def test_document_reuse_blocked_after_deletion(self, ledger, stored, holder_a):
        await stored()
        await ledger.delete_identity(holder_a)
        with pytest.raises(DocumentReused):
            await stored(proof_id="proof2")

    async def test_proof_id_taken_by_another_holder(self, ledger, store, stored, holder_a, holder_b):
        await stored(payload='{"owner": "A"}')
        with pytest.raises(DuplicateProofId):
            await stored(holder=holder_b, fingerprint=document_fingerprint("DOC999"), payload='{"owner": "B"}')
        assert json.loads(await ledger.get_payload("proof1")) == {"owner": "A"}
        assert not (await ledger.get_identity(holder_b)).exists
        assert not await ledger.is_document_used(document_fingerprint("DOC999"))
        assert hash_address(holder_b) not in store.address_fingerprints

    async def test_proof_id_not_reusable_after_deletion(self, ledger, stored, holder_a):
        await stored()
        await ledger.delete_identity(holder_a)
        with pytest.raises(DuplicateProofId):
            await stored(fingerprint=document_fingerprint("DOC999"))

    @pytest.mark.parametrize("proof_id", ["", "   "])
    async def test_empty_proof_id(self, ledger, stored, proof_id, doc_fp):
        with pytest.raises(EmptyProofId):
            await stored(proof_id=proof_id)
        assert not await ledger.is_document_used(doc_fp)

    async def test_failed_store_has_no_effects(self, ledger, store, stored, holder_b):
        await stored()
        before = (dict(store.identities), set(store.used_documents), dict(store.address_fingerprints))
        with pytest.raises(DocumentReused):
            await stored(proof_id="proof2", holder=holder_b)
        assert before == (store.identities, store.used_documents, store.address_fingerprints)
        assert await ledger.get_payload("proof2") == ""
        assert not (await ledger.get_identity(holder_b)).exists

    async def test_effects_of_store(self, ledger, store, stored, holder_a, doc_fp):
        await stored(payload='{"a": 1}')
        assert store.address_fingerprints[hash_address(holder_a)] == holder_a
        assert await ledger.get_payload("proof1") == '{"a": 1}'
        events = await ledger.list_events(holder_a)
        assert [e.kind for e in events] == [PROOF_STORED]
        assert events[0].is_adult is True
        assert events[0].block_hash is not None

    async def test_malformed_document_fingerprint(self, stored):
        with pytest.raises(InvalidInput):
            await stored(fingerprint="DOC123")

    async def test_concurrent_same_document_exactly_one_wins(self, ledger, doc_fp, holder_a, holder_b):
        holders = [holder_a, holder_b] + ["0x" + f"{i:02x}" * 20 for i in range(1, 9)]
        results = await asyncio.gather(*[
            ledger.store_proof(h, f"proof-{i}", "c", True, True, "{}", doc_fp)
            for i, h in enumerate(holders)
        ], return_exceptions=True)
        wins = [r for r in results if not isinstance(r, Exception)]
        losses = [r for r in results if isinstance(r, Exception)]
        assert len(wins) == 1
        assert all(isinstance(r, DocumentReused) for r in losses)


class TestReads:

    async def test_unknown_holder_is_empty_not_error(self, ledger, holder_a):
        record = await ledger.get_identity(holder_a)
        assert record.proof_id == ""
        assert not record.exists

    async def test_unknown_payload_is_empty(self, ledger):
        assert await ledger.get_payload("nope") == ""
        assert await ledger.get_payload("") == ""

    async def test_hash_address_matches_helper(self, ledger, holder_a):
        assert ledger.hash_address(holder_a) == hash_address(holder_a)


class TestLiveness:

    async def test_update_is_additive(self, ledger, stored, holder_a):
        await stored(payload=json.dumps({"pi_a": ["x"], "livenessVerified": False}))
        record = await ledger.update_liveness_status(holder_a, True)
        assert record.liveness_verified is True
        assert (await ledger.get_identity(holder_a)).liveness_verified is True

        payload = json.loads(await ledger.get_payload("proof1"))
        assert payload["pi_a"] == ["x"]
        assert payload["livenessVerified"] is True
        assert [h["livenessVerified"] for h in payload["livenessHistory"]] == [False, True]

    async def test_repeated_updates_append(self, ledger, stored, holder_a):
        await stored()
        await ledger.update_liveness_status(holder_a, True)
        await ledger.update_liveness_status(holder_a, False)
        payload = json.loads(await ledger.get_payload("proof1"))
        assert [h["livenessVerified"] for h in payload["livenessHistory"]] == [True, False]
        kinds = [e.kind for e in await ledger.list_events(holder_a)]
        assert kinds == [PROOF_STORED, LIVENESS_UPDATED, LIVENESS_UPDATED]

    async def test_non_json_payload_is_wrapped(self, ledger, stored, holder_a):
        await stored(payload="opaque-blob")
        await ledger.update_liveness_status(holder_a, True)
        payload = json.loads(await ledger.get_payload("proof1"))
        assert payload["payload"] == "opaque-blob"

    async def test_not_found(self, ledger, holder_a):
        with pytest.raises(NotFound):
            await ledger.update_liveness_status(holder_a, True)

    async def test_already_deleted(self, ledger, stored, holder_a):
        await stored()
        await ledger.delete_identity(holder_a)
        with pytest.raises(AlreadyDeleted):
            await ledger.update_liveness_status(holder_a, True)

    def test_merge_keeps_list_payload(self):
        from datetime import datetime
        merged = json.loads(merge_liveness("[1, 2]", True, datetime(2026, 1, 1)))
        assert merged["payload"] == "[1, 2]"
        assert merged["livenessHistory"][-1]["updatedAt"] == "2026-01-01T00:00:00"


class TestDelete:

    async def test_delete(self, ledger, stored, holder_a, doc_fp):
        await stored()
        record = await ledger.delete_identity(holder_a)
        assert record.deleted
        assert (await ledger.get_identity(holder_a)).deleted is True
        assert await ledger.is_document_used(doc_fp)
        assert (await ledger.list_events(holder_a))[-1].kind == IDENTITY_DELETED

    async def test_delete_twice(self, ledger, stored, holder_a):
        await stored()
        await ledger.delete_identity(holder_a)
        with pytest.raises(AlreadyDeleted):
            await ledger.delete_identity(holder_a)

    async def test_delete_missing(self, ledger, holder_a):
        with pytest.raises(NotFound):
            await ledger.delete_identity(holder_a)


class TestVerifyByCodeHash:

    async def test_scenario_code_binding(self, ledger, stored, issuer, holder_a):
        await stored()
        binding = issuer.issue(holder_a)
        assert binding.code == "123456"
        assert binding.code_hash == hash_verification_code("123456", holder_a)
        fp = hash_address(holder_a)
        assert await ledger.verify_by_code_hash("proof1", fp, "123456", binding.code_hash) is True
        assert await ledger.verify_by_code_hash("proof1", fp, "654321", binding.code_hash) is False

    async def test_any_single_change_fails(self, ledger, stored, issuer, holder_a, holder_b):
        await stored()
        await stored(proof_id="proofB", holder=holder_b, fingerprint=document_fingerprint("DOC-B"))
        b = issuer.issue(holder_a)
        assert await ledger.verify_by_code_hash("proof1", b.address_fingerprint, b.code, b.code_hash)
        assert not await ledger.verify_by_code_hash("proof2", b.address_fingerprint, b.code, b.code_hash)
        assert not await ledger.verify_by_code_hash("proof1", b.address_fingerprint, "123457", b.code_hash)
        assert not await ledger.verify_by_code_hash("proof1", hash_address(holder_b), b.code, b.code_hash)
        assert not await ledger.verify_by_code_hash("proof1", b.address_fingerprint, "", b.code_hash)

    async def test_prefix_free_hashes_accepted(self, ledger, stored, issuer, holder_a):
        await stored()
        b = issuer.issue(holder_a)
        assert await ledger.verify_by_code_hash(
            "proof1", strip_prefix(b.address_fingerprint), b.code, strip_prefix(b.code_hash),
        )

    async def test_verify_does_not_mutate(self, ledger, store, stored, issuer, holder_a):
        await stored()
        b = issuer.issue(holder_a)
        events_before = len(store.events)
        for _ in range(3):
            await ledger.verify_by_code_hash("proof1", b.address_fingerprint, b.code, b.code_hash)
        assert len(store.events) == events_before

    async def test_expired_code_still_accepted_by_ledger(self, ledger, stored, issuer, holder_a):
        await stored()
        b = issuer.issue(holder_a)
        assert b.is_expired(b.expires_at)
        assert await ledger.verify_by_code_hash("proof1", b.address_fingerprint, b.code, b.code_hash)

    async def test_deleted_identity_unverifiable(self, ledger, stored, issuer, holder_a):
        await stored()
        b = issuer.issue(holder_a)
        await ledger.delete_identity(holder_a)
        with pytest.raises(AlreadyDeleted):
            await ledger.verify_by_code_hash("proof1", b.address_fingerprint, b.code, b.code_hash)

    async def test_unknown_fingerprint(self, ledger, holder_a, issuer):
        b = issuer.issue(holder_a)
        with pytest.raises(UnknownFingerprint):
            await ledger.verify_by_code_hash("proof1", b.address_fingerprint, b.code, b.code_hash)

    async def test_malformed_code_hash(self, ledger, stored, holder_a):
        await stored()
        with pytest.raises(MalformedPayload):
            await ledger.verify_by_code_hash("proof1", hash_address(holder_a), "123456", "xyz")


class TestLogVerification:

    async def test_logs_event(self, ledger, stored, holder_a):
        await stored()
        event = await ledger.log_verification_event("proof1", hash_address(holder_a))
        assert event.kind == PROOF_VERIFIED
        assert event.holder == holder_a
        assert (await ledger.list_events(holder_a))[-1].kind == PROOF_VERIFIED

    async def test_only_fingerprint_is_checked(self, ledger, stored, holder_a):
        await stored()
        await ledger.delete_identity(holder_a)
        event = await ledger.log_verification_event("whatever", hash_address(holder_a))
        assert event.proof_id == "whatever"

    async def test_unknown_fingerprint(self, ledger, holder_b):
        with pytest.raises(UnknownFingerprint):
            await ledger.log_verification_event("proof1", hash_address(holder_b))


class TestAnchoring:

    async def test_events_form_valid_chain(self, ledger, chain, stored, holder_a):
        await stored()
        await ledger.update_liveness_status(holder_a, True)
        await ledger.delete_identity(holder_a)
        assert len(chain.blocks) == 4      # genesis + 3 events
        assert chain.verify_chain()
        chain.blocks[1]["data"]["is_adult"] = False
        assert not chain.verify_chain()

    async def test_anchor_failure_does_not_fail_mutation(self, holder_a, doc_fp):
        class BrokenChain:
            async def write_block(self, block_type, data):
                raise ConnectionError("node down")

        ledger = IdentityLedger(InMemoryLedgerStore(), chain=BrokenChain())
        record = await ledger.store_proof(holder_a, "proof1", "c", True, False, "{}", doc_fp)
        assert record.proof_id == "proof1"
        events = await ledger.list_events()
        assert len(events) == 1 and events[0].block_hash is None
