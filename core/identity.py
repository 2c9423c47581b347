"""
core/identity.py — Identity Enrollment & Sharing
==================================================
The holder-side flows that glue the pieces together:

    enroll()               ID card record + liveness → proof → ledger
    load_holder_identity() dashboard view of the holder's active identity
    issue_share_bundle()   fresh code + the two QR payloads (identity / age)
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from core.codes import CodeBinding, VerificationCodeIssuer
from core.commitment import BuiltProof, DecodedIdentity, IdentityCommitmentBuilder
from core.errors import DocumentReused, InvalidInput, LivenessRequired, NotFound
from core.hashing import document_fingerprint
from core.records import IdentityRecord
from core.verification import encode_payload

logger = logging.getLogger("veriid.identity")


@dataclass(frozen=True)
class Enrollment:
    proof: BuiltProof
    document_fingerprint: str
    record: IdentityRecord


@dataclass(frozen=True)
class ShareBundle:
    binding: CodeBinding
    identity_payload: str
    age_payload: Optional[str] = None     # only for adults


async def enroll(
    ledger,
    builder: IdentityCommitmentBuilder,
    holder: str,
    decoded: DecodedIdentity,
    liveness_verified: bool,
) -> Enrollment:
    """
    Reuse is checked before any proof work is done; the ledger checks again
    atomically on store, so a race between two holders still fails cleanly.
    """
    if not decoded.reference_id:
        raise InvalidInput("No identity data found. Please scan your ID again.")
    doc_fp = document_fingerprint(decoded.reference_id)
    if await ledger.is_document_used(doc_fp):
        raise DocumentReused()
    if not liveness_verified:
        raise LivenessRequired()

    proof = builder.build(decoded, liveness_verified)
    record = await ledger.store_proof(
        holder,
        proof.proof_id,
        proof.commitment,
        proof.public_signals.is_adult,
        proof.public_signals.liveness_verified,
        proof.payload,
        doc_fp,
    )
    logger.info(f"Identity enrolled for {record.holder}: {proof.proof_id}")
    return Enrollment(proof=proof, document_fingerprint=doc_fp, record=record)


async def load_holder_identity(ledger, holder: str) -> Optional[dict]:
    """None when the holder has no identity or it has been deleted."""
    record = await ledger.get_identity(holder)
    if not record.exists or record.deleted:
        return None

    liveness = record.liveness_verified
    payload = await ledger.get_payload(record.proof_id)
    try:
        parsed = json.loads(payload)
        if isinstance(parsed, dict) and "livenessVerified" in parsed:
            liveness = bool(parsed["livenessVerified"])
    except ValueError:
        logger.warning(f"Unparseable payload for {record.proof_id}")

    summary = record.to_dict()
    summary["livenessVerified"] = liveness
    return summary


async def issue_share_bundle(ledger, issuer: VerificationCodeIssuer, holder: str) -> ShareBundle:
    summary = await load_holder_identity(ledger, holder)
    if summary is None:
        raise NotFound()
    binding = issuer.issue(holder)
    proof_id = summary["proofId"]
    age_payload = None
    if summary["isAdult"]:
        age_payload = encode_payload("age", proof_id, binding.address_fingerprint, binding.code_hash)
    return ShareBundle(
        binding=binding,
        identity_payload=encode_payload("identity", proof_id, binding.address_fingerprint, binding.code_hash),
        age_payload=age_payload,
    )
