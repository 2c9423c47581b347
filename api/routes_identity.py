"""
api/routes_identity.py — Identity Ledger API Endpoints
========================================================
The request/response surface of the identity ledger. The holder address
is always part of the request — there is no implicit caller.

Endpoints:
    POST   /identity/enroll                    → ID card record + liveness → stored proof
    POST   /identity/proofs                    → Store a pre-built proof
    GET    /identity/documents/{fingerprint}   → Has this document been used?
    GET    /identity/payloads/{proof_id}       → Raw proof payload ("" if unknown)
    GET    /identity/{holder}                  → Ledger record (empty proofId = none)
    GET    /identity/{holder}/summary          → Active identity or 404
    GET    /identity/{holder}/events           → Event history
    POST   /identity/{holder}/liveness         → Update liveness status
    DELETE /identity/{holder}                  → Delete identity
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from config import settings
from core.commitment import DecodedIdentity, IdentityCommitmentBuilder, confirm_reference_prefix
from core.errors import InvalidInput, NotFound
from core.identity import enroll, load_holder_identity
from core.ledger import IdentityLedger, get_ledger

router = APIRouter()


def get_builder() -> IdentityCommitmentBuilder:
    return IdentityCommitmentBuilder(adult_age=settings.ADULT_AGE_THRESHOLD)


# ── Request / Response schemas ────────────────────────────────────────────────
class EnrollRequest(BaseModel):
    holder: str
    identity: DecodedIdentity
    reference_prefix: str           # first digits of the ID number, typed by the holder
    liveness_verified: bool


class EnrollResponse(BaseModel):
    proof_id: str
    commitment: str
    is_adult: bool
    liveness_verified: bool
    message: str


class StoreProofRequest(BaseModel):
    holder: str
    proof_id: str
    commitment: str
    is_adult: bool
    liveness_verified: bool = False
    payload: str = ""
    document_fingerprint: str


class LivenessRequest(BaseModel):
    liveness_verified: bool


# ── Endpoints ─────────────────────────────────────────────────────────────────
@router.post("/enroll", response_model=EnrollResponse, status_code=201)
async def enroll_identity(
    body: EnrollRequest,
    ledger: IdentityLedger = Depends(get_ledger),
    builder: IdentityCommitmentBuilder = Depends(get_builder),
):
    """
    Create an identity from a decoded ID card.
    Raw card fields never reach the ledger — only the commitment does.
    """
    if not confirm_reference_prefix(body.identity, body.reference_prefix, settings.REFERENCE_PREFIX_DIGITS):
        raise InvalidInput("The digits entered do not match your ID card.")

    result = await enroll(ledger, builder, body.holder, body.identity, body.liveness_verified)
    return EnrollResponse(
        proof_id=result.proof.proof_id,
        commitment=result.proof.commitment,
        is_adult=result.proof.public_signals.is_adult,
        liveness_verified=result.proof.public_signals.liveness_verified,
        message="Identity proof stored successfully.",
    )


@router.post("/proofs", status_code=201)
async def store_proof(body: StoreProofRequest, ledger: IdentityLedger = Depends(get_ledger)):
    record = await ledger.store_proof(
        body.holder,
        body.proof_id,
        body.commitment,
        body.is_adult,
        body.liveness_verified,
        body.payload,
        body.document_fingerprint,
    )
    return record.to_dict()


@router.get("/documents/{fingerprint}")
async def document_used(fingerprint: str, ledger: IdentityLedger = Depends(get_ledger)):
    return {"fingerprint": fingerprint, "used": await ledger.is_document_used(fingerprint)}


@router.get("/payloads/{proof_id}")
async def get_payload(proof_id: str, ledger: IdentityLedger = Depends(get_ledger)):
    return {"proofId": proof_id, "payload": await ledger.get_payload(proof_id)}


@router.get("/{holder}")
async def get_identity(holder: str, ledger: IdentityLedger = Depends(get_ledger)):
    """Raw ledger view. An empty proofId means the holder has no identity."""
    return (await ledger.get_identity(holder)).to_dict()


@router.get("/{holder}/summary")
async def get_summary(holder: str, ledger: IdentityLedger = Depends(get_ledger)):
    summary = await load_holder_identity(ledger, holder)
    if summary is None:
        raise NotFound()
    return summary


@router.get("/{holder}/events")
async def get_events(holder: str, ledger: IdentityLedger = Depends(get_ledger)):
    return [dict(e.to_dict(), block_hash=e.block_hash) for e in await ledger.list_events(holder)]


@router.post("/{holder}/liveness")
async def update_liveness(holder: str, body: LivenessRequest, ledger: IdentityLedger = Depends(get_ledger)):
    return (await ledger.update_liveness_status(holder, body.liveness_verified)).to_dict()


@router.delete("/{holder}")
async def delete_identity(holder: str, ledger: IdentityLedger = Depends(get_ledger)):
    record = await ledger.delete_identity(holder)
    return {"holder": record.holder, "deleted": True, "message": "Identity deleted."}
