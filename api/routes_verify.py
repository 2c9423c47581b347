"""
api/routes_verify.py — Verification API Endpoints

Endpoints:
    POST /verify/codes  → Holder: issue a code + identity/age QR payloads
    POST /verify/check  → Verifier: payload + spoken code → verified?
    POST /verify/log    → Verifier: record a verification event
"""

from datetime import timedelta
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from config import settings
from core.codes import VerificationCodeIssuer
from core.identity import issue_share_bundle
from core.ledger import IdentityLedger, get_ledger
from core.verification import parse_payload, verify_presentation

router = APIRouter()


def get_issuer() -> VerificationCodeIssuer:
    return VerificationCodeIssuer(ttl=timedelta(minutes=settings.VERIFICATION_CODE_TTL_MINUTES))


class IssueCodeRequest(BaseModel):
    holder: str


class IssueCodeResponse(BaseModel):
    code: str
    code_hash: str
    address_hash: str
    expires_at: str
    identity_payload: str
    age_payload: Optional[str] = None


class CheckRequest(BaseModel):
    payload: Union[str, Dict[str, Any]]     # scanned QR content, raw or decoded
    code: str
    log: bool = False


class LogRequest(BaseModel):
    payload: Union[str, Dict[str, Any]]


@router.post("/codes", response_model=IssueCodeResponse, status_code=201)
async def issue_code(
    body: IssueCodeRequest,
    ledger: IdentityLedger = Depends(get_ledger),
    issuer: VerificationCodeIssuer = Depends(get_issuer),
):
    """
    The code is shown to the holder only. Expiry is advisory: the holder's
    app should stop showing it after expires_at.
    """
    bundle = await issue_share_bundle(ledger, issuer, body.holder)
    return IssueCodeResponse(
        code=bundle.binding.code,
        code_hash=bundle.binding.code_hash,
        address_hash=bundle.binding.address_fingerprint,
        expires_at=bundle.binding.expires_at.isoformat(),
        identity_payload=bundle.identity_payload,
        age_payload=bundle.age_payload,
    )


@router.post("/check")
async def check(body: CheckRequest, ledger: IdentityLedger = Depends(get_ledger)):
    """A failed match is a normal 200 with verified=false."""
    outcome = await verify_presentation(ledger, body.payload, body.code, log=body.log)
    return outcome.to_dict()


@router.post("/log", status_code=201)
async def log_verification(body: LogRequest, ledger: IdentityLedger = Depends(get_ledger)):
    payload = parse_payload(body.payload, require_code_hash=False)
    event = await ledger.log_verification_event(payload.proof_id, payload.address_hash)
    return dict(event.to_dict(), block_hash=event.block_hash)
