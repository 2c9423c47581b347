"""
core/verification.py — Verification Protocol
==============================================
Caller-side orchestration of the two-phase holder/verifier flow:

    holder:   issue code → read the code out loud → show the QR payload
    verifier: enter code → scan payload → ledger.verify_by_code_hash

The code travels out-of-band; the payload only ever carries hashes.

Portable payload (JSON, field names fixed):
    {"type": "identity" | "age", "proofId": ..., "addressHash": ..., "codeHash": ...}
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.errors import MalformedPayload
from core.hashing import normalize_hash, strip_prefix

logger = logging.getLogger("veriid.verification")

PAYLOAD_TYPES = ("identity", "age")
REQUIRED_FIELDS = ("proofId", "addressHash", "type")

SUCCESS_MESSAGES = {
    "age": "The person is verified to be over 18 years old.",
    "identity": "The identity has been successfully verified.",
}
FAILURE_MESSAGE = (
    "The proof could not be verified. It may be invalid, expired, "
    "or the verification code is incorrect."
)
NOT_ADULT_MESSAGE = "The person could not be verified as an adult."


@dataclass(frozen=True)
class VerificationPayload:
    type: str
    proof_id: str
    address_hash: str
    code_hash: Optional[str] = None

    def to_json(self) -> str:
        data = {
            "type": self.type,
            "proofId": self.proof_id,
            "addressHash": strip_prefix(self.address_hash),
        }
        if self.code_hash:
            data["codeHash"] = strip_prefix(self.code_hash)
        return json.dumps(data)


def encode_payload(type_: str, proof_id: str, address_hash: str, code_hash: str) -> str:
    if type_ not in PAYLOAD_TYPES:
        raise MalformedPayload(f"Unknown verification type: {type_!r}")
    return VerificationPayload(
        type=type_,
        proof_id=proof_id,
        address_hash=normalize_hash(address_hash),
        code_hash=normalize_hash(code_hash),
    ).to_json()


def parse_payload(raw, require_code_hash: bool = True) -> VerificationPayload:
    """
    Decode a scanned payload (JSON string or already-decoded dict).
    Hashes come back normalized to 0x-prefixed lowercase.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise MalformedPayload("Invalid QR code format. Please scan a valid verification QR code.")
    if not isinstance(raw, dict):
        raise MalformedPayload("Invalid QR code format. Please scan a valid verification QR code.")

    missing = [f for f in REQUIRED_FIELDS if not raw.get(f)]
    if require_code_hash and not raw.get("codeHash"):
        missing.append("codeHash")
    if missing:
        raise MalformedPayload(f"Invalid QR code format. Missing required fields: {', '.join(missing)}")
    if raw["type"] not in PAYLOAD_TYPES:
        raise MalformedPayload(f"Unknown verification type: {raw['type']!r}")

    return VerificationPayload(
        type=raw["type"],
        proof_id=str(raw["proofId"]),
        address_hash=normalize_hash(raw["addressHash"]),
        code_hash=normalize_hash(raw["codeHash"]) if raw.get("codeHash") else None,
    )


@dataclass(frozen=True)
class VerificationOutcome:
    verified: bool
    type: str
    message: str

    def to_dict(self) -> dict:
        return {"verified": self.verified, "type": self.type, "message": self.message}


class AttemptState(str, Enum):
    CODE_ENTERED = "code_entered"
    PAYLOAD_SCANNED = "payload_scanned"
    VERIFIED = "verified"
    FAILED = "failed"


class ProtocolError(RuntimeError):
    """An attempt was driven out of order. Programming error, not user error."""


class VerificationAttempt:
    """
    One verification attempt: CodeEntered → PayloadScanned → Verified | Failed.
    Terminal after verify(); start a new attempt (with a fresh code) to retry.
    """

    def __init__(self, ledger, code: str):
        code = (code or "").strip()
        if not code:
            raise MalformedPayload("Please enter the verification code.")
        self.ledger = ledger
        self.code = code
        self.payload: Optional[VerificationPayload] = None
        self.outcome: Optional[VerificationOutcome] = None
        self.state = AttemptState.CODE_ENTERED

    def scan(self, raw) -> VerificationPayload:
        if self.state is not AttemptState.CODE_ENTERED:
            raise ProtocolError(f"Cannot scan in state {self.state.value}")
        try:
            self.payload = parse_payload(raw)
        except MalformedPayload:
            self.state = AttemptState.FAILED
            raise
        self.state = AttemptState.PAYLOAD_SCANNED
        return self.payload

    async def verify(self, log: bool = False) -> VerificationOutcome:
        if self.state is not AttemptState.PAYLOAD_SCANNED:
            raise ProtocolError(f"Cannot verify in state {self.state.value}")
        p = self.payload
        try:
            ok = await self.ledger.verify_by_code_hash(p.proof_id, p.address_hash, self.code, p.code_hash)
            adult = True
            if ok and p.type == "age":
                adult = (await self.ledger.get_identity_by_fingerprint(p.address_hash)).is_adult
        except Exception:
            self.state = AttemptState.FAILED
            raise

        if ok and not adult:
            self.state = AttemptState.FAILED
            self.outcome = VerificationOutcome(False, p.type, NOT_ADULT_MESSAGE)
        elif ok:
            self.state = AttemptState.VERIFIED
            self.outcome = VerificationOutcome(True, p.type, SUCCESS_MESSAGES[p.type])
            if log:
                await self.ledger.log_verification_event(p.proof_id, p.address_hash)
        else:
            self.state = AttemptState.FAILED
            self.outcome = VerificationOutcome(False, p.type, FAILURE_MESSAGE)
        logger.info(f"Verification of {p.proof_id} ({p.type}): {self.state.value}")
        return self.outcome


async def verify_presentation(ledger, raw_payload, code: str, log: bool = False) -> VerificationOutcome:
    """Run one full attempt in a single call."""
    attempt = VerificationAttempt(ledger, code)
    attempt.scan(raw_payload)
    return await attempt.verify(log=log)
