"""
core/commitment.py — Identity Commitment Builder (the "proof generator")
==========================================================================
Turns a decoded ID card record plus the liveness result into:

    proof_id        — stable opaque handle for the stored proof
    commitment      — blinded one-way binding over {seed, age, isAdult, liveness}
    public_signals  — the only facts disclosed: isAdult, livenessVerified
    payload         — versioned JSON bundle the ledger stores verbatim

The proof itself comes from a ProofBackend. The default PlaceholderProofBackend
slices the commitment into proof-shaped fields. It is NOT a zero-knowledge
proof and carries no cryptographic meaning — swap in a circuit-based prover
by implementing ProofBackend.
"""

import json
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from pydantic import BaseModel, field_validator

from core.errors import InvalidInput
from core.hashing import commit_attributes, derive_proof_id, hash_text
from core.records import utcnow

logger = logging.getLogger("veriid.commitment")

PAYLOAD_VERSION = 1
DEFAULT_ADULT_AGE = 18


class DecodedIdentity(BaseModel):
    """Structured record produced by the ID card decoder (a black box to us)."""

    reference_id: Optional[str] = None
    name: Optional[str] = None
    age: Optional[int] = None
    date_of_birth: Optional[date] = None
    gender: str = ""
    address: str = ""

    @field_validator("reference_id", "name")
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


@dataclass(frozen=True)
class IdentityAttributes:
    reference_seed: str
    age_years: int
    is_adult: bool
    liveness_verified: bool


@dataclass(frozen=True)
class PublicSignals:
    is_adult: bool
    liveness_verified: bool

    def to_dict(self) -> dict:
        return {"isAdult": self.is_adult, "livenessVerified": self.liveness_verified}


@dataclass(frozen=True)
class BuiltProof:
    proof_id: str
    commitment: str
    public_signals: PublicSignals
    payload: str


def age_on(dob: date, today: date) -> int:
    years = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        years -= 1
    return years


def confirm_reference_prefix(record: DecodedIdentity, digits: str, length: int = 4) -> bool:
    """The holder proves possession by typing the first digits of the ID number."""
    if not record.reference_id:
        raise InvalidInput("No identity data found. Please scan your ID again.")
    return record.reference_id[:length] == (digits or "").strip()


# ── Proof backends ────────────────────────────────────────────────────────────
class ProofBackend(ABC):
    name = "abstract"

    @abstractmethod
    def prove(self, attributes: IdentityAttributes, commitment: str) -> dict:
        """Return the proof body (JSON-serializable)."""


class PlaceholderProofBackend(ProofBackend):
    """Deterministic slices of the commitment shaped like a Groth16 proof."""

    name = "placeholder-slice"

    def prove(self, attributes: IdentityAttributes, commitment: str) -> dict:
        c = commitment[2:]
        return {
            "pi_a": [c[0:16], c[16:32]],
            "pi_b": [[c[32:40], c[40:48]], [c[48:56], c[56:64]]],
            "pi_c": [c[8:24], c[40:56]],
            "protocol": "groth16_stub",
            "scheme": self.name,
        }


# ── Builder ───────────────────────────────────────────────────────────────────
class IdentityCommitmentBuilder:

    def __init__(
        self,
        backend: ProofBackend = None,
        adult_age: int = DEFAULT_ADULT_AGE,
        clock: Callable[[], datetime] = utcnow,
        token_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ):
        self.backend = backend or PlaceholderProofBackend()
        self.adult_age = adult_age
        self._clock = clock
        self._token_bytes = token_bytes

    def attributes(self, record: DecodedIdentity, liveness: bool) -> IdentityAttributes:
        if record.reference_id:
            seed = record.reference_id
        elif record.name:
            seed = hash_text(record.name)
        else:
            raise InvalidInput("Identity record has neither a reference ID nor a name.")

        if record.age is not None:
            age = record.age
        elif record.date_of_birth is not None:
            age = age_on(record.date_of_birth, self._clock().date())
        else:
            raise InvalidInput("Identity record has no age or date of birth.")
        if age < 0 or age > 150:
            raise InvalidInput(f"Implausible age: {age}")

        return IdentityAttributes(
            reference_seed=seed,
            age_years=age,
            is_adult=age >= self.adult_age,
            liveness_verified=bool(liveness),
        )

    def build(self, record: DecodedIdentity, liveness: bool) -> BuiltProof:
        attrs = self.attributes(record, liveness)
        blinding = self._token_bytes(32)

        commitment = commit_attributes(
            attrs.reference_seed, attrs.age_years, attrs.is_adult,
            attrs.liveness_verified, blinding,
        )
        proof_id = derive_proof_id(attrs.reference_seed, blinding)
        signals = PublicSignals(is_adult=attrs.is_adult, liveness_verified=attrs.liveness_verified)

        payload = json.dumps({
            "version": PAYLOAD_VERSION,
            "backend": self.backend.name,
            "proof": self.backend.prove(attrs, commitment),
            "publicSignals": signals.to_dict(),
            "livenessVerified": signals.liveness_verified,
        }, sort_keys=True)

        logger.info(f"Proof {proof_id} built (backend={self.backend.name}, adult={attrs.is_adult})")
        return BuiltProof(
            proof_id=proof_id,
            commitment=commitment,
            public_signals=signals,
            payload=payload,
        )
