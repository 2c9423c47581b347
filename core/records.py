"""
core/records.py — Ledger-resident records and event records.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional


PROOF_STORED = "PROOF_STORED"
LIVENESS_UPDATED = "LIVENESS_UPDATED"
IDENTITY_DELETED = "IDENTITY_DELETED"
PROOF_VERIFIED = "PROOF_VERIFIED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IdentityRecord:
    """One slot per holder. `deleted` only ever goes False → True."""

    holder: str
    proof_id: str
    commitment: str
    is_adult: bool
    liveness_verified: bool
    created_at: datetime
    deleted: bool = False

    @property
    def exists(self) -> bool:
        return self.proof_id != ""

    def with_liveness(self, liveness: bool) -> "IdentityRecord":
        return replace(self, liveness_verified=liveness)

    def as_deleted(self) -> "IdentityRecord":
        return replace(self, deleted=True)

    def to_dict(self) -> dict:
        return {
            "holder": self.holder,
            "proofId": self.proof_id,
            "commitment": self.commitment,
            "isAdult": self.is_adult,
            "livenessVerified": self.liveness_verified,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "isDeleted": self.deleted,
        }


def empty_record(holder: str) -> IdentityRecord:
    """What getIdentity returns for a holder that never stored a proof."""
    return IdentityRecord(
        holder=holder, proof_id="", commitment="", is_adult=False,
        liveness_verified=False, created_at=None, deleted=False,
    )


@dataclass
class LedgerEvent:
    kind: str
    holder: str
    proof_id: str
    is_adult: Optional[bool] = None
    liveness_verified: Optional[bool] = None
    timestamp: datetime = field(default_factory=utcnow)
    block_hash: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "event": self.kind,
            "holder": self.holder,
            "proof_id": self.proof_id,
            "is_adult": self.is_adult,
            "liveness_verified": self.liveness_verified,
            "timestamp": self.timestamp.isoformat(),
        }
