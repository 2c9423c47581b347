"""
db/models.py — Ledger Table Definitions
=========================================
Each class = one table. Together they are the persistent form of the
identity ledger's state:

    identities            one slot per holder address
    used_documents        append-only document fingerprints
    address_fingerprints  append-only hash(address) → address
    proof_payloads        opaque proof bundles keyed by proof ID
    ledger_events         emitted event records

No raw personal data is ever stored — only hashes, commitments and
public signals.
"""

from datetime import datetime
from sqlalchemy import String, DateTime, Boolean, Text, Integer
from sqlalchemy.orm import Mapped, mapped_column
from core.records import utcnow
from db.session import Base


# ── 1. Identity slots ─────────────────────────────────────────────────────────
class IdentityRow(Base):
    __tablename__ = "identities"

    holder: Mapped[str] = mapped_column(String(42), primary_key=True)          # checksum address
    proof_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    commitment: Mapped[str] = mapped_column(String(66), nullable=False)
    is_adult: Mapped[bool] = mapped_column(Boolean, nullable=False)
    liveness_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)


# ── 2. Document fingerprints ──────────────────────────────────────────────────
class UsedDocument(Base):
    __tablename__ = "used_documents"

    fingerprint: Mapped[str] = mapped_column(String(66), primary_key=True)     # unique → one ID, one identity
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ── 3. Address fingerprints ───────────────────────────────────────────────────
class AddressFingerprint(Base):
    __tablename__ = "address_fingerprints"

    fingerprint: Mapped[str] = mapped_column(String(66), primary_key=True)
    holder: Mapped[str] = mapped_column(String(42), nullable=False)


# ── 4. Proof payloads ─────────────────────────────────────────────────────────
class ProofPayload(Base):
    __tablename__ = "proof_payloads"

    proof_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)


# ── 5. Event log ──────────────────────────────────────────────────────────────
class LedgerEventRow(Base):
    __tablename__ = "ledger_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)              # PROOF_STORED | LIVENESS_UPDATED | ...
    holder: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    proof_id: Mapped[str] = mapped_column(String(255), nullable=False)
    is_adult: Mapped[bool] = mapped_column(Boolean, nullable=True)
    liveness_verified: Mapped[bool] = mapped_column(Boolean, nullable=True)
    block_hash: Mapped[str] = mapped_column(String(512), nullable=True)        # chain reference
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
