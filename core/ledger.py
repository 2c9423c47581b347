"""
core/ledger.py — Identity Ledger State Machine
================================================
The authoritative state for every identity, modelled on the on-chain
verifier contract. Per holder address:

    NoIdentity ──storeProof──▶ Active ──deleteIdentity──▶ Deleted
                                  ▲                           │
                                  └──── storeProof (new doc) ─┘

Invariants:
    - at most one non-deleted identity per holder
    - a document fingerprint is used at most once, forever (even after deletion)
    - deleted only goes False → True
    - a proof ID is stored at most once, across all holders
    - the proof payload is never destructively overwritten

The holder is always an explicit argument — there is no implicit
"current sender". Storage is injected (see db/store.py); event anchoring
is injected (see core/blockchain.py).

Mutations are serialized through a single lock. Reads never take it:
they only observe committed state.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Callable, List, Optional

from core.errors import (
    AlreadyDeleted, DocumentReused, DuplicateIdentity, DuplicateProofId, EmptyProofId,
    InvalidInput, MalformedPayload, NotFound, UnknownFingerprint,
)
from core.hashing import canonical_address, hash_address, hash_verification_code, normalize_hash
from core.records import (
    IDENTITY_DELETED, LIVENESS_UPDATED, PROOF_STORED, PROOF_VERIFIED,
    IdentityRecord, LedgerEvent, empty_record, utcnow,
)

logger = logging.getLogger("veriid.ledger")


def merge_liveness(payload: str, liveness: bool, updated_at: datetime) -> str:
    """
    Append-only merge of a liveness update into an opaque payload.

    JSON objects keep every existing key; `livenessVerified` takes the new
    value and the previous one is kept in `livenessHistory`. Anything that
    is not a JSON object is wrapped verbatim under "payload".
    """
    try:
        data = json.loads(payload) if payload else None
    except ValueError:
        data = None
    if not isinstance(data, dict):
        data = {"payload": payload or ""}

    history = data.get("livenessHistory", [])
    if not isinstance(history, list):
        history = [history]
    if not history and "livenessVerified" in data:
        history.append({"livenessVerified": data["livenessVerified"], "updatedAt": None})
    history.append({"livenessVerified": liveness, "updatedAt": updated_at.isoformat()})

    data["livenessHistory"] = history
    data["livenessVerified"] = liveness
    return json.dumps(data, sort_keys=True)


def _hash_arg(value: str, what: str) -> str:
    try:
        return normalize_hash(value)
    except MalformedPayload:
        raise InvalidInput(f"{what} must be a 32-byte hex hash.")


class IdentityLedger:

    def __init__(self, store, chain=None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.chain = chain
        self._clock = clock
        self._write_lock = asyncio.Lock()

    # ── Events ─────────────────────────────────────────────────────────────
    async def _emit(self, kind: str, record: IdentityRecord) -> LedgerEvent:
        """
        Called after the state change is committed. An anchoring failure is
        logged, not raised: the mutation already happened and must not be
        reported as failed.
        """
        event = LedgerEvent(
            kind=kind,
            holder=record.holder,
            proof_id=record.proof_id,
            is_adult=record.is_adult,
            liveness_verified=record.liveness_verified,
            timestamp=self._clock(),
        )
        if self.chain is not None:
            try:
                block = await self.chain.write_block(kind, event.to_dict())
                event.block_hash = block["hash"]
            except Exception:
                logger.exception(f"Could not anchor {kind} for {record.holder}")
        await self.store.append_event(event)
        logger.info(f"{kind} holder={record.holder} proof={record.proof_id}")
        return event

    # ── Mutations ──────────────────────────────────────────────────────────
    async def store_proof(
        self,
        holder: str,
        proof_id: str,
        commitment: str,
        is_adult: bool,
        liveness_verified: bool,
        payload: str,
        document_fingerprint: str,
    ) -> IdentityRecord:
        holder = canonical_address(holder)
        if not proof_id or not proof_id.strip():
            raise EmptyProofId()
        document_fingerprint = _hash_arg(document_fingerprint, "Document fingerprint")

        async with self._write_lock:
            current = await self.store.get_identity(holder)
            if current is not None and current.exists and not current.deleted:
                raise DuplicateIdentity(holder=holder)
            if await self.store.is_document_used(document_fingerprint):
                raise DocumentReused(fingerprint=document_fingerprint)
            if await self.store.get_payload(proof_id) is not None:
                raise DuplicateProofId(proof_id=proof_id)

            record = IdentityRecord(
                holder=holder,
                proof_id=proof_id,
                commitment=commitment,
                is_adult=bool(is_adult),
                liveness_verified=bool(liveness_verified),
                created_at=self._clock(),
            )
            await self.store.create_identity(
                record, document_fingerprint, hash_address(holder), payload or "",
            )
            await self._emit(PROOF_STORED, record)
        return record

    async def update_liveness_status(self, holder: str, liveness_verified: bool) -> IdentityRecord:
        holder = canonical_address(holder)
        async with self._write_lock:
            record = await self._require_active(holder)
            payload = await self.store.get_payload(record.proof_id)
            merged = merge_liveness(payload, bool(liveness_verified), self._clock())
            await self.store.update_liveness(holder, bool(liveness_verified), record.proof_id, merged)
            record = record.with_liveness(bool(liveness_verified))
            await self._emit(LIVENESS_UPDATED, record)
        return record

    async def delete_identity(self, holder: str) -> IdentityRecord:
        holder = canonical_address(holder)
        async with self._write_lock:
            record = await self._require_active(holder)
            await self.store.mark_deleted(holder)
            record = record.as_deleted()
            await self._emit(IDENTITY_DELETED, record)
        return record

    # ── Reads ──────────────────────────────────────────────────────────────
    async def get_identity(self, holder: str) -> IdentityRecord:
        """Never fails for a well-formed address: proof_id == "" means no identity."""
        holder = canonical_address(holder)
        record = await self.store.get_identity(holder)
        return record if record is not None else empty_record(holder)

    async def get_payload(self, proof_id: str) -> str:
        if not proof_id:
            return ""
        return await self.store.get_payload(proof_id) or ""

    async def is_document_used(self, document_fingerprint: str) -> bool:
        return await self.store.is_document_used(_hash_arg(document_fingerprint, "Document fingerprint"))

    async def list_events(self, holder: Optional[str] = None) -> List[LedgerEvent]:
        return await self.store.list_events(canonical_address(holder) if holder else None)

    async def get_identity_by_fingerprint(self, address_fingerprint: str) -> IdentityRecord:
        holder = await self._resolve(address_fingerprint)
        return await self.get_identity(holder)

    @staticmethod
    def hash_address(holder: str) -> str:
        return hash_address(holder)

    # ── Verification ───────────────────────────────────────────────────────
    async def verify_by_code_hash(self, proof_id: str, address_fingerprint: str, code: str, code_hash: str) -> bool:
        """
        Pure check, safe to call speculatively. False means "not verified",
        an exception means the request itself could not be evaluated.
        """
        holder = await self._resolve(address_fingerprint)
        record = await self._require_active(holder)
        code_hash = normalize_hash(code_hash)

        proof_matches = record.proof_id == proof_id
        code_valid = bool(code) and hash_verification_code(code, holder) == code_hash
        return proof_matches and code_valid

    async def log_verification_event(self, proof_id: str, address_fingerprint: str) -> LedgerEvent:
        """Event only. No identity checks beyond resolving the fingerprint."""
        holder = await self._resolve(address_fingerprint)
        record = await self.store.get_identity(holder) or empty_record(holder)
        return await self._emit(PROOF_VERIFIED, IdentityRecord(
            holder=holder,
            proof_id=proof_id,
            commitment=record.commitment,
            is_adult=record.is_adult,
            liveness_verified=record.liveness_verified,
            created_at=record.created_at,
            deleted=record.deleted,
        ))

    # ── Helpers ────────────────────────────────────────────────────────────
    async def _resolve(self, address_fingerprint: str) -> str:
        holder = await self.store.resolve_fingerprint(normalize_hash(address_fingerprint))
        if holder is None:
            raise UnknownFingerprint()
        return holder

    async def _require_active(self, holder: str) -> IdentityRecord:
        record = await self.store.get_identity(holder)
        if record is None or not record.exists:
            raise NotFound(holder=holder)
        if record.deleted:
            raise AlreadyDeleted(holder=holder)
        return record


# ── Factory — picks the store from .env ───────────────────────────────────────
def create_ledger(store_kind: str = None, chain=None) -> IdentityLedger:
    from config import settings
    from db.store import InMemoryLedgerStore, SqlLedgerStore

    store_kind = (store_kind or settings.LEDGER_STORE).lower()
    if store_kind == "sql":
        from db.session import AsyncSessionLocal
        logger.info("Using SQL ledger store")
        store = SqlLedgerStore(AsyncSessionLocal)
    else:
        logger.info("Using in-memory ledger store (development mode)")
        store = InMemoryLedgerStore()
    return IdentityLedger(store, chain=chain)


_ledger: Optional[IdentityLedger] = None


def get_ledger() -> IdentityLedger:
    """FastAPI dependency — one ledger per process."""
    global _ledger
    if _ledger is None:
        from core.blockchain import blockchain
        _ledger = create_ledger(chain=blockchain)
    return _ledger
