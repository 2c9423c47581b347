"""
db/store.py — Ledger Storage Backends
=======================================
The ledger state machine (core/ledger.py) never touches storage directly.
It talks to a LedgerStore:

    InMemoryLedgerStore — dicts, for tests and the dev server
    SqlLedgerStore      — SQLAlchemy async, for production

Every write method is one atomic unit: either all of its effects are
visible afterwards or none are.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.errors import DocumentReused, DuplicateProofId
from core.records import IdentityRecord, LedgerEvent
from db.models import IdentityRow, UsedDocument, AddressFingerprint, ProofPayload, LedgerEventRow

logger = logging.getLogger("veriid.store")


class LedgerStore(ABC):

    # ── reads ──────────────────────────────────────────────────────────────
    @abstractmethod
    async def get_identity(self, holder: str) -> Optional[IdentityRecord]: ...

    @abstractmethod
    async def is_document_used(self, fingerprint: str) -> bool: ...

    @abstractmethod
    async def resolve_fingerprint(self, address_fingerprint: str) -> Optional[str]: ...

    @abstractmethod
    async def get_payload(self, proof_id: str) -> Optional[str]: ...

    @abstractmethod
    async def list_events(self, holder: Optional[str] = None) -> List[LedgerEvent]: ...

    # ── writes ─────────────────────────────────────────────────────────────
    @abstractmethod
    async def create_identity(
        self,
        record: IdentityRecord,
        document_fingerprint: str,
        address_fingerprint: str,
        payload: str,
    ) -> None:
        """Record + document flag + fingerprint mapping + payload, all or nothing."""

    @abstractmethod
    async def update_liveness(self, holder: str, liveness: bool, proof_id: str, payload: str) -> None: ...

    @abstractmethod
    async def mark_deleted(self, holder: str) -> None: ...

    @abstractmethod
    async def append_event(self, event: LedgerEvent) -> None: ...

    async def close(self) -> None:
        pass


# ── In-memory ─────────────────────────────────────────────────────────────────
class InMemoryLedgerStore(LedgerStore):

    def __init__(self):
        self.identities: Dict[str, IdentityRecord] = {}
        self.used_documents: Set[str] = set()
        self.address_fingerprints: Dict[str, str] = {}
        self.payloads: Dict[str, str] = {}
        self.events: List[LedgerEvent] = []

    async def get_identity(self, holder):
        return self.identities.get(holder)

    async def is_document_used(self, fingerprint):
        return fingerprint in self.used_documents

    async def resolve_fingerprint(self, address_fingerprint):
        return self.address_fingerprints.get(address_fingerprint)

    async def get_payload(self, proof_id):
        return self.payloads.get(proof_id)

    async def list_events(self, holder=None):
        return [e for e in self.events if holder is None or e.holder == holder]

    async def create_identity(self, record, document_fingerprint, address_fingerprint, payload):
        # No awaits between check and writes, so this block cannot interleave.
        if document_fingerprint in self.used_documents:
            raise DocumentReused()
        if record.proof_id in self.payloads:
            raise DuplicateProofId()
        self.identities[record.holder] = record
        self.used_documents.add(document_fingerprint)
        self.address_fingerprints[address_fingerprint] = record.holder
        self.payloads[record.proof_id] = payload

    async def update_liveness(self, holder, liveness, proof_id, payload):
        self.identities[holder] = self.identities[holder].with_liveness(liveness)
        self.payloads[proof_id] = payload

    async def mark_deleted(self, holder):
        self.identities[holder] = self.identities[holder].as_deleted()

    async def append_event(self, event):
        self.events.append(event)


# ── SQL ───────────────────────────────────────────────────────────────────────
def _to_record(row: IdentityRow) -> IdentityRecord:
    return IdentityRecord(
        holder=row.holder,
        proof_id=row.proof_id,
        commitment=row.commitment,
        is_adult=row.is_adult,
        liveness_verified=row.liveness_verified,
        created_at=row.created_at,
        deleted=row.deleted,
    )


def _to_event(row: LedgerEventRow) -> LedgerEvent:
    return LedgerEvent(
        kind=row.kind,
        holder=row.holder,
        proof_id=row.proof_id,
        is_adult=row.is_adult,
        liveness_verified=row.liveness_verified,
        timestamp=row.timestamp,
        block_hash=row.block_hash,
    )


class SqlLedgerStore(LedgerStore):
    """
    Persistent store. The primary key on used_documents is the last line of
    defence against two processes registering the same document: the
    loser's transaction fails with IntegrityError and is rolled back. The
    primary key on proof_payloads does the same for proof IDs.
    """

    def __init__(self, sessionmaker: async_sessionmaker):
        self._sessionmaker = sessionmaker

    async def get_identity(self, holder):
        async with self._sessionmaker() as session:
            row = await session.get(IdentityRow, holder)
            return _to_record(row) if row else None

    async def is_document_used(self, fingerprint):
        async with self._sessionmaker() as session:
            return await session.get(UsedDocument, fingerprint) is not None

    async def resolve_fingerprint(self, address_fingerprint):
        async with self._sessionmaker() as session:
            row = await session.get(AddressFingerprint, address_fingerprint)
            return row.holder if row else None

    async def get_payload(self, proof_id):
        async with self._sessionmaker() as session:
            row = await session.get(ProofPayload, proof_id)
            return row.data if row else None

    async def list_events(self, holder=None):
        query = select(LedgerEventRow).order_by(LedgerEventRow.id)
        if holder is not None:
            query = query.where(LedgerEventRow.holder == holder)
        async with self._sessionmaker() as session:
            result = await session.execute(query)
            return [_to_event(row) for row in result.scalars().all()]

    async def create_identity(self, record, document_fingerprint, address_fingerprint, payload):
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    await session.merge(IdentityRow(
                        holder=record.holder,
                        proof_id=record.proof_id,
                        commitment=record.commitment,
                        is_adult=record.is_adult,
                        liveness_verified=record.liveness_verified,
                        created_at=record.created_at,
                        deleted=False,
                    ))
                    session.add(UsedDocument(fingerprint=document_fingerprint, used_at=record.created_at))
                    await session.merge(AddressFingerprint(fingerprint=address_fingerprint, holder=record.holder))
                    session.add(ProofPayload(proof_id=record.proof_id, data=payload))
        except IntegrityError:
            if await self.is_document_used(document_fingerprint):
                logger.warning(f"Document fingerprint {document_fingerprint[:10]}... lost a registration race")
                raise DocumentReused()
            logger.warning(f"Proof ID {record.proof_id} is already stored")
            raise DuplicateProofId()

    async def update_liveness(self, holder, liveness, proof_id, payload):
        async with self._sessionmaker() as session:
            async with session.begin():
                row = await session.get(IdentityRow, holder)
                row.liveness_verified = liveness
                await session.merge(ProofPayload(proof_id=proof_id, data=payload))

    async def mark_deleted(self, holder):
        async with self._sessionmaker() as session:
            async with session.begin():
                row = await session.get(IdentityRow, holder)
                row.deleted = True

    async def append_event(self, event):
        async with self._sessionmaker() as session:
            async with session.begin():
                session.add(LedgerEventRow(
                    kind=event.kind,
                    holder=event.holder,
                    proof_id=event.proof_id,
                    is_adult=event.is_adult,
                    liveness_verified=event.liveness_verified,
                    block_hash=event.block_hash,
                    timestamp=event.timestamp,
                ))

    async def close(self):
        bind = self._sessionmaker.kw.get("bind")
        if bind is not None:
            await bind.dispose()
