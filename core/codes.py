"""
core/codes.py — Verification Code Issuer
==========================================
Issues the short-lived 6-digit code a holder reads out to a verifier,
bound to the holder's address by a one-way hash.

Nothing here is persisted. The caller keeps the CodeBinding and is the only
party that knows when it expires — the ledger will accept an expired code
hash if presented, expiry is an advisory control.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.hashing import canonical_address, hash_address, hash_verification_code
from core.records import utcnow

logger = logging.getLogger("veriid.codes")

CODE_DIGITS = 6
DEFAULT_TTL = timedelta(minutes=5)


@dataclass(frozen=True)
class CodeBinding:
    code: str
    holder_address: str
    code_hash: str
    address_fingerprint: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def seconds_remaining(self, now: Optional[datetime] = None) -> int:
        delta = self.expires_at - (now or utcnow())
        return max(0, int(delta.total_seconds()))


def generate_code(randbelow: Callable[[int], int] = secrets.randbelow) -> str:
    """Uniform 000000–999999, leading zeros kept."""
    return str(randbelow(10 ** CODE_DIGITS)).zfill(CODE_DIGITS)


class VerificationCodeIssuer:
    """
    Issues CodeBindings. Clock and randomness are injectable so tests can
    pin both; production uses secrets + an aware UTC clock.

    Re-issuing does not revoke earlier codes anywhere — callers discard the
    old binding themselves.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
        randbelow: Callable[[int], int] = secrets.randbelow,
    ):
        self.ttl = ttl
        self._clock = clock
        self._randbelow = randbelow

    def issue(self, holder_address: str) -> CodeBinding:
        holder = canonical_address(holder_address)
        code = generate_code(self._randbelow)
        issued_at = self._clock()
        binding = CodeBinding(
            code=code,
            holder_address=holder,
            code_hash=hash_verification_code(code, holder),
            address_fingerprint=hash_address(holder),
            issued_at=issued_at,
            expires_at=issued_at + self.ttl,
        )
        logger.info(
            f"Verification code issued for {binding.address_fingerprint[:10]}... "
            f"(expires {binding.expires_at.isoformat()})"
        )
        return binding
