"""
Verification Code Unit Tests
============================

[UNIT] core/codes.py
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.codes import VerificationCodeIssuer, generate_code
from core.errors import InvalidInput
from core.hashing import hash_address, hash_verification_code


FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class TestGenerateCode:

    def test_leading_zeros_kept(self):
        assert generate_code(lambda n: 42) == "000042"
        assert generate_code(lambda n: 0) == "000000"
        assert generate_code(lambda n: 999999) == "999999"

    def test_full_range_requested(self):
        seen = []
        generate_code(lambda n: seen.append(n) or 1)
        assert seen == [1_000_000]

    def test_random_codes_are_six_digits(self):
        for _ in range(200):
            code = generate_code()
            assert len(code) == 6 and code.isdigit()


class TestIssuer:

    def test_binding_fields(self, issuer, holder_a):
        b = issuer.issue(holder_a.lower())
        assert b.code == "123456"
        assert b.holder_address == holder_a
        assert b.code_hash == hash_verification_code("123456", holder_a)
        assert b.address_fingerprint == hash_address(holder_a)
        assert b.issued_at == FIXED_NOW
        assert b.expires_at == FIXED_NOW + timedelta(minutes=5)

    def test_expiry_is_caller_side(self, issuer, holder_a):
        b = issuer.issue(holder_a)
        assert not b.is_expired(FIXED_NOW + timedelta(minutes=4, seconds=59))
        assert b.is_expired(FIXED_NOW + timedelta(minutes=5))
        assert b.seconds_remaining(FIXED_NOW + timedelta(minutes=4)) == 60
        assert b.seconds_remaining(FIXED_NOW + timedelta(hours=1)) == 0

    def test_default_clock_is_aware_utc(self, holder_a):
        b = VerificationCodeIssuer().issue(holder_a)
        assert b.issued_at.utcoffset() == timedelta(0)
        assert not b.is_expired()
        assert 0 < b.seconds_remaining() <= 300

    def test_reissue_gives_independent_binding(self, holder_a):
        codes = iter([111111, 222222])
        issuer = VerificationCodeIssuer(clock=lambda: FIXED_NOW, randbelow=lambda n: next(codes))
        first, second = issuer.issue(holder_a), issuer.issue(holder_a)
        assert first.code_hash != second.code_hash
        assert first.address_fingerprint == second.address_fingerprint

    def test_bad_holder(self, issuer):
        with pytest.raises(InvalidInput):
            issuer.issue("0xnope")
