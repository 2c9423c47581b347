"""
core/hashing.py — Fingerprint Engine
======================================
Central place for ALL one-way hashing. Every module imports from here —
never hash addresses, codes or document numbers anywhere else.

Fingerprints are Keccak-256 over Solidity-style tightly packed bytes
(abi.encodePacked), so an on-chain contract and this service always agree:

    address    → 20 raw bytes
    string     → UTF-8 bytes, no length prefix
    composite  → code string ++ ":" ++ 20-byte address   (order is fixed!)

Changing the composite order breaks every QR payload already issued.
"""

import logging
import re
from typing import Union

from web3 import Web3

from core.errors import InvalidInput, MalformedPayload

logger = logging.getLogger("veriid.hashing")

ADDRESS = "address"
STRING = "string"
COMPOSITE = "composite"

TYPE_TAGS = (ADDRESS, STRING, COMPOSITE)
CODE_SEPARATOR = ":"

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")

Hash256 = str   # "0x" + 64 lowercase hex chars


def canonical_address(address: str) -> str:
    """Checksum form of a 20-byte hex address. Raises InvalidInput otherwise."""
    if not isinstance(address, str) or not address.strip():
        raise InvalidInput("Holder address is required.")
    address = address.strip()
    if not address.startswith(("0x", "0X")):
        address = "0x" + address
    if not Web3.is_address(address):
        raise InvalidInput(f"Not a valid 20-byte address: {address!r}")
    return Web3.to_checksum_address(address.lower())


def normalize_hash(value: str) -> Hash256:
    """
    Accepts a 32-byte hex hash with or without 0x, any case.
    Returns the canonical "0x"-prefixed lowercase form.
    """
    if not isinstance(value, str):
        raise MalformedPayload("Hash must be a hex string.")
    raw = value.strip().lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if not _HASH_RE.match(raw):
        raise MalformedPayload(f"Not a 32-byte hex hash: {value!r}")
    return "0x" + raw


def strip_prefix(value: Hash256) -> str:
    """QR payloads carry hashes without the 0x prefix."""
    return value[2:] if value.startswith("0x") else value


def fingerprint(value: Union[str, tuple], type_tag: str) -> Hash256:
    """
    Deterministic one-way fingerprint of `value` encoded per `type_tag`.

    For COMPOSITE, `value` is a (code, address) pair.
    """
    if type_tag == ADDRESS:
        types, values = ["address"], [canonical_address(value)]
    elif type_tag == STRING:
        if not isinstance(value, str) or value == "":
            raise InvalidInput("Cannot fingerprint an empty string.")
        types, values = ["string"], [value]
    elif type_tag == COMPOSITE:
        try:
            code, address = value
        except (TypeError, ValueError):
            raise InvalidInput("Composite fingerprint needs a (code, address) pair.")
        if not isinstance(code, str) or code == "":
            raise InvalidInput("Verification code is required.")
        types = ["string", "string", "address"]
        values = [code, CODE_SEPARATOR, canonical_address(address)]
    else:
        raise InvalidInput(f"Unknown fingerprint type: {type_tag!r}")

    digest = Web3.solidity_keccak(types, values)
    return Web3.to_hex(digest)


# ── Named helpers (mirror the contract's pure functions) ──────────────────────
def hash_address(address: str) -> Hash256:
    return fingerprint(address, ADDRESS)


def hash_verification_code(code: str, address: str) -> Hash256:
    return fingerprint((code, address), COMPOSITE)


def document_fingerprint(reference_id: str) -> Hash256:
    """
    Fingerprint of a physical ID's reference number.
    The SAME encoding must be used at creation time and at reuse checks.
    """
    if reference_id is None:
        raise InvalidInput("Document reference ID is required.")
    return fingerprint(str(reference_id).strip(), STRING)


def hash_text(text: str) -> Hash256:
    """Keccak-256 of a UTF-8 string (seeds, commitments)."""
    return fingerprint(text, STRING)


def commit_attributes(seed: str, age_years: int, is_adult: bool, liveness: bool, blinding: bytes) -> Hash256:
    """
    Binding digest over the private identity attributes. The trailing
    fixed-width fields keep the packing unambiguous after the seed string.
    """
    digest = Web3.solidity_keccak(
        ["string", "uint16", "bool", "bool", "bytes32"],
        [seed, age_years, is_adult, liveness, blinding],
    )
    return Web3.to_hex(digest)


def derive_proof_id(seed: str, nonce: bytes) -> str:
    digest = Web3.solidity_keccak(["string", "string", "bytes32"], ["veriid-proof", seed, nonce])
    return "proof_" + Web3.to_hex(digest)[2:34]


def verify_code(code: str, code_hash: str, address: str) -> bool:
    """Client-side check of a code against its holder-bound hash."""
    return hash_verification_code(code, address) == normalize_hash(code_hash)
