"""
core/errors.py — Error Taxonomy
=================================
Every failure the identity core can raise lives here.

Categories:
    input      — caller mistake or corrupted external data (never retried)
    conflict   — ledger invariant violation (retrying reproduces it)
    not_found  — the referenced holder / fingerprint does not exist

A verification that legitimately fails is NOT an error: verify calls
return False for that. Only these exceptions signal a broken request.
"""


class VeriIDError(Exception):
    """Base class. Subclasses set code, category, status_code and remedy."""

    code = "VERIID_ERROR"
    category = "internal"
    status_code = 500
    remedy = "Please try again later."

    def __init__(self, message: str = None, **detail):
        self.message = message or self.__class__.__doc__.strip().splitlines()[0]
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Public-safe shape returned to callers. Never includes internal state."""
        return {
            "error": self.code,
            "message": self.message,
            "remedy": self.remedy,
        }


# ── Input validation ──────────────────────────────────────────────────────────
class InputError(VeriIDError):
    """The request is invalid."""
    category = "input"
    status_code = 422


class EmptyProofId(InputError):
    """Proof ID cannot be empty."""
    code = "EMPTY_PROOF_ID"
    remedy = "Generate a proof before storing it."


class InvalidInput(InputError):
    """The supplied identity data is invalid."""
    code = "INVALID_INPUT"
    remedy = "Scan your ID card again with a clearer image."


class MalformedPayload(InputError):
    """Invalid QR code format. Missing required fields."""
    code = "MALFORMED_PAYLOAD"
    remedy = "Scan a valid verification QR code."


class LivenessRequired(InputError):
    """Liveness verification is required to create your identity."""
    code = "LIVENESS_REQUIRED"
    remedy = "Complete the liveness check and try again."


# ── State conflicts ───────────────────────────────────────────────────────────
class StateConflict(VeriIDError):
    """The request conflicts with the current ledger state."""
    category = "conflict"
    status_code = 409


class DuplicateIdentity(StateConflict):
    """User already has an active identity."""
    code = "DUPLICATE_IDENTITY"
    remedy = "Delete your existing identity first."


class DocumentReused(StateConflict):
    """This document has already been used."""
    code = "DOCUMENT_REUSED"
    remedy = "Each ID card can only be used once. Use a different ID card."


class DuplicateProofId(StateConflict):
    """A proof with this ID is already stored."""
    code = "DUPLICATE_PROOF_ID"
    remedy = "Generate a new proof and store it again."


class AlreadyDeleted(StateConflict):
    """Identity has been deleted."""
    code = "ALREADY_DELETED"
    remedy = "Create a new identity with a new ID card."


# ── Not found ─────────────────────────────────────────────────────────────────
class NotFoundError(VeriIDError):
    """The referenced entity does not exist."""
    category = "not_found"
    status_code = 404


class NotFound(NotFoundError):
    """No identity found."""
    code = "NOT_FOUND"
    remedy = "Create an identity first."


class UnknownFingerprint(NotFoundError):
    """Address hash not found."""
    code = "UNKNOWN_FINGERPRINT"
    remedy = "Ask the holder to generate a new verification QR code."
