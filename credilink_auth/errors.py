"""
credilink_auth/errors.py

Error taxonomy for the wallet login protocol.

Every failure the core can report is an AuthError carrying:
  - code:        stable machine-readable string (part of the wire contract)
  - status_code: HTTP status the boundary answers with
  - message:     human-readable explanation

Component-level errors (NonceNotFound, VerificationError) stay inside the
core; ChallengeService translates them into the protocol errors below.
"""

from typing import Any, Dict


class AuthError(Exception):
    code = "AuthError"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


# -----------------------------------------------------------------------------
# Component errors (not surfaced verbatim)
# -----------------------------------------------------------------------------
class NonceNotFound(LookupError):
    """No live nonce for the identity key (never issued, consumed or expired)."""


class VerificationError(ValueError):
    """Signature could not be parsed or the signer could not be recovered."""


# -----------------------------------------------------------------------------
# Protocol errors
# -----------------------------------------------------------------------------
class InvalidAddress(AuthError):
    code = "InvalidAddress"
    status_code = 400


class ChallengeExpiredOrMissing(AuthError):
    code = "NoNonceForAddress"
    status_code = 400


class InvalidSignature(AuthError):
    code = "VerificationFailed"
    status_code = 400


class SignerMismatch(AuthError):
    code = "SignatureInvalid"
    status_code = 401


class RoleConflict(AuthError):
    """
    The wallet is already registered under a different role.

    Permanent: retrying only helps with the role the wallet already holds.
    """

    code = "RoleConflict"
    status_code = 409

    def __init__(self, address: str, existing_role: str, requested_role: str):
        super().__init__(
            f"This wallet is already registered as a {existing_role}. "
            f"Please log in with that role."
        )
        self.address = address
        self.existing_role = existing_role
        self.requested_role = requested_role


class RecordNotFound(AuthError):
    code = "NotFound"
    status_code = 404


class ImmutableField(AuthError):
    code = "ImmutableField"
    status_code = 400


class SessionInvalid(AuthError):
    code = "SessionInvalid"
    status_code = 401


class ProviderUnavailable(AuthError):
    """Raised by the calling environment when no wallet provider is present."""

    code = "ProviderUnavailable"
    status_code = 503
