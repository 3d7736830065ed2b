"""
credilink_auth/challenge.py

Challenge-response login: the protocol state machine.

Per identity key (lowercased wallet address):

    NoChallenge --request_challenge--> Pending --verify_challenge--> Verified
                                          |                          \\
                                          +--request_challenge       Failed
                                             (old nonce dropped)

verify_challenge() always consumes the pending nonce first, so both
Verified and Failed fall back to NoChallenge. A failed attempt is never
retried here: the caller must request a new challenge.

Failure order is part of the contract:
  0. malformed address or role -> InvalidSignature (nonce left untouched)
  1. no live nonce          -> ChallengeExpiredOrMissing
  2. unparseable signature  -> InvalidSignature
  3. signer != claimed      -> SignerMismatch
  4. wallet has other role  -> RoleConflict
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .audit import AuditLog, build_common
from .errors import (
    AuthError,
    ChallengeExpiredOrMissing,
    InvalidAddress,
    InvalidSignature,
    NonceNotFound,
    SignerMismatch,
    VerificationError,
)
from .identity import IdentityClaim, IdentityRecord, IdentityRegistry, Role
from .nonces import NonceStore
from .sessions import Session, SessionManager
from .signatures import addresses_match, normalize_address, recover_signer, short_address


logger = logging.getLogger("credilink.auth")


class ChallengeState(str, Enum):
    NO_CHALLENGE = "no_challenge"
    PENDING = "pending"


@dataclass(frozen=True)
class Challenge:
    address: str
    nonce: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class LoginResult:
    record: IdentityRecord
    created: bool
    session: Session


class ChallengeService:
    def __init__(
        self,
        nonces: NonceStore,
        registry: IdentityRegistry,
        sessions: SessionManager,
        audit: Optional[AuditLog] = None,
        default_role: Role = Role.STUDENT,
    ):
        self.nonces = nonces
        self.registry = registry
        self.sessions = sessions
        self.audit = audit
        self.default_role = default_role

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _audit(self, **fields) -> None:
        if self.audit is None:
            return
        extra = {k: fields.pop(k) for k in ("result", "reason", "created") if k in fields}
        self.audit.append({**build_common(**fields), **extra})

    def state_of(self, address: str) -> ChallengeState:
        key = normalize_address(address)
        if self.nonces.peek(key) is None:
            return ChallengeState.NO_CHALLENGE
        return ChallengeState.PENDING

    @staticmethod
    def _parse_address(address: str) -> str:
        # malformed input on the verify path is a verification failure
        try:
            return normalize_address(address)
        except InvalidAddress as e:
            raise InvalidSignature(f"Verification failed: {e.message}") from e

    @staticmethod
    def _parse_role(role: Optional[Union[Role, str]]) -> Optional[Role]:
        if role is None:
            return None
        try:
            return Role(role)
        except ValueError as e:
            raise InvalidSignature(f"Verification failed: unknown role {role!r}") from e

    def _resolve_role(self, address: str, role: Optional[Role]) -> Role:
        if role is not None:
            return role
        existing = self.registry.find_by_address(address)
        return existing.role if existing is not None else self.default_role

    # -------------------------------------------------------------------------
    # Protocol
    # -------------------------------------------------------------------------
    def request_challenge(
        self,
        address: str,
        *,
        request_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Challenge:
        key = normalize_address(address)
        nonce = self.nonces.issue(key)

        logger.info("challenge issued for %s", short_address(key))
        self._audit(
            event="challenge_issued",
            address=key,
            request_ip=request_ip,
            user_agent=user_agent,
            result="issued",
        )
        return Challenge(
            address=key,
            nonce=nonce.value,
            issued_at=nonce.issued_at,
            expires_at=nonce.expires_at,
        )

    def verify_challenge(
        self,
        address: str,
        signature: str,
        role: Optional[Union[Role, str]] = None,
        *,
        chain_id: Optional[int] = None,
        request_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        # the claimed address is recorded as sent until it parses
        common = dict(
            event="login",
            address=str(address or "")[:64],
            signature=signature,
            request_ip=request_ip,
            user_agent=user_agent,
        )

        try:
            key = self._parse_address(address)
            common["address"] = key
            requested = self._parse_role(role)
            common["role"] = requested.value if requested is not None else None
            result = self._verify(key, signature, requested, chain_id)
        except AuthError as e:
            logger.warning(
                "login denied for %s: %s", short_address(common["address"]), e.code
            )
            self._audit(**common, result="denied", reason=e.code)
            raise

        common["role"] = result.record.role.value
        logger.info(
            "login approved for %s as %s (created=%s)",
            short_address(key),
            result.record.role.value,
            result.created,
        )
        self._audit(
            **common,
            record_id=result.record.id,
            result="approved",
            reason="signature_valid",
            created=result.created,
        )
        return result

    def _verify(
        self,
        key: str,
        signature: str,
        role: Optional[Role],
        chain_id: Optional[int] = None,
    ) -> LoginResult:
        # 1. single use: the nonce is gone whatever happens next
        try:
            nonce_value = self.nonces.consume(key)
        except NonceNotFound as e:
            raise ChallengeExpiredOrMissing(
                "No pending challenge for this address. Request a new nonce."
            ) from e

        # 2. recover
        try:
            signer = recover_signer(nonce_value, signature)
        except VerificationError as e:
            raise InvalidSignature(f"Verification failed: {e}") from e

        # 3. bind
        if not addresses_match(signer, key):
            raise SignerMismatch("Signature invalid: signer does not match address.")

        # 4. identity
        claim = IdentityClaim(address=key, role=self._resolve_role(key, role))
        record, created = self.registry.find_or_create(claim, chain_id=chain_id)

        return LoginResult(record=record, created=created, session=self.sessions.issue(record))
