# credilink_auth/sessions.py
#
# -----------------------------------------------------------------------------
# Session tokens
# -----------------------------------------------------------------------------
# After a successful wallet verification the server hands the client an opaque
# bearer token. The client stores nothing else: identity records stay
# server-side in the IdentityRegistry.
#
# Token wire format:
#
#     cl1.<payload_b64url>.<signature_b64url>
#
# Where:
#   - payload is canonical JSON (sorted keys, no whitespace)
#   - signature = Ed25519.sign(payload_bytes) with the server key
#
# Tokens are self-contained, so a client holding one survives a server
# restart as long as the signing key is stable. Logout revokes the session id;
# revoked ids are remembered until the token would have expired anyway.
#
# The server key is infrastructure, never a user identity key.
# -----------------------------------------------------------------------------


import base64
import json
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from cryptography.exceptions import InvalidSignature as InvalidTokenSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .errors import SessionInvalid
from .identity import IdentityRecord


logger = logging.getLogger("credilink.sessions")

TOKEN_PREFIX = "cl1"
TOKEN_TYPE = "session"


# -----------------------------------------------------------------------------
# Base64 helpers
# -----------------------------------------------------------------------------
def b64url_encode(b: bytes) -> str:
    """URL-safe Base64 without padding (header/cookie friendly)."""
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def b64url_decode(s: str) -> bytes:
    """Decode URL-safe Base64, restoring missing padding."""
    s = str(s).strip()
    s += "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s.encode("ascii"))


# -----------------------------------------------------------------------------
# Key loading
# -----------------------------------------------------------------------------
def load_ed25519_private_key_from_b64(sk_b64: str) -> Ed25519PrivateKey:
    """
    Load a raw Ed25519 private key from Base64.

    The key MUST be exactly 32 bytes (raw seed): no PEM, env var friendly.
    """
    raw = base64.b64decode(sk_b64.strip(), validate=True)
    if len(raw) != 32:
        raise ValueError("Ed25519 raw private key must be 32 bytes (base64 of 32 bytes)")
    return Ed25519PrivateKey.from_private_bytes(raw)


# -----------------------------------------------------------------------------
# Token wire format
# -----------------------------------------------------------------------------
def encode_token(payload_bytes: bytes, sig: bytes) -> str:
    return f"{TOKEN_PREFIX}.{b64url_encode(payload_bytes)}.{b64url_encode(sig)}"


def decode_token(token: str) -> Tuple[bytes, bytes]:
    """Format validation only; the signature is checked by verify_token()."""
    parts = str(token).split(".")
    if len(parts) != 3 or parts[0] != TOKEN_PREFIX:
        raise ValueError("bad token format")
    return b64url_decode(parts[1]), b64url_decode(parts[2])


def sign_token(sk: Ed25519PrivateKey, payload_obj: dict) -> str:
    payload_bytes = json.dumps(
        payload_obj,
        separators=(",", ":"),
        sort_keys=True,
    ).encode("utf-8")
    return encode_token(payload_bytes, sk.sign(payload_bytes))


def verify_token(pk: Ed25519PublicKey, token: str) -> dict:
    """
    Verify signature and return the payload.

    Does NOT enforce claims (typ, expiry, revocation); callers do that.
    """
    payload_bytes, sig = decode_token(token)
    pk.verify(sig, payload_bytes)
    return json.loads(payload_bytes.decode("utf-8"))


# -----------------------------------------------------------------------------
# Sessions
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Session:
    session_id: str
    record_id: str
    address: str
    role: str
    issued_at: int
    expires_at: int
    token: str


class SessionManager:
    def __init__(
        self,
        signing_key: Optional[Ed25519PrivateKey] = None,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        if signing_key is None:
            logger.warning("no session signing key configured; using an ephemeral key")
            signing_key = Ed25519PrivateKey.generate()

        self._sk = signing_key
        self._pk = signing_key.public_key()
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # session_id -> expires_at
        self._revoked: Dict[str, int] = {}

    def _now(self) -> int:
        return int(self._clock())

    def issue(self, record: IdentityRecord) -> Session:
        now = self._now()
        payload = {
            "typ": TOKEN_TYPE,
            "sid": secrets.token_urlsafe(18),
            "sub": record.id,
            "addr": record.address,
            "role": record.role.value,
            "issued_at": now,
            "expires_at": now + self.ttl_seconds,
        }
        token = sign_token(self._sk, payload)
        return _session_from_claims(payload, token)

    def resolve(self, token: str) -> Session:
        """
        Validate a bearer token and return its session.

        Raises SessionInvalid for bad format, forged signature, wrong type,
        expiry or revocation.
        """
        try:
            claims = verify_token(self._pk, token)
        except (ValueError, InvalidTokenSignature) as e:
            raise SessionInvalid("invalid session token") from e

        if claims.get("typ") != TOKEN_TYPE:
            raise SessionInvalid("invalid session token type")

        try:
            session = _session_from_claims(claims, token)
        except (KeyError, TypeError, ValueError) as e:
            raise SessionInvalid("invalid session claims") from e

        if self._now() >= session.expires_at:
            raise SessionInvalid("session expired")

        with self._lock:
            if session.session_id in self._revoked:
                raise SessionInvalid("session has been logged out")

        return session

    def revoke(self, token: str) -> Session:
        session = self.resolve(token)
        with self._lock:
            self._prune_unlocked()
            self._revoked[session.session_id] = session.expires_at
        return session

    def _prune_unlocked(self) -> None:
        now = self._now()
        dead = [sid for sid, exp in self._revoked.items() if now >= exp]
        for sid in dead:
            del self._revoked[sid]


def _session_from_claims(claims: dict, token: str) -> Session:
    return Session(
        session_id=str(claims["sid"]),
        record_id=str(claims["sub"]),
        address=str(claims["addr"]),
        role=str(claims["role"]),
        issued_at=int(claims["issued_at"]),
        expires_at=int(claims["expires_at"]),
        token=token,
    )
