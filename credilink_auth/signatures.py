"""
credilink_auth/signatures.py

Wallet signature verification (Ethereum personal_sign / EIP-191).

The wallet signs the challenge with `personal_sign`, which hashes

    keccak256("\\x19Ethereum Signed Message:\\n" + len(message) + message)

We apply the same prefix (eth_account.messages.encode_defunct) before
recovery. Skipping it would accept signatures over different bytes than the
wallet showed the user.

Signature wire format:
  - hex string, optional "0x" prefix
  - exactly 65 bytes: r (32) || s (32) || v (1)
  - v must be 27 or 28 (the personal_sign convention); raw recovery ids and
    EIP-155 chain-encoded values are rejected because they map several byte
    strings onto the same signer

Everything here is a pure function of its inputs.
"""

import re

from eth_account import Account
from eth_account.messages import encode_defunct

from .errors import InvalidAddress, VerificationError


SIGNATURE_LEN = 65

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX_RE = re.compile(r"[0-9a-fA-F]*")


# -----------------------------------------------------------------------------
# Address helpers
# -----------------------------------------------------------------------------
def normalize_address(address: str) -> str:
    """
    Validate an address syntactically and return its lowercase form.

    Mixed-case input is accepted without enforcing the EIP-55 checksum: the
    comparison against recovered signers is case-insensitive anyway.
    """
    a = str(address or "").strip()
    if not _ADDRESS_RE.match(a):
        raise InvalidAddress("address must be 0x followed by 40 hex characters")
    return a.lower()


def addresses_match(a: str, b: str) -> bool:
    return str(a).strip().lower() == str(b).strip().lower()


def short_address(address: str) -> str:
    """0x1234...abcd form used for display names and log lines."""
    a = str(address or "")
    if len(a) <= 10:
        return a
    return f"{a[:6]}...{a[-4:]}"


# -----------------------------------------------------------------------------
# Signature parsing
# -----------------------------------------------------------------------------
def decode_signature(signature: str) -> bytes:
    s = str(signature or "")
    if s[:2] in ("0x", "0X"):
        s = s[2:]

    # bytes.fromhex() tolerates whitespace; the wire format does not
    if not _HEX_RE.fullmatch(s) or len(s) % 2:
        raise VerificationError("signature is not valid hex")
    raw = bytes.fromhex(s)

    if len(raw) != SIGNATURE_LEN:
        raise VerificationError(
            f"signature must be {SIGNATURE_LEN} bytes, got {len(raw)}"
        )

    if raw[64] not in (27, 28):
        raise VerificationError(f"signature v must be 27 or 28, got {raw[64]}")

    return raw


# -----------------------------------------------------------------------------
# Recovery
# -----------------------------------------------------------------------------
def recover_signer(message: str, signature: str) -> str:
    """
    Recover the checksummed address that signed `message`.

    Raises:
      VerificationError -> malformed signature or recovery failed
    """
    sig = decode_signature(signature)
    signable = encode_defunct(text=message)

    try:
        return Account.recover_message(signable, signature=sig)
    except Exception as e:
        # eth_keys raises BadSignature / ValidationError / ValueError depending
        # on which component of (r, s, v) is out of range
        raise VerificationError(f"signer recovery failed: {e!s}"[:200]) from e
