import random

import pytest
from eth_keys import keys
from eth_utils import keccak

from credilink_auth.errors import InvalidAddress, VerificationError
from credilink_auth.signatures import (
    addresses_match,
    normalize_address,
    recover_signer,
    short_address,
)

from conftest import sign


@pytest.mark.parametrize(
    "message",
    ["482913", "", "hello world", "unicode é中", "x" * 1000],
)
def test_recover_round_trip(alice, message):
    assert recover_signer(message, sign(alice, message)) == alice.address


def test_recover_accepts_signature_without_0x(alice):
    sig = sign(alice, "nonce")[2:]
    assert recover_signer("nonce", sig) == alice.address


def test_different_message_recovers_different_address(alice):
    sig = sign(alice, "nonce-a")
    assert recover_signer("nonce-b", sig) != alice.address


def test_unprefixed_signature_does_not_recover_signer(alice):
    # signature over keccak(message) without the personal_sign prefix
    pk = keys.PrivateKey(bytes(alice.key))
    raw = pk.sign_msg_hash(keccak(text="nonce")).to_bytes()
    sig = raw[:64] + bytes([raw[64] + 27])

    assert recover_signer("nonce", sig.hex()) != alice.address


@pytest.mark.parametrize(
    "signature",
    [
        "",
        "0x",
        "not-hex",
        "0x" + "ab" * 64,
        "0x" + "ab" * 66,
    ],
)
def test_malformed_signature_raises(signature):
    with pytest.raises(VerificationError):
        recover_signer("nonce", signature)


@pytest.mark.parametrize("v", [0, 1, 29, 37, 38])
def test_non_wallet_v_values_are_rejected(alice, v):
    raw = bytes.fromhex(sign(alice, "nonce")[2:])
    with pytest.raises(VerificationError):
        recover_signer("nonce", (raw[:64] + bytes([v])).hex())


def test_single_byte_tamper_never_recovers_original_signer(alice):
    rng = random.Random(1337)
    message = "tamper-me"
    raw = bytes.fromhex(sign(alice, message)[2:])

    for _ in range(300):
        idx = rng.randrange(len(raw))
        flip = rng.randrange(1, 256)
        tampered = bytearray(raw)
        tampered[idx] ^= flip
        try:
            recovered = recover_signer(message, bytes(tampered).hex())
        except VerificationError:
            continue
        assert recovered != alice.address


def test_normalize_address_lowercases_and_validates(alice):
    assert normalize_address(alice.address) == alice.address.lower()
    assert normalize_address("0x" + alice.address[2:].upper()) == alice.address.lower()
    assert normalize_address("  " + alice.address + " ") == alice.address.lower()


@pytest.mark.parametrize("bad", ["", "0x123", "abc", "0x" + "g" * 40, "0x" + "a" * 41, None])
def test_normalize_address_rejects_garbage(bad):
    with pytest.raises(InvalidAddress):
        normalize_address(bad)


def test_addresses_match_is_case_insensitive(alice):
    assert addresses_match(alice.address, alice.address.lower())
    assert not addresses_match(alice.address, "0x" + "0" * 40)


def test_short_address():
    assert short_address("0x1234567890abcdef1234567890abcdef12345678") == "0x1234...5678"


def test_whitespace_inside_signature_is_rejected(alice):
    sig = sign(alice, "nonce")
    spaced = sig[:2] + " ".join(sig[i:i + 2] for i in range(2, len(sig), 2))

    with pytest.raises(VerificationError):
        recover_signer("nonce", spaced)
    with pytest.raises(VerificationError):
        recover_signer("nonce", sig + "\n")
