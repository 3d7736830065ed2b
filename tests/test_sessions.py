import base64
import json

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from credilink_auth.errors import SessionInvalid
from credilink_auth.identity import IdentityClaim, IdentityRegistry, Role
from credilink_auth.sessions import (
    SessionManager,
    b64url_decode,
    b64url_encode,
    load_ed25519_private_key_from_b64,
    sign_token,
)


@pytest.fixture
def record(clock):
    reg = IdentityRegistry(clock=clock)
    rec, _ = reg.find_or_create(
        IdentityClaim.of("0x19e7e376e7c213b7e7e7e46cc70a5dd086daff2a", Role.STUDENT)
    )
    return rec


@pytest.fixture
def manager(signing_key, clock):
    return SessionManager(signing_key, ttl_seconds=600, clock=clock)


def test_issue_and_resolve(manager, record, clock):
    session = manager.issue(record)

    assert session.token.startswith("cl1.")
    assert session.record_id == record.id
    assert session.expires_at == int(clock()) + 600

    resolved = manager.resolve(session.token)
    assert resolved == session


def test_each_session_gets_a_fresh_id(manager, record):
    assert manager.issue(record).session_id != manager.issue(record).session_id


def test_token_from_another_key_is_rejected(manager, record, clock):
    other = SessionManager(Ed25519PrivateKey.generate(), clock=clock)
    with pytest.raises(SessionInvalid):
        manager.resolve(other.issue(record).token)


def test_tampered_payload_is_rejected(manager, record):
    prefix, payload, sig = manager.issue(record).token.split(".")
    claims = json.loads(b64url_decode(payload))
    claims["sub"] = "someone-else"
    forged = ".".join([prefix, b64url_encode(json.dumps(claims).encode()), sig])

    with pytest.raises(SessionInvalid):
        manager.resolve(forged)


@pytest.mark.parametrize("token", ["", "garbage", "cl1.a", "v4.abc.def", "cl1.!!!.???"])
def test_malformed_tokens(manager, token):
    with pytest.raises(SessionInvalid):
        manager.resolve(token)


def test_wrong_token_type_is_rejected(manager, signing_key):
    token = sign_token(signing_key, {"typ": "other", "sid": "x"})
    with pytest.raises(SessionInvalid):
        manager.resolve(token)


def test_expired_session(manager, record, clock):
    session = manager.issue(record)
    clock.advance(600)
    with pytest.raises(SessionInvalid):
        manager.resolve(session.token)


def test_revoke_logs_out_only_that_session(manager, record):
    a = manager.issue(record)
    b = manager.issue(record)

    manager.revoke(a.token)

    with pytest.raises(SessionInvalid):
        manager.resolve(a.token)
    assert manager.resolve(b.token).session_id == b.session_id


def test_tokens_survive_a_new_manager_with_the_same_key(signing_key, record, clock):
    token = SessionManager(signing_key, clock=clock).issue(record).token
    restored = SessionManager(signing_key, clock=clock).resolve(token)
    assert restored.record_id == record.id


def test_load_private_key_from_b64():
    seed = bytes(range(32))
    sk = load_ed25519_private_key_from_b64(base64.b64encode(seed).decode())
    assert sk.public_key() is not None

    with pytest.raises(ValueError):
        load_ed25519_private_key_from_b64(base64.b64encode(b"short").decode())
