"""
Shared fixtures: deterministic wallets, a controllable clock, and fully wired
service/app instances that write only under tmp_path.
"""
import base64

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient

from credilink_auth.audit import AuditLog
from credilink_auth.challenge import ChallengeService
from credilink_auth.config import Settings
from credilink_auth.identity import IdentityRegistry
from credilink_auth.main import create_app
from credilink_auth.nonces import NonceStore
from credilink_auth.sessions import SessionManager


class FakeClock:
    def __init__(self, start: float = 1_700_000_000):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sign(account, message: str) -> str:
    signed = account.sign_message(encode_defunct(text=message))
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def alice():
    return Account.from_key("0x" + "11" * 32)


@pytest.fixture
def bob():
    return Account.from_key("0x" + "22" * 32)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def signing_key():
    return Ed25519PrivateKey.generate()


@pytest.fixture
def audit(tmp_path):
    return AuditLog(tmp_path / "audit")


@pytest.fixture
def service(clock, signing_key, audit):
    return ChallengeService(
        nonces=NonceStore(ttl_seconds=300, clock=clock),
        registry=IdentityRegistry(clock=clock),
        sessions=SessionManager(signing_key, ttl_seconds=3600, clock=clock),
        audit=audit,
    )


@pytest.fixture
def settings(tmp_path, signing_key):
    raw = signing_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return Settings(
        ORIGIN="http://localhost:5173",
        SERVER_ED25519_SK_B64=base64.b64encode(raw).decode("ascii"),
        IDENTITY_STORE_PATH=str(tmp_path / "identities.json"),
        AUDIT_DIR=str(tmp_path / "audit"),
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)
