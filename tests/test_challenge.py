import pytest

from credilink_auth.challenge import ChallengeState
from credilink_auth.errors import (
    ChallengeExpiredOrMissing,
    InvalidSignature,
    RoleConflict,
    SignerMismatch,
)
from credilink_auth.identity import Role

from conftest import sign


def test_login_creates_verified_identity(service, alice):
    # mixed-case address as a wallet would report it
    address = "0x" + alice.address[2:].upper()
    challenge = service.request_challenge(address)
    assert service.state_of(address) is ChallengeState.PENDING

    result = service.verify_challenge(address, sign(alice, challenge.nonce), "student")

    assert result.created is True
    assert result.record.verified is True
    assert result.record.address == alice.address.lower()
    assert result.record.role is Role.STUDENT
    assert service.sessions.resolve(result.session.token).record_id == result.record.id
    assert service.state_of(address) is ChallengeState.NO_CHALLENGE


def test_second_login_returns_same_record(service, alice):
    first = service.verify_challenge(
        alice.address, sign(alice, service.request_challenge(alice.address).nonce), "recruiter"
    )
    second = service.verify_challenge(
        alice.address, sign(alice, service.request_challenge(alice.address).nonce), "recruiter"
    )

    assert second.created is False
    assert second.record.id == first.record.id
    assert second.session.session_id != first.session.session_id


def test_never_requested_is_missing_not_invalid(service, alice):
    with pytest.raises(ChallengeExpiredOrMissing):
        service.verify_challenge(alice.address, "0xdeadbeef")
    with pytest.raises(ChallengeExpiredOrMissing):
        service.verify_challenge(alice.address, sign(alice, "anything"))


def test_replayed_signature_fails_after_success(service, alice):
    sig = sign(alice, service.request_challenge(alice.address).nonce)
    service.verify_challenge(alice.address, sig)

    with pytest.raises(ChallengeExpiredOrMissing):
        service.verify_challenge(alice.address, sig)


def test_reissued_challenge_invalidates_old_nonce(service, alice):
    old = service.request_challenge(alice.address)
    service.request_challenge(alice.address)

    with pytest.raises(SignerMismatch):
        # old nonce no longer pending: signature over it recovers a stranger
        service.verify_challenge(alice.address, sign(alice, old.nonce))


def test_malformed_signature_is_invalid_and_consumes_nonce(service, alice):
    service.request_challenge(alice.address)

    with pytest.raises(InvalidSignature):
        service.verify_challenge(alice.address, "0x1234")
    assert service.state_of(alice.address) is ChallengeState.NO_CHALLENGE
    with pytest.raises(ChallengeExpiredOrMissing):
        service.verify_challenge(alice.address, "0x1234")


def test_signature_from_other_wallet_is_mismatch(service, alice, bob):
    challenge = service.request_challenge(alice.address)

    with pytest.raises(SignerMismatch):
        service.verify_challenge(alice.address, sign(bob, challenge.nonce))
    assert len(service.registry) == 0


def test_expired_challenge(service, alice, clock):
    challenge = service.request_challenge(alice.address)
    clock.advance(301)

    with pytest.raises(ChallengeExpiredOrMissing):
        service.verify_challenge(alice.address, sign(alice, challenge.nonce))


def test_role_conflict_creates_no_record(service, alice):
    service.verify_challenge(
        alice.address, sign(alice, service.request_challenge(alice.address).nonce), Role.RECRUITER
    )

    challenge = service.request_challenge(alice.address)
    with pytest.raises(RoleConflict):
        service.verify_challenge(alice.address, sign(alice, challenge.nonce), Role.STUDENT)

    assert len(service.registry) == 1
    assert service.registry.find_by_address(alice.address).role is Role.RECRUITER


def test_omitted_role_uses_existing_registration(service, alice):
    service.verify_challenge(
        alice.address, sign(alice, service.request_challenge(alice.address).nonce), "recruiter"
    )
    result = service.verify_challenge(
        alice.address, sign(alice, service.request_challenge(alice.address).nonce)
    )
    assert result.created is False
    assert result.record.role is Role.RECRUITER


def test_omitted_role_defaults_to_student(service, bob):
    result = service.verify_challenge(
        bob.address, sign(bob, service.request_challenge(bob.address).nonce)
    )
    assert result.record.role is Role.STUDENT


def test_outcomes_are_audited(service, alice, bob):
    service.request_challenge(alice.address)
    with pytest.raises(SignerMismatch):
        service.verify_challenge(alice.address, sign(bob, "x"))

    challenge = service.request_challenge(alice.address)
    service.verify_challenge(alice.address, sign(alice, challenge.nonce))

    events = list(service.audit.events())
    assert [e["event"] for e in events] == ["challenge_issued", "login", "challenge_issued", "login"]
    assert events[1]["result"] == "denied"
    assert events[1]["reason"] == "SignatureInvalid"
    assert events[3]["result"] == "approved"
    assert events[3]["created"] is True
    assert all(challenge.nonce not in str(e) for e in events)
    assert service.audit.verify()


def test_malformed_address_is_verification_failure_and_audited(service):
    with pytest.raises(InvalidSignature):
        service.verify_challenge("not-an-address", "0x00")

    events = list(service.audit.events())
    assert len(events) == 1
    assert events[0]["event"] == "login"
    assert events[0]["result"] == "denied"
    assert events[0]["reason"] == "VerificationFailed"
    assert events[0]["address"] == "not-an-address"


def test_unknown_role_is_verification_failure_and_keeps_nonce(service, alice):
    challenge = service.request_challenge(alice.address)

    with pytest.raises(InvalidSignature):
        service.verify_challenge(alice.address, sign(alice, challenge.nonce), "admin")

    denied = list(service.audit.events())[-1]
    assert denied["result"] == "denied"
    assert denied["reason"] == "VerificationFailed"
    assert service.state_of(alice.address) is ChallengeState.PENDING
    assert len(service.registry) == 0
