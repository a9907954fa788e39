from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from safeharbor.core.errors import ValidationError
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.providers.email.fake import RecordingEmailSender
from safeharbor.services.auth.email_tokens import EmailVerifier
from safeharbor.services.auth.sessions import SessionManager
from safeharbor.tests.utils.builders import seed_realm


class _Now:
    def __init__(self) -> None:
        self.value = datetime(2026, 2, 7, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.value


@pytest.mark.asyncio
async def test_establish_email_sends_token_and_validates(store: ObjectStore, sessions: SessionManager) -> None:
    _realm, alice = await seed_realm(store, sessions)
    sender = RecordingEmailSender()
    verifier = EmailVerifier(store, sessions, sender, base_url="https://harbor.example.com/")

    token = await verifier.establish_email(alice, "alice@acme.example")

    assert alice.email_verified is False
    [message] = sender.sent
    assert message.token == token
    assert message.email_address == "alice@acme.example"
    assert message.confirmation_url.startswith(
        "https://harbor.example.com/validateAccountVerificationToken?AccountVerificationToken="
    )

    verified = verifier.validate_token(token)
    assert verified.login_name == "alice"
    assert alice.email_verified is True
    with pytest.raises(ValidationError):
        verifier.validate_token(token)


@pytest.mark.asyncio
async def test_expired_token_is_rejected(store: ObjectStore, sessions: SessionManager) -> None:
    _realm, alice = await seed_realm(store, sessions)
    now = _Now()
    verifier = EmailVerifier(store, sessions, RecordingEmailSender(), now=now)
    token = await verifier.establish_email(alice, "alice@acme.example")

    now.value += timedelta(hours=72, seconds=1)

    with pytest.raises(ValidationError, match="expired"):
        verifier.validate_token(token)
    assert alice.email_verified is False


@pytest.mark.asyncio
async def test_forged_or_unknown_tokens_are_rejected(store: ObjectStore, sessions: SessionManager) -> None:
    verifier = EmailVerifier(store, sessions, None)
    with pytest.raises(ValidationError):
        verifier.validate_token("123:abc")
    with pytest.raises(ValidationError, match="not recognized"):
        verifier.validate_token(sessions.mint_session_id())


@pytest.mark.asyncio
async def test_verification_can_be_disabled(store: ObjectStore, sessions: SessionManager) -> None:
    _realm, alice = await seed_realm(store, sessions)
    sender = RecordingEmailSender()
    verifier = EmailVerifier(store, sessions, sender, perform_verification=False)

    assert await verifier.establish_email(alice, "alice@acme.example") is None
    assert alice.email_verified is True
    assert sender.sent == []
