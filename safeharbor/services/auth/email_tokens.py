from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable
from urllib.parse import urlencode

from safeharbor.core.errors import NotFoundError, ValidationError
from safeharbor.domain.entities import User, utc_now
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services.auth.sessions import SessionManager
from safeharbor.providers.email.base import EmailSender


logger = logging.getLogger(__name__)

VERIFY_METHOD_NAME = "validateAccountVerificationToken"


@dataclass(frozen=True)
class PendingVerification:
    user_id: str
    email_address: str
    issued_at: datetime


@dataclass(frozen=True)
class VerifiedEmail:
    login_name: str
    email_address: str


class EmailVerifier:
    """Issues and redeems account verification tokens.

    Tokens reuse the session-id mint, so they carry the same integrity
    check, and are only honored while pending and younger than the TTL.
    """

    def __init__(
        self,
        store: ObjectStore,
        sessions: SessionManager,
        sender: EmailSender | None,
        *,
        ttl_hours: int = 72,
        base_url: str = "http://localhost:8000",
        perform_verification: bool = True,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._sender = sender
        self._ttl = timedelta(hours=ttl_hours)
        self._base_url = base_url.rstrip("/")
        self._perform_verification = perform_verification
        self._now = now
        self._pending: dict[str, PendingVerification] = {}

    def confirmation_url(self, token: str) -> str:
        return f"{self._base_url}/{VERIFY_METHOD_NAME}?{urlencode({'AccountVerificationToken': token})}"

    async def establish_email(self, user: User, email_address: str) -> str | None:
        # Record the address unverified, then either mail a token or trust it outright.
        user.email_address = email_address
        user.email_verified = False
        self._store.update(user)
        if not self._perform_verification:
            user.email_verified = True
            self._store.update(user)
            return None
        token = self.issue_token(user)
        if self._sender is not None:
            await self._sender.send_verification(email_address, token, self.confirmation_url(token))
        return token

    def issue_token(self, user: User) -> str:
        token = self._sessions.mint_session_id()
        self._pending[token] = PendingVerification(
            user_id=user.id,
            email_address=user.email_address,
            issued_at=self._now(),
        )
        logger.info("email_token_issued user_id=%s", user.id)
        return token

    def validate_token(self, token: str) -> VerifiedEmail:
        if not self._sessions.structurally_valid(token):
            raise ValidationError("Token is not valid")
        pending = self._pending.get(token)
        if pending is None:
            raise ValidationError("Token not recognized")
        if self._now() > pending.issued_at + self._ttl:
            del self._pending[token]
            logger.info("email_token_expired user_id=%s", pending.user_id)
            raise ValidationError("Token expired")
        try:
            user = self._store.get_user(pending.user_id)
        except NotFoundError as exc:
            del self._pending[token]
            raise ValidationError("User not found") from exc
        del self._pending[token]
        if user.email_address == pending.email_address:
            user.email_verified = True
            self._store.update(user)
        return VerifiedEmail(login_name=user.login_name, email_address=user.email_address)
