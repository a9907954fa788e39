from __future__ import annotations

import hmac
import logging
import threading
import time
from typing import Callable

from pydantic import BaseModel

from safeharbor.core.config import Settings, get_settings
from safeharbor.core.errors import UnauthorizedError
from safeharbor.domain.entities import User
from safeharbor.domain.permissions import Capability
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services.acl import entry_for_resource
from safeharbor.services.auth.passwords import hash_password, salted_hash, verify_password


logger = logging.getLogger(__name__)


class Credentials(BaseModel):
    login_id: str
    password: str


class SessionToken(BaseModel):
    # Transient value handed to the caller; never persisted.
    session_id: str
    authenticated_user_id: str
    realm_id: str = ""
    is_admin_user: bool = False


class _Revoked:
    def __repr__(self) -> str:
        return "<revoked>"


# Tombstone left in the live table on logout.
REVOKED = _Revoked()


class SessionManager:
    """Mints, validates and revokes session ids.

    A session id has the form ``<nonce>:<hex digest>`` where the nonce is the
    mint time in nanoseconds and the digest is the salted hash of the nonce.
    :meth:`authenticate` requires both the liveness gate (a non-revoked entry
    in the live table) and the integrity gate (the digest recomputes).
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        secret_salt: str,
        hash_mode: str = "salted_sha512",
        max_login_attempts: int = 5,
        throttle_window_s: int = 600,
        clock: Callable[[], float] = time.time,
        nanos: Callable[[], int] = time.time_ns,
    ) -> None:
        self._store = store
        self._secret_salt = secret_salt.encode("utf-8")
        self._hash_mode = hash_mode
        self._max_login_attempts = max_login_attempts
        self._throttle_window_s = throttle_window_s
        self._clock = clock
        self._nanos = nanos
        self._live_sessions: dict[str, Credentials | _Revoked] = {}
        self._last_nonce = 0
        self._mint_lock = threading.Lock()

    @classmethod
    def from_settings(cls, store: ObjectStore, settings: Settings | None = None) -> "SessionManager":
        settings = settings or get_settings()
        return cls(
            store,
            secret_salt=settings.secret_salt,
            hash_mode=settings.session_hash_mode,
            max_login_attempts=settings.max_login_attempts_to_retain,
            throttle_window_s=settings.login_throttle_window_s,
        )

    # Hashing ---------------------------------------------------------------

    def _digest_hex(self, value: str) -> str:
        return salted_hash(self._secret_salt, value, mode=self._hash_mode).hex()

    def hash_password(self, password: str) -> str:
        return hash_password(self._secret_salt, password, mode=self._hash_mode)

    def password_matches(self, user: User, password: str) -> bool:
        return verify_password(self._secret_salt, password, user.password_hash, mode=self._hash_mode)

    # Session ids -----------------------------------------------------------

    def mint_session_id(self) -> str:
        # Two mints inside one clock tick still get distinct, increasing nonces.
        with self._mint_lock:
            nonce = max(self._nanos(), self._last_nonce + 1)
            self._last_nonce = nonce
        nonce_text = str(nonce)
        return f"{nonce_text}:{self._digest_hex(nonce_text)}"

    def structurally_valid(self, session_id: str) -> bool:
        # Integrity gate only; the live table is not consulted.
        parts = session_id.split(":")
        if len(parts) != 2:
            logger.info("session_id_malformed parts=%s", len(parts))
            return False
        nonce, untrusted_digest = parts
        # compare_digest rejects non-ASCII str, so compare encoded bytes.
        return hmac.compare_digest(untrusted_digest.encode("utf-8"), self._digest_hex(nonce).encode("ascii"))

    def create_session(self, credentials: Credentials) -> SessionToken:
        session_id = self.mint_session_id()
        # Keep the identity only; the password is not retained past login.
        self._live_sessions[session_id] = Credentials(login_id=credentials.login_id, password="")
        logger.info("session_created login_id=%s", credentials.login_id)
        return SessionToken(session_id=session_id, authenticated_user_id=credentials.login_id)

    def invalidate_session(self, session_id: str) -> None:
        self._live_sessions[session_id] = REVOKED
        logger.info("session_invalidated")

    def clear_all_sessions(self) -> None:
        self._live_sessions.clear()

    def is_live(self, session_id: str) -> bool:
        entry = self._live_sessions.get(session_id)
        return isinstance(entry, Credentials)

    def authenticate(self, session_id: str) -> SessionToken | None:
        entry = self._live_sessions.get(session_id)
        if not isinstance(entry, Credentials):
            return None
        if not self.structurally_valid(session_id):
            logger.warning("session_integrity_failed login_id=%s", entry.login_id)
            return None
        return self._token_for(session_id, entry.login_id)

    def require_session(self, session_id: str | None) -> SessionToken:
        if not session_id:
            raise UnauthorizedError("No session id presented")
        token = self.authenticate(session_id)
        if token is None:
            raise UnauthorizedError("Session is not valid")
        return token

    def resolve_user(self, token: SessionToken) -> User:
        user = self._store.user_by_login_name(token.authenticated_user_id)
        if user is None:
            raise UnauthorizedError("Session user no longer exists")
        return user

    def _token_for(self, session_id: str, login_id: str) -> SessionToken:
        token = SessionToken(session_id=session_id, authenticated_user_id=login_id)
        user = self._store.user_by_login_name(login_id)
        if user is None or not user.realm_id:
            return token
        token.realm_id = user.realm_id
        token.is_admin_user = self._is_realm_admin(user)
        return token

    def _is_realm_admin(self, user: User) -> bool:
        # Admin means a Write grant on the user's own realm.
        if not self._store.contains(user.realm_id):
            return False
        realm = self._store.get_realm(user.realm_id)
        entry = entry_for_resource(self._store, realm, user.id)
        return entry is not None and entry.mask.has(Capability.WRITE)

    # Login -----------------------------------------------------------------

    def is_throttled(self, user: User, now: float | None = None) -> bool:
        # Deny once the retained window is full and entirely recent.
        current = self._clock() if now is None else now
        attempts = user.recent_login_attempts
        if len(attempts) < self._max_login_attempts:
            return False
        return all(current - stamp < self._throttle_window_s for stamp in attempts[-self._max_login_attempts:])

    def record_login_attempt(self, user: User, now: float | None = None) -> None:
        current = self._clock() if now is None else now
        user.recent_login_attempts = (user.recent_login_attempts + [current])[-self._max_login_attempts:]
        self._store.update(user)

    def login(self, credentials: Credentials) -> SessionToken:
        user = self._store.user_by_login_name(credentials.login_id)
        if user is None:
            logger.info("login_failed reason=unknown_user")
            raise UnauthorizedError("Invalid login id or password")
        now = self._clock()
        if self.is_throttled(user, now):
            logger.warning("login_throttled possible brute force login_id=%s", user.login_name)
            self.record_login_attempt(user, now)
            raise UnauthorizedError("Too many recent login attempts; try again later")
        self.record_login_attempt(user, now)
        if not self.password_matches(user, credentials.password):
            logger.info("login_failed reason=bad_password login_id=%s", user.login_name)
            raise UnauthorizedError("Invalid login id or password")
        if not user.is_active:
            logger.info("login_failed reason=inactive login_id=%s", user.login_name)
            raise UnauthorizedError("User is not active")
        token = self.create_session(credentials)
        return self._token_for(token.session_id, user.login_name)
