from __future__ import annotations

from fastapi import Depends, Request

from safeharbor.core.config import get_settings
from safeharbor.core.errors import UnauthorizedError
from safeharbor.domain.entities import User
from safeharbor.services.auth.email_tokens import EmailVerifier
from safeharbor.services.auth.sessions import SessionManager, SessionToken


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_verifier(request: Request) -> EmailVerifier:
    return request.app.state.verifier


def session_cookie_value(request: Request) -> str | None:
    return request.cookies.get(get_settings().session_cookie_name)


async def require_session(
    request: Request,
    sessions: SessionManager = Depends(get_sessions),
) -> SessionToken:
    # Both the live table and the digest must accept the cookie.
    return sessions.require_session(session_cookie_value(request))


async def get_current_user(
    token: SessionToken = Depends(require_session),
    sessions: SessionManager = Depends(get_sessions),
) -> User:
    user = sessions.resolve_user(token)
    if not user.is_active:
        raise UnauthorizedError("User is not active")
    return user
