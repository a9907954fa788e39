from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from safeharbor.apps.api.deps import (
    get_current_user,
    get_sessions,
    get_verifier,
    require_session,
    session_cookie_value,
)
from safeharbor.core.config import get_settings
from safeharbor.domain.descriptors import UserDesc, describe
from safeharbor.domain.entities import User
from safeharbor.services.auth.email_tokens import EmailVerifier
from safeharbor.services.auth.sessions import Credentials, SessionManager, SessionToken


router = APIRouter(tags=["auth"])


class AuthenticateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="UserId", min_length=1)
    password: str = Field(alias="Password")


class AuthenticateResponse(BaseModel):
    session_id: str
    authenticated_user_id: str
    realm_id: str
    is_admin_user: bool


class LogoutResponse(BaseModel):
    status: str


class VerificationResponse(BaseModel):
    user_id: str
    email_address: str


def _response_for(token: SessionToken) -> AuthenticateResponse:
    return AuthenticateResponse(
        session_id=token.session_id,
        authenticated_user_id=token.authenticated_user_id,
        realm_id=token.realm_id,
        is_admin_user=token.is_admin_user,
    )


@router.post("/authenticate", response_model=AuthenticateResponse)
async def authenticate(
    payload: AuthenticateRequest,
    response: Response,
    sessions: SessionManager = Depends(get_sessions),
) -> AuthenticateResponse:
    token = sessions.login(Credentials(login_id=payload.user_id, password=payload.password))
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token.session_id,
        max_age=settings.session_cookie_max_age_s,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return _response_for(token)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    _token: SessionToken = Depends(require_session),
    sessions: SessionManager = Depends(get_sessions),
) -> LogoutResponse:
    sessions.invalidate_session(session_cookie_value(request) or "")
    response.delete_cookie(get_settings().session_cookie_name)
    return LogoutResponse(status="logged_out")


@router.get("/getMyDesc", response_model=UserDesc)
async def get_my_desc(user: User = Depends(get_current_user)) -> UserDesc:
    return describe(user)


@router.get("/validateAccountVerificationToken", response_model=VerificationResponse)
async def validate_account_verification_token(
    token: str = Query(alias="AccountVerificationToken", min_length=1),
    verifier: EmailVerifier = Depends(get_verifier),
) -> VerificationResponse:
    verified = verifier.validate_token(token)
    return VerificationResponse(user_id=verified.login_name, email_address=verified.email_address)
