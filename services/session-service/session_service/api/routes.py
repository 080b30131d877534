"""HTTP route definitions for the session service."""

from __future__ import annotations

import logging
import re
from datetime import datetime

from fastapi import APIRouter, Cookie, Depends, Query, Request, Response, status
from pydantic import BaseModel, EmailStr, Field, field_validator

from ..config import Settings
from ..domain.account import AccountProfile
from ..domain.contracts import RegisterInput, SessionInfo, TokenPair
from ..domain.errors import BadRequestError
from ..domain.service import SessionManager
from .dependencies import (
    api_rate_limit,
    auth_rate_limit,
    client_info,
    get_app_settings,
    get_current_account,
    get_session_manager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

_SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")


def _check_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("Password must contain at least one number")
    if not _SPECIAL_CHARACTERS.search(value):
        raise ValueError("Password must contain at least one special character")
    return value


class AccountResponse(BaseModel):
    """Serialised representation of an `AccountProfile`."""

    account_id: str
    email: EmailStr
    name: str | None
    status: str
    auth_provider: str
    created_at: datetime
    last_login_at: datetime | None = None

    @classmethod
    def from_domain(cls, account: AccountProfile) -> "AccountResponse":
        """Build a response model from the domain projection."""
        return cls(
            account_id=account.account_id,
            email=account.email,
            name=account.name,
            status=account.status.value,
            auth_provider=account.auth_provider.value,
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )


class RegisterRequest(BaseModel):
    """Payload accepted when registering a local account."""

    email: EmailStr
    password: str
    name: str | None = Field(default=None, min_length=1, max_length=255)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    """Request body for clients that do not carry the refresh cookie."""

    refresh_token: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class UpdateEmailRequest(BaseModel):
    new_email: EmailStr
    password: str = Field(..., min_length=1)


class DeleteAccountRequest(BaseModel):
    password: str | None = None


class TokenResponse(BaseModel):
    """Token pair issued to the client; the refresh half is also set as a cookie."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_in: int


class AuthResponse(BaseModel):
    account: AccountResponse
    tokens: TokenResponse


class SessionResponse(BaseModel):
    session_id: str
    user_agent: str | None
    ip_address: str | None
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_domain(cls, session: SessionInfo) -> "SessionResponse":
        return cls(
            session_id=session.session_id,
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]


class EmailAvailabilityResponse(BaseModel):
    email: EmailStr
    available: bool


def _token_response(tokens: TokenPair, settings: Settings) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        expires_in=settings.access_ttl_seconds,
        refresh_token=tokens.refresh_token,
        refresh_expires_in=settings.refresh_ttl_seconds,
    )


def _set_refresh_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        settings.refresh_cookie_name,
        token,
        max_age=settings.refresh_ttl_seconds,
        path="/",
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )


def _clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.refresh_cookie_name,
        path="/",
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )


def _presented_refresh_token(cookie_token: str | None, payload: RefreshTokenRequest | None) -> str | None:
    if cookie_token:
        return cookie_token
    if payload is not None and payload.refresh_token:
        return payload.refresh_token
    return None


@router.post(
    "/auth/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
def register(
    request: Request,
    response: Response,
    payload: RegisterRequest,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> AuthResponse:
    """Register a local account and open its first session."""
    result = manager.register(
        RegisterInput(email=payload.email, password=payload.password, name=payload.name),
        client_info(request),
    )
    _set_refresh_cookie(response, result.tokens.refresh_token, settings)
    return AuthResponse(
        account=AccountResponse.from_domain(result.account),
        tokens=_token_response(result.tokens, settings),
    )


@router.post("/auth/login", response_model=AuthResponse, dependencies=[Depends(auth_rate_limit)])
def login(
    request: Request,
    response: Response,
    payload: LoginRequest,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> AuthResponse:
    """Authenticate with email and password."""
    result = manager.login(payload.email, payload.password, client_info(request))
    _set_refresh_cookie(response, result.tokens.refresh_token, settings)
    return AuthResponse(
        account=AccountResponse.from_domain(result.account),
        tokens=_token_response(result.tokens, settings),
    )


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    response: Response,
    payload: RefreshTokenRequest | None = None,
    refresh_cookie: str | None = Cookie(default=None, alias="refreshToken"),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> TokenResponse:
    """Rotate the presented refresh token into a new token pair."""
    token = _presented_refresh_token(refresh_cookie, payload)
    if not token:
        raise BadRequestError("Refresh token is required")
    tokens = manager.refresh(token, client_info(request))
    _set_refresh_cookie(response, tokens.refresh_token, settings)
    return _token_response(tokens, settings)


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    payload: RefreshTokenRequest | None = None,
    refresh_cookie: str | None = Cookie(default=None, alias="refreshToken"),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """Revoke the current session; succeeds even without a usable token."""
    token = _presented_refresh_token(refresh_cookie, payload)
    if token:
        manager.logout(token)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    _clear_refresh_cookie(response, settings)
    return response


@router.post(
    "/auth/logout-all",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(api_rate_limit)],
)
def logout_all(
    account: AccountProfile = Depends(get_current_account),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """Sign the caller out on every device."""
    manager.logout_all(account.account_id)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    _clear_refresh_cookie(response, settings)
    return response


@router.post(
    "/auth/change-password",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(api_rate_limit)],
)
def change_password(
    payload: ChangePasswordRequest,
    account: AccountProfile = Depends(get_current_account),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """Change the caller's password; every session, this one included, must log in again."""
    manager.change_password(account.account_id, payload.current_password, payload.new_password)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    _clear_refresh_cookie(response, settings)
    return response


@router.get("/auth/sessions", response_model=SessionListResponse, dependencies=[Depends(api_rate_limit)])
def list_sessions(
    account: AccountProfile = Depends(get_current_account),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionListResponse:
    sessions = manager.get_active_sessions(account.account_id)
    return SessionListResponse(sessions=[SessionResponse.from_domain(session) for session in sessions])


@router.delete(
    "/auth/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(api_rate_limit)],
)
def revoke_session(
    session_id: str,
    account: AccountProfile = Depends(get_current_account),
    manager: SessionManager = Depends(get_session_manager),
) -> Response:
    manager.revoke_session(account.account_id, session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/account/me", response_model=AccountResponse, dependencies=[Depends(api_rate_limit)])
def get_me(account: AccountProfile = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_domain(account)


@router.patch("/account/email", response_model=AccountResponse, dependencies=[Depends(api_rate_limit)])
def update_email(
    payload: UpdateEmailRequest,
    account: AccountProfile = Depends(get_current_account),
    manager: SessionManager = Depends(get_session_manager),
) -> AccountResponse:
    updated = manager.update_email(account.account_id, payload.new_email, payload.password)
    return AccountResponse.from_domain(updated)


@router.delete("/account", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(api_rate_limit)])
def delete_account(
    payload: DeleteAccountRequest | None = None,
    account: AccountProfile = Depends(get_current_account),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """Soft-delete the caller's account and end all of its sessions."""
    manager.delete_account(account.account_id, payload.password if payload else None)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    _clear_refresh_cookie(response, settings)
    return response


@router.get(
    "/account/email-available",
    response_model=EmailAvailabilityResponse,
    dependencies=[Depends(api_rate_limit)],
)
def email_available(
    email: EmailStr = Query(...),
    manager: SessionManager = Depends(get_session_manager),
) -> EmailAvailabilityResponse:
    return EmailAvailabilityResponse(email=email, available=manager.is_email_available(email))
