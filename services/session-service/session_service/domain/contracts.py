"""Domain-level request and result contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .account import AccountProfile


@dataclass(slots=True)
class ClientInfo:
    """Diagnostic metadata about the client presenting credentials."""

    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(slots=True)
class RegisterInput:
    """Validated inputs required to create a local account."""

    email: str
    password: str
    name: str | None = None


@dataclass(slots=True)
class TokenPair:
    """Access/refresh token pair handed to the client; never persisted."""

    access_token: str
    refresh_token: str


@dataclass(slots=True)
class AuthResult:
    """Outcome of register and login."""

    account: AccountProfile
    tokens: TokenPair


@dataclass(slots=True)
class RefreshTokenRecord:
    """One persisted refresh token, identified by the digest of its value."""

    token_id: str
    account_id: str
    token_hash: str
    created_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None
    user_agent: str | None = None
    ip_address: str | None = None

    def is_live(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now


@dataclass(slots=True)
class SessionInfo:
    """Projection of a live refresh token record listed to its owner."""

    session_id: str
    user_agent: str | None
    ip_address: str | None
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_record(cls, record: RefreshTokenRecord) -> "SessionInfo":
        return cls(
            session_id=record.token_id,
            user_agent=record.user_agent,
            ip_address=record.ip_address,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )
