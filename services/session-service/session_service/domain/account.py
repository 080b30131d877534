from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class AccountStatus(str, Enum):
    active = "active"
    suspended = "suspended"
    deleted = "deleted"


class AuthProvider(str, Enum):
    local = "local"
    google = "google"


@dataclass(slots=True)
class AccountProfile:
    """Caller-facing view of an account; never carries password material."""

    account_id: str
    email: str
    name: str | None
    status: AccountStatus
    auth_provider: AuthProvider
    created_at: datetime
    last_login_at: datetime | None = None


@dataclass(slots=True)
class Account:
    """Aggregate root for a user identity and its authentication material."""

    account_id: str
    email: str
    password_hash: str | None
    name: str | None
    status: AccountStatus
    auth_provider: AuthProvider
    created_at: datetime
    updated_at: datetime
    last_login_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.active

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def to_profile(self) -> AccountProfile:
        """Strip authentication material before handing the account to callers."""
        return AccountProfile(
            account_id=self.account_id,
            email=self.email,
            name=self.name,
            status=self.status,
            auth_provider=self.auth_provider,
            created_at=self.created_at,
            last_login_at=self.last_login_at,
        )


def normalize_email(email: str) -> str:
    """Return the canonical (trimmed, lower-cased) form used for lookups."""
    return email.strip().lower()
