"""Persistence contracts consumed by the session manager."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .account import Account, AccountStatus, AuthProvider
from .contracts import RefreshTokenRecord


class AccountStore(Protocol):
    def create_account(
        self,
        *,
        email: str,
        password_hash: str | None,
        name: str | None,
        auth_provider: AuthProvider,
        status: AccountStatus,
        now: datetime,
    ) -> Account: ...

    def get_account(self, account_id: str) -> Account | None: ...

    def find_account_by_email(self, email: str) -> Account | None: ...

    def record_login(self, account_id: str, at: datetime) -> None: ...

    def update_password_hash(self, account_id: str, password_hash: str, at: datetime) -> None: ...

    def update_email(self, account_id: str, email: str, at: datetime) -> Account: ...

    def set_status(self, account_id: str, status: AccountStatus, at: datetime) -> Account: ...


class SessionStore(Protocol):
    def create_refresh_token(
        self,
        *,
        account_id: str,
        token_hash: str,
        created_at: datetime,
        expires_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RefreshTokenRecord: ...

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None: ...

    def revoke_refresh_token(self, token_id: str, revoked_at: datetime) -> bool: ...

    def revoke_all_for_account(self, account_id: str, revoked_at: datetime) -> int: ...

    def delete_refresh_token(self, token_id: str) -> None: ...

    def evict_excess(self, account_id: str, keep: int) -> int: ...

    def list_live(self, account_id: str, now: datetime) -> list[RefreshTokenRecord]: ...

    def find_owned(self, account_id: str, token_id: str) -> RefreshTokenRecord | None: ...

    def purge_expired(self, now: datetime) -> int: ...
